import asyncio
import logging
from typing import Any, Callable, Coroutine, List, Optional, Protocol, Sequence, Set

from booktrack.book import Book
from booktrack.config import settings
from booktrack.errors import ErrorClassifier, ErrorKind
from booktrack.scanner import ScanEvent, ScanFailure
from booktrack.state import (
    Failed,
    Idle,
    QueryParameters,
    Results,
    Searching,
    SearchState,
    SortOption,
    is_settled,
)
from booktrack.validators import QueryNormalizer

logger = logging.getLogger(__name__)

StateListener = Callable[[SearchState], None]


class SearchService(Protocol):
    """Remote lookup consumed by the controller."""

    async def search(self, query: str, sort_by: SortOption, include_translations: bool) -> Sequence[Book]:
        ...


class SearchController:
    """Owns the search session state and every transition applied to it.

    All public methods are synchronous and must be called from the event loop
    that owns the controller. Each one applies its transition before
    returning; remote lookups run as tasks on the same loop and only update
    the state when their request generation is still the current one.
    """

    def __init__(
        self,
        service: SearchService,
        params: Optional[QueryParameters] = None,
        retry_delay: Optional[float] = None,
        requery_delay: Optional[float] = None,
    ) -> None:
        self._service = service
        self._state: SearchState = Idle()
        self._params = params or QueryParameters()
        self._query: Optional[str] = None
        self._generation = 0
        self._listeners: List[StateListener] = []
        self._tasks: Set[asyncio.Task] = set()
        # Debounce timer for a retry or re-query that has not fired yet
        self._pending: Optional[asyncio.Task] = None
        self.retry_delay = settings.retry_delay if retry_delay is None else retry_delay
        self.requery_delay = settings.requery_delay if requery_delay is None else requery_delay

    # ------------------------- Observation ------------------------- #
    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def params(self) -> QueryParameters:
        return self._params

    @property
    def query(self) -> Optional[str]:
        """The most recently submitted (normalized) query."""
        return self._query

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called synchronously after every transition."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _transition(self, new_state: SearchState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug(f"Search state {old_state.name} -> {new_state.name}")
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Search state listener failed")

    # ------------------------- Task bookkeeping ------------------------- #
    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def _release_pending(self) -> None:
        if self._pending is asyncio.current_task():
            self._pending = None

    def _supersede(self) -> int:
        """Drop interest in every outstanding request and pending timer."""
        self._generation += 1
        self._cancel_pending()
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def wait_until_settled(self) -> None:
        """Wait for every scheduled lookup and timer, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._supersede()
        for task in list(self._tasks):
            task.cancel()
        await self.wait_until_settled()

    # ------------------------- Searching ------------------------- #
    def submit(self, raw_query: Optional[str], params: Optional[QueryParameters] = None) -> Optional[asyncio.Task]:
        """Start a search for `raw_query`; empty input is ignored."""
        query = QueryNormalizer.normalize(raw_query)
        if query is None:
            logger.debug("Ignoring empty search query")
            return None
        if params is not None:
            self._params = params
        return self._start_search(query, self._params)

    def _start_search(self, query: str, params: QueryParameters, delay: float = 0.0) -> asyncio.Task:
        generation = self._supersede()
        self._query = query
        self._transition(Searching(query))
        task = self._spawn(self._run_search(generation, query, params, delay))
        if delay > 0:
            self._pending = task
        return task

    async def _run_search(self, generation: int, query: str, params: QueryParameters, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
            self._release_pending()
            if not self._is_current(generation):
                return

        logger.info(
            f"Searching for {query!r} (sort={params.sort_by.value}, "
            f"translations={params.include_translations})"
        )
        try:
            books = await self._service.search(query, params.sort_by, params.include_translations)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._is_current(generation):
                logger.info(f"Dropping failure for superseded query {query!r}: {e}")
                return
            message, kind = ErrorClassifier.describe(e)
            logger.warning(f"Search for {query!r} failed ({kind.value}): {e}")
            self._transition(Failed(message, kind, query))
            return

        if not self._is_current(generation):
            logger.info(f"Dropping stale results for superseded query {query!r}")
            return
        self._transition(Results(tuple(books), query))

    def clear(self, reset_params: bool = False) -> None:
        """Return to Idle; any response still in flight is dropped."""
        self._supersede()
        self._query = None
        if reset_params:
            self._params = QueryParameters()
        self._transition(Idle())

    def retry(self) -> Optional[asyncio.Task]:
        """Re-run the last query after `retry_delay`.

        Each call supersedes a retry that is still waiting, so a burst of
        retries reaches the service once.
        """
        query = QueryNormalizer.normalize(self._query)
        if query is None:
            self._supersede()
            self._transition(Idle())
            return None
        return self._start_search(query, self._params, delay=self.retry_delay)

    # ------------------------- Query parameters ------------------------- #
    def update_params(self, **changes: Any) -> bool:
        """Store new parameters; re-query when a search has already completed.

        Returns True when a re-query was scheduled.
        """
        new_params = self._params.with_changes(**changes)
        if new_params == self._params:
            return False
        self._params = new_params

        if not is_settled(self._state) or self._query is None:
            return False

        # Coalesce rapid toggles: only the last parameters before the timer fires are sent
        self._cancel_pending()
        self._pending = self._spawn(self._requery_after_delay(self._generation))
        return True

    def set_sort(self, sort_by: SortOption) -> bool:
        return self.update_params(sort_by=SortOption(sort_by))

    def set_include_translations(self, include_translations: bool) -> bool:
        return self.update_params(include_translations=include_translations)

    def toggle_translations(self) -> bool:
        return self.set_include_translations(not self._params.include_translations)

    async def _requery_after_delay(self, generation: int) -> None:
        await asyncio.sleep(self.requery_delay)
        self._release_pending()
        if not self._is_current(generation) or not is_settled(self._state) or self._query is None:
            return
        self._start_search(self._query, self._params)

    # ------------------------- Barcode scans ------------------------- #
    def on_scan_event(self, event: ScanEvent) -> Optional[asyncio.Task]:
        """Apply a scanner outcome using the same last-event-wins rule as typed searches."""
        outcome = event.outcome

        if isinstance(outcome, ScanFailure):
            self._supersede()
            self._query = event.code
            self._transition(Failed(f"Barcode search failed: {outcome.reason}", ErrorKind.UNKNOWN, event.code))
            return None

        if outcome.items:
            self._supersede()
            self._query = event.code
            self._transition(Results(tuple(outcome.items), event.code))
            return None

        # The scanner found nothing: search the code like typed input
        if QueryNormalizer.normalize(event.code) is None:
            self.clear()
            return None
        return self.submit(event.code)
