from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Tuple, Union

from booktrack.book import Book
from booktrack.state import SortOption
from booktrack.validators import ISBNValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanSuccess:
    items: Tuple[Book, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ScanFailure:
    reason: str


@dataclass(frozen=True)
class ScanEvent:
    """Outcome of one barcode scan session."""
    code: str
    outcome: Union[ScanSuccess, ScanFailure]

    @classmethod
    def success(cls, code: str, items) -> "ScanEvent":
        return cls(code=code, outcome=ScanSuccess(tuple(items)))

    @classmethod
    def failure(cls, code: str, reason: str) -> "ScanEvent":
        return cls(code=code, outcome=ScanFailure(reason))


ScanHandler = Callable[[ScanEvent], Any]


class ScanEventBridge:
    """Single named channel between the scanner and the search controller.

    The scanner publishes events from its own clock; the consumer task hands
    each event to the handler exactly once, in publish order, on the loop
    that owns the controller.
    """

    def __init__(self, handler: ScanHandler, name: str = "barcode-scan"):
        self.name = name
        self._handler = handler
        self._queue: "asyncio.Queue[ScanEvent]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def publish(self, event: ScanEvent) -> None:
        logger.debug(f"[{self.name}] queued scan event for code {event.code}")
        self._queue.put_nowait(event)

    def _dispatch(self, event: ScanEvent) -> None:
        try:
            self._handler(event)
        except Exception:
            logger.exception(f"[{self.name}] scan handler failed for code {event.code}")
        finally:
            self._queue.task_done()

    def drain(self) -> int:
        """Dispatch every queued event now; returns how many were handled."""
        handled = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            self._dispatch(event)
            handled += 1

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            self._dispatch(event)

    def start(self) -> asyncio.Task:
        if not self.running:
            self._consumer = asyncio.get_running_loop().create_task(self.run())
        return self._consumer

    async def join(self) -> None:
        """Wait until every published event has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None


class BarcodeSearchService(Protocol):
    async def search(self, query: str, sort_by: SortOption, include_translations: bool):
        ...


class BarcodeLookup:
    """Scanner-side lookup turning a decoded barcode into a ScanEvent."""

    def __init__(self, service: BarcodeSearchService, bridge: ScanEventBridge):
        self.service = service
        self.bridge = bridge

    async def handle_barcode(self, raw_code: str) -> Optional[ScanEvent]:
        code = ISBNValidator.clean_isbn(raw_code)
        if not ISBNValidator.looks_like_isbn(code):
            logger.info(f"Ignoring barcode that does not look like an ISBN: {raw_code!r}")
            return None
        if not ISBNValidator.is_valid_isbn(code):
            logger.info(f"Ignoring misread barcode with a bad ISBN check digit: {raw_code!r}")
            return None

        try:
            books = await self.service.search(code, SortOption.RELEVANCE, True)
        except Exception as e:
            logger.warning(f"Barcode search failed for {code}: {e}")
            event = ScanEvent.failure(code, str(e))
        else:
            event = ScanEvent.success(code, books)

        self.bridge.publish(event)
        return event
