import asyncio
from typing import Dict, List, Optional

import pytest

from booktrack.book import Book
from booktrack.controller import SearchController
from booktrack.state import SortOption


class FakeSearchService:
    """Scripted search service.

    In automatic mode each call answers from `results` / `errors`. In manual
    mode each call waits on its own future until the test resolves it.
    """

    def __init__(self, manual: bool = False):
        self.manual = manual
        self.results: Dict[str, List[Book]] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: list = []
        self.pending: List[asyncio.Future] = []

    async def search(self, query: str, sort_by: SortOption = SortOption.RELEVANCE, include_translations: bool = False):
        self.calls.append((query, sort_by, include_translations))
        if self.manual:
            future = asyncio.get_running_loop().create_future()
            self.pending.append(future)
            return await future
        if query in self.errors:
            raise self.errors[query]
        return list(self.results.get(query, []))

    def resolve(self, index: int, books: List[Book]) -> None:
        self.pending[index].set_result(list(books))

    def fail(self, index: int, error: Exception) -> None:
        self.pending[index].set_exception(error)


def _make_books(count: int, prefix: str = "Book", isbn_base: Optional[int] = 9780000000000) -> List[Book]:
    return [
        Book(
            id=f"{prefix.lower()}-{i}",
            title=f"{prefix} {i}",
            authors=[f"Author {i}"],
            isbn=str(isbn_base + i) if isbn_base else None,
        )
        for i in range(count)
    ]


@pytest.fixture
def make_books():
    return _make_books


@pytest.fixture
def service():
    return FakeSearchService()


@pytest.fixture
def manual_service():
    return FakeSearchService(manual=True)


@pytest.fixture
def controller(service):
    return SearchController(service, retry_delay=0.01, requery_delay=0.01)


@pytest.fixture
def manual_controller(manual_service):
    return SearchController(manual_service, retry_delay=0.01, requery_delay=0.01)


@pytest.fixture
def recorded_states(controller):
    states = []
    controller.subscribe(states.append)
    return states
