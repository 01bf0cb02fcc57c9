from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from booktrack.book import Book
from booktrack.errors import ErrorKind


class SortOption(str, Enum):
    RELEVANCE = "relevance"
    NEWEST = "newest"
    POPULARITY = "popularity"

    @property
    def display_name(self) -> str:
        return {
            SortOption.RELEVANCE: "Most Relevant",
            SortOption.NEWEST: "Newest First",
            SortOption.POPULARITY: "Most Popular",
        }[self]


@dataclass(frozen=True)
class QueryParameters:
    """Snapshot of the sort and language options sent with one search."""
    sort_by: SortOption = SortOption.RELEVANCE
    include_translations: bool = False

    def with_changes(self, **changes: Any) -> "QueryParameters":
        return replace(self, **changes)


@dataclass(frozen=True)
class Idle:
    """No query has been run, or the query was cleared."""
    name = "idle"


@dataclass(frozen=True)
class Searching:
    """A request for `query` is in flight."""
    query: str
    name = "searching"


@dataclass(frozen=True)
class Results:
    """A completed search. An empty `items` tuple means "no results"."""
    items: Tuple[Book, ...] = field(default_factory=tuple)
    query: Optional[str] = None
    name = "results"

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class Failed:
    """A completed search that failed; `message` is presentation text."""
    message: str
    cause: ErrorKind = ErrorKind.UNKNOWN
    query: Optional[str] = None
    name = "failed"


SearchState = Union[Idle, Searching, Results, Failed]


def is_settled(state: SearchState) -> bool:
    """True once a search has completed for some query."""
    return isinstance(state, (Results, Failed))


def state_to_dict(state: SearchState) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"state": state.name}
    if isinstance(state, Searching):
        payload["query"] = state.query
    elif isinstance(state, Results):
        payload["query"] = state.query
        payload["count"] = state.count
        payload["items"] = [book.to_dict() for book in state.items]
    elif isinstance(state, Failed):
        payload["query"] = state.query
        payload["message"] = state.message
        payload["cause"] = state.cause.value
    return payload
