import copy
import json
import logging
import time
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from booktrack.book import Book
from booktrack.config import settings
from booktrack.errors import (
    DecodingError,
    NetworkError,
    ProxyError,
    RateLimitExceeded,
    SearchTimeoutError,
)
from booktrack.services.cache_manager import SearchCache
from booktrack.services.http_client import SearchHTTPClient, get_http_client
from booktrack.state import SortOption
from booktrack.validators import ISBNValidator

logger = logging.getLogger(__name__)

TITLE_SIMILARITY_THRESHOLD = 0.85
AUTHOR_SIMILARITY_THRESHOLD = 0.8
LOW_QUALITY_KEYWORDS = ("magazine", "journal", "newsletter", "catalog", "brochure")
OPERATOR_PREFIXES = ("isbn:", "inauthor:", "intitle:")
TITLE_INDICATORS = ("a ", "an ", "the ", "of ", "in ", "on ", "for ", "with ", "and ", "or ")


# --- Proxy response models ---

class ProxyIndustryIdentifier(BaseModel):
    type: str
    identifier: str


class ProxyImageLinks(BaseModel):
    smallThumbnail: Optional[str] = None
    thumbnail: Optional[str] = None


class ProxyVolumeInfo(BaseModel):
    title: Optional[str] = None
    authors: Optional[List[str]] = None
    publisher: Optional[str] = None
    publishedDate: Optional[str] = None
    description: Optional[str] = None
    industryIdentifiers: Optional[List[ProxyIndustryIdentifier]] = None
    pageCount: Optional[int] = None
    categories: Optional[List[str]] = None
    imageLinks: Optional[ProxyImageLinks] = None
    language: Optional[str] = None
    previewLink: Optional[str] = None
    infoLink: Optional[str] = None


class ProxyVolumeItem(BaseModel):
    kind: str = ""
    id: str = ""
    volumeInfo: ProxyVolumeInfo

    def to_book(self, provider: Optional[str] = None) -> Book:
        info = self.volumeInfo
        identifiers = info.industryIdentifiers or []
        isbn13 = next((i.identifier for i in identifiers if i.type == "ISBN_13"), None)
        isbn10 = next((i.identifier for i in identifiers if i.type == "ISBN_10"), None)

        image_url = info.imageLinks.thumbnail if info.imageLinks else None
        if image_url and image_url.startswith("http://"):
            image_url = "https://" + image_url[len("http://"):]

        return Book(
            id=self.id,
            title=info.title or "",
            authors=list(info.authors or []),
            isbn=isbn13 or isbn10,
            published_date=info.publishedDate,
            page_count=info.pageCount,
            description=info.description,
            image_url=image_url,
            language=info.language,
            publisher=info.publisher,
            categories=list(info.categories or []),
            preview_link=info.previewLink,
            info_link=info.infoLink,
            provider=provider,
        )


class ProxySearchResponse(BaseModel):
    kind: Optional[str] = None
    totalItems: Optional[int] = None
    provider: Optional[str] = None
    cached: Optional[bool] = None
    items: List[ProxyVolumeItem] = Field(default_factory=list)
    error: Optional[str] = None


# --- Query optimisation and result post-processing ---

def optimize_query(query: str) -> str:
    """Rewrite free text into the proxy's operator syntax where the intent is clear."""
    trimmed = query.strip()

    if trimmed.startswith(OPERATOR_PREFIXES):
        return trimmed

    if ISBNValidator.looks_like_isbn(trimmed):
        return f"isbn:{ISBNValidator.clean_isbn(trimmed)}"

    if "by " in trimmed.lower():
        parts = trimmed.split(" by ")
        if len(parts) == 2:
            return f'intitle:"{parts[0].strip()}" inauthor:"{parts[1].strip()}"'

    if '"' in trimmed and len(trimmed) > 3:
        return f"intitle:{trimmed}"

    words = [w for w in trimmed.split(" ") if w]
    looks_like_author = (
        2 <= len(words) <= 4
        and all(w[0].isupper() and not any(c.isdigit() for c in w) and len(w) > 1 for w in words)
        and "the " not in trimmed.lower()
    )
    if looks_like_author:
        return f'inauthor:"{trimmed}"'

    lowered = trimmed.lower()
    if any(indicator in lowered for indicator in TITLE_INDICATORS) or len(words) > 4:
        return f'intitle:"{trimmed}"'

    return trimmed


def _similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a.casefold(), b.casefold()).ratio()


def _authors_similarity(first: List[str], second: List[str]) -> float:
    if not first or not second:
        return 0.0
    return max(_similarity(a, b) for a in first for b in second)


def _is_duplicate(candidate: Book, existing: Book) -> bool:
    # An ISBN match is authoritative when both sides carry one
    if candidate.isbn and existing.isbn:
        return ISBNValidator.clean_isbn(candidate.isbn) == ISBNValidator.clean_isbn(existing.isbn)
    return (
        _similarity(candidate.title, existing.title) > TITLE_SIMILARITY_THRESHOLD
        and _authors_similarity(candidate.authors, existing.authors) > AUTHOR_SIMILARITY_THRESHOLD
    )


def merge_books(primary: Book, secondary: Book) -> Book:
    """Fill fields missing from `primary` with values from `secondary`."""
    for name in ("title", "authors", "page_count", "published_date", "image_url",
                 "description", "publisher", "language", "isbn", "categories"):
        if not getattr(primary, name) and getattr(secondary, name):
            setattr(primary, name, getattr(secondary, name))
    return primary


def filter_results(books: List[Book]) -> List[Book]:
    kept = []
    for book in books:
        if not book.title or not book.authors:
            continue
        title = book.title.lower()
        if any(keyword in title for keyword in LOW_QUALITY_KEYWORDS):
            continue
        kept.append(book)
    return kept


def remove_duplicates(books: List[Book]) -> List[Book]:
    unique: List[Book] = []
    for book in books:
        for index, existing in enumerate(unique):
            if _is_duplicate(book, existing):
                unique[index] = merge_books(existing, book)
                break
        else:
            unique.append(book)
    return unique


def sort_results(books: List[Book], sort_by: SortOption) -> List[Book]:
    # Relevance and popularity ordering come from the proxy
    if sort_by == SortOption.NEWEST:
        return sorted(books, key=lambda b: b.year or 0, reverse=True)
    return books


def process_results(books: List[Book], sort_by: SortOption) -> List[Book]:
    return sort_results(remove_duplicates(filter_results(books)), sort_by)


class BookSearchService:
    """Client for the book metadata proxy used by the search controller."""

    def __init__(
        self,
        http_client: Optional[SearchHTTPClient] = None,
        base_url: Optional[str] = None,
        fallback_url: Optional[str] = None,
        max_results: Optional[int] = None,
        cache: Optional[SearchCache] = None,
    ):
        self._http_client = http_client
        self.primary_url = (base_url or settings.proxy_url).rstrip("/")
        self.fallback_url = (fallback_url or settings.fallback_proxy_url).rstrip("/")
        self.max_results = max_results or settings.search_max_results
        if cache is None and settings.enable_search_cache:
            cache = SearchCache()
        self.cache = cache

    async def _client(self) -> SearchHTTPClient:
        if self._http_client is None:
            self._http_client = await get_http_client()
        return self._http_client

    async def _is_endpoint_healthy(self, base_url: str) -> bool:
        client = await self._client()
        try:
            response = await client.get(f"{base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Health check failed for {base_url}: {e}")
            return False

    async def resolve_base_url(self) -> str:
        """Use the primary proxy when it reports healthy, otherwise the fallback."""
        if await self._is_endpoint_healthy(self.primary_url):
            return self.primary_url
        logger.warning(f"Primary endpoint unavailable, using fallback: {self.fallback_url}")
        return self.fallback_url

    def build_params(
        self,
        query: str,
        sort_by: SortOption,
        include_translations: bool,
        max_results: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "q": optimize_query(query),
            "maxResults": str(max_results or self.max_results),
            "provider": "auto",
        }
        if sort_by == SortOption.POPULARITY:
            params["sortType"] = "popularity"
        else:
            params["orderBy"] = sort_by.value
        if not include_translations:
            params["langRestrict"] = "en"
        return params

    async def _execute_request(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        client = await self._client()
        start_time = time.time()

        try:
            response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Search request timed out: {url}")
            raise SearchTimeoutError(f"The request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Search request failed: {e}")
            raise NetworkError(f"Network error: {e}", transport=True) from e

        response_time_ms = int((time.time() - start_time) * 1000)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "60")
            logger.warning("Rate limit exceeded for search proxy")
            raise RateLimitExceeded(retry_after)
        if not 200 <= response.status_code < 300:
            logger.error(f"Search request failed: HTTP {response.status_code}")
            raise NetworkError(f"HTTP {response.status_code}")

        logger.debug(
            f"Search proxy answered in {response_time_ms}ms "
            f"(provider={response.headers.get('X-Provider', 'unknown')}, "
            f"cache={response.headers.get('X-Cache', 'UNKNOWN')})"
        )

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise DecodingError(f"Data parsing error: {e}") from e

    async def search(
        self,
        query: str,
        sort_by: SortOption = SortOption.RELEVANCE,
        include_translations: bool = False,
        max_results: Optional[int] = None,
    ) -> List[Book]:
        """
        Search the proxy for books matching a free-text query

        Args:
            query: Title, author or ISBN-like text
            sort_by: Result ordering requested from the proxy
            include_translations: When False results are restricted to English
            max_results: Upper bound on returned items

        Returns:
            List of Book objects, possibly empty

        Raises:
            SearchServiceError: on transport, proxy or decoding failures
        """
        trimmed = query.strip() if query else ""
        if not trimmed:
            return []

        params = self.build_params(trimmed, sort_by, include_translations, max_results)
        cache_key = SearchCache.make_key(params["q"], sort_by.value, include_translations, params["maxResults"])
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for query: {trimmed} (hit ratio {self.cache.get_stats()['hit_ratio']:.2f})")
                return copy.deepcopy(cached)

        base_url = await self.resolve_base_url()
        payload = await self._execute_request(f"{base_url}/search", params)

        try:
            response = ProxySearchResponse.model_validate(payload)
        except ValidationError as e:
            raise DecodingError(f"Data parsing error: {e}") from e

        if response.error:
            raise ProxyError(f"Service error: {response.error}")

        books = [item.to_book(response.provider) for item in response.items]
        books = process_results(books, sort_by)

        if self.cache is not None:
            # Callers own the returned books; the cache keeps its own copies
            self.cache.set(cache_key, copy.deepcopy(books))

        logger.info(f"Found {len(books)} books for query: {trimmed}")
        return books

    async def search_by_isbn(self, isbn: str) -> Optional[Book]:
        """Look up a single book by ISBN; None when nothing matches."""
        cleaned = ISBNValidator.clean_isbn(isbn)
        if not cleaned:
            return None

        books = await self.search(f"isbn:{cleaned}", SortOption.RELEVANCE, include_translations=False, max_results=1)
        if books:
            return books[0]

        logger.info(f"Book not found for ISBN {cleaned}")
        return None
