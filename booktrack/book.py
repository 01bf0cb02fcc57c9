from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Book:
    """A single book returned by a search or a barcode lookup."""
    id: str
    title: str
    authors: List[str] = field(default_factory=list)
    isbn: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    preview_link: Optional[str] = None
    info_link: Optional[str] = None
    provider: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        authors = ", ".join(self.authors) if self.authors else "Unknown Author"
        return f"{self.title} by {authors}" + (f" (ISBN: {self.isbn})" if self.isbn else "")

    @property
    def author(self) -> str:
        return ", ".join(self.authors)

    @property
    def year(self) -> Optional[int]:
        """Publication year taken from the first four characters of published_date."""
        if not self.published_date or len(self.published_date) < 4:
            return None
        try:
            return int(self.published_date[:4])
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "authors": self.authors,
            "isbn": self.isbn,
            "published_date": self.published_date,
            "page_count": self.page_count,
            "description": self.description,
            "image_url": self.image_url,
            "language": self.language,
            "publisher": self.publisher,
            "categories": self.categories,
            "preview_link": self.preview_link,
            "info_link": self.info_link,
            "provider": self.provider,
        }
