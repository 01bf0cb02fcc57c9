import re
from typing import Optional

_ISBN_SHAPE = re.compile(r"\d{13}|\d{9}[\dXx]")


class QueryNormalizer:
    """Trim raw search input; reject input that is empty once trimmed.

    No further validation happens here. A malformed but non-empty query is
    forwarded to the search service as-is.
    """

    @staticmethod
    def normalize(raw: Optional[str]) -> Optional[str]:
        if raw is None:
            return None
        query = raw.strip()
        return query or None

    @staticmethod
    def is_rejected(raw: Optional[str]) -> bool:
        return QueryNormalizer.normalize(raw) is None


class ISBNValidator:
    """ISBN helpers shared by the barcode lookup and the search service."""

    @staticmethod
    def clean_isbn(raw: Optional[str]) -> str:
        # Scanners and users insert hyphens, spaces and '=' separators
        if raw is None:
            return ""
        return re.sub(r"[\s\-=]", "", raw).strip()

    @staticmethod
    def looks_like_isbn(code: Optional[str]) -> bool:
        """True when the cleaned code is an ISBN-13 or an ISBN-10 (9 digits, then a digit or X)."""
        return _ISBN_SHAPE.fullmatch(ISBNValidator.clean_isbn(code)) is not None

    @staticmethod
    def is_valid_isbn(isbn: str) -> bool:
        if not isbn:
            return False
        s = re.sub(r"[^0-9Xx]", "", isbn).upper()
        if len(s) == 10:
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False
