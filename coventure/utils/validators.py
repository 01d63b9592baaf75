from typing import Iterable, List, Optional
from urllib.parse import urlparse

from coventure.core.errors import ClientValidationError


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ClientValidationError(f"{field} is required")
    return str(value).strip()


def optional_url(value: Optional[str], field: str) -> Optional[str]:
    if value is None or not value.strip():
        return None
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ClientValidationError(f"{field} must be a valid http(s) URL")
    return value


def clean_tags(values: Optional[Iterable[str]]) -> List[str]:
    """Quita vacíos y duplicados conservando el orden."""
    seen = set()
    result = []
    for value in values or []:
        tag = str(value).strip()
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            result.append(tag)
    return result
