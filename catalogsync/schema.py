from typing import Any, Dict, List
from urllib.parse import urlparse

CONTAINER_KEY = "videos"
REQUIRED_STR_FIELDS = ["title", "url"]
OPTIONAL_STR_FIELDS = [
    "description",
    "updated",
    "thumbnail",
    "closedCaptions",
]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v)
        return bool(p.scheme and p.netloc)
    except Exception:
        return False


def validate_remote_item(data: Any) -> List[str]:
    """
    Returns a list of validation error messages for one remote entry.
    Empty list means valid.
    """
    if not isinstance(data, dict):
        return [f"Entry must be an object, got {type(data).__name__}"]

    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    # Optional fields may be null, but not another type
    for f in OPTIONAL_STR_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    if _is_non_empty_str(data.get("url")) and not _valid_url(data["url"]):
        errors.append("Field 'url' must be a valid absolute URL (scheme + host)")

    if _is_non_empty_str(data.get("thumbnail")) and not _valid_url(data["thumbnail"]):
        errors.append("Field 'thumbnail' must be a valid absolute URL (scheme + host)")

    return errors


def validate_container(payload: Any) -> List[str]:
    """
    Validate the top-level response body and every entry in it.

    Entry errors are prefixed with the entry index.
    """
    if not isinstance(payload, dict):
        return [f"Response must be an object, got {type(payload).__name__}"]
    entries = payload.get(CONTAINER_KEY)
    if not isinstance(entries, list):
        return [f"Response field '{CONTAINER_KEY}' must be a list"]

    errors: List[str] = []
    for i, entry in enumerate(entries):
        errors.extend(f"[{i}] {e}" for e in validate_remote_item(entry))
    return errors
