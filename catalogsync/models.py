"""
Item forms used across the pipeline.

- RemoteItem: what the remote API returns
- ItemRow: what the store persists
- Item: what consumers observe

Conversions go one way: remote -> row -> domain.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

SHORT_DESCRIPTION_LENGTH = 200
_TRAILING_PUNCTUATION = (",", ";", ":")


def smart_truncate(text: str, length: int) -> str:
    """
    Cut text after the first word that pushes it past `length` characters.

    Trailing separators are dropped and an ellipsis marks truncated text.
    """
    words = text.split(" ")
    kept: List[str] = []
    size = 0
    has_more = False
    for word in words:
        if size > length:
            has_more = True
            break
        kept.append(word)
        size += len(word) + 1

    result = " ".join(kept).rstrip()
    if result.endswith(_TRAILING_PUNCTUATION):
        result = result[:-1]
    if has_more:
        result += "..."
    return result


@dataclass(frozen=True)
class RemoteItem:
    """A catalog entry as served by the remote API."""

    title: str
    description: str
    url: str
    updated: str
    thumbnail: str
    closed_captions: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "RemoteItem":
        return cls(
            title=data["title"].strip(),
            description=(data.get("description") or "").strip(),
            url=data["url"].strip(),
            updated=data.get("updated") or "",
            thumbnail=data.get("thumbnail") or "",
            closed_captions=data.get("closedCaptions"),
        )


@dataclass(frozen=True)
class ItemRow:
    """Persisted form of an item. `url` is its identity."""

    url: str
    updated: str
    title: str
    description: str
    thumbnail: str


@dataclass(frozen=True)
class Item:
    """Domain form handed to observers."""

    url: str
    title: str
    description: str
    updated: str
    thumbnail: str

    @property
    def short_description(self) -> str:
        return smart_truncate(self.description, SHORT_DESCRIPTION_LENGTH)


def as_database_model(items: Iterable[RemoteItem]) -> List[ItemRow]:
    return [
        ItemRow(
            url=item.url,
            updated=item.updated,
            title=item.title,
            description=item.description,
            thumbnail=item.thumbnail,
        )
        for item in items
    ]


def as_domain_model(rows: Iterable[ItemRow]) -> List[Item]:
    return [
        Item(
            url=row.url,
            title=row.title,
            description=row.description,
            updated=row.updated,
            thumbnail=row.thumbnail,
        )
        for row in rows
    ]
