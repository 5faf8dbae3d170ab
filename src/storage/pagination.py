"""Offset pagination shared by every list operation.

Contract: ``limit`` is clamped to [1, 100], ``cursor`` is a plain offset,
and ``next_cursor`` is ``offset + limit`` while rows remain, else None.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")

MAX_PAGE_SIZE = 100


def clamp_limit(limit: Optional[int], default: int) -> int:
    """Clamp a page size to [1, MAX_PAGE_SIZE]."""
    if limit is None:
        return default
    return min(MAX_PAGE_SIZE, max(1, int(limit)))


def clamp_offset(cursor: Optional[int]) -> int:
    if cursor is None:
        return 0
    return max(0, int(cursor))


def next_cursor(offset: int, limit: int, page_len: int, total: int) -> Optional[int]:
    return offset + limit if offset + page_len < total else None


@dataclass
class Page(Generic[T]):
    """One page of a filtered, sorted listing."""

    items: List[T] = field(default_factory=list)
    total: int = 0
    next_cursor: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "next_cursor": self.next_cursor,
        }


def paginate(rows: Sequence[T], limit: int, offset: int) -> Page[T]:
    """Slice an already filtered and sorted sequence into a Page."""
    total = len(rows)
    items = list(rows[offset:offset + limit])
    return Page(items=items, total=total, next_cursor=next_cursor(offset, limit, len(items), total))
