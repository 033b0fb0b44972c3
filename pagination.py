"""Page slicing over a query view."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Sequence, Tuple

DEFAULT_PAGE_SIZE_OPTIONS = (5, 10, 25, 50)


def total_pages_for(view_length: int, page_size: int) -> int:
    if view_length <= 0:
        return 1
    return max(1, math.ceil(view_length / page_size))


def clamp_page(page: int, total_pages: int) -> int:
    return min(max(1, page), max(1, total_pages))


def first_page(current: int, total_pages: int) -> int:
    return 1


def prev_page(current: int, total_pages: int) -> int:
    return clamp_page(current - 1, total_pages)


def next_page(current: int, total_pages: int) -> int:
    return clamp_page(current + 1, total_pages)


def last_page(current: int, total_pages: int) -> int:
    return max(1, total_pages)


@dataclass
class Page:
    items: List[Any] = field(default_factory=list)
    page_number: int = 1
    total_pages: int = 1
    total_records: int = 0
    page_size: int = 10
    start_index: int = 0
    end_index: int = 0

    @property
    def has_prev(self) -> bool:
        return self.page_number > 1

    @property
    def has_next(self) -> bool:
        return self.page_number < self.total_pages

    def ids(self) -> list:
        return [item.get("id") if isinstance(item, dict) else item for item in self.items]

    def to_dict(self) -> dict:
        return {
            "items": list(self.items),
            "page_number": self.page_number,
            "total_pages": self.total_pages,
            "total_records": self.total_records,
            "page_size": self.page_size,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "has_prev": self.has_prev,
            "has_next": self.has_next,
        }


class PaginationController:
    def __init__(self, page_size: int = 10, page_size_options: Sequence[int] = DEFAULT_PAGE_SIZE_OPTIONS) -> None:
        self.page_size_options: Tuple[int, ...] = tuple(sorted({int(n) for n in page_size_options if int(n) > 0}))
        self.page_size = max(1, int(page_size))
        self.current_page = 1
        self._view_length = 0

    @property
    def total_pages(self) -> int:
        return total_pages_for(self._view_length, self.page_size)

    def set_view_length(self, length: int) -> None:
        """Record the current view length and pull the page back into range."""
        self._view_length = max(0, int(length))
        self.current_page = clamp_page(self.current_page, self.total_pages)

    def set_page_size(self, size: int) -> None:
        self.page_size = max(1, int(size))
        self.current_page = 1

    def go_to_page(self, page: int) -> int:
        try:
            requested = int(page)
        except (TypeError, ValueError):
            requested = self.current_page
        self.current_page = clamp_page(requested, self.total_pages)
        return self.current_page

    def first(self) -> int:
        return first_page(self.current_page, self.total_pages)

    def prev(self) -> int:
        return prev_page(self.current_page, self.total_pages)

    def next(self) -> int:
        return next_page(self.current_page, self.total_pages)

    def last(self) -> int:
        return last_page(self.current_page, self.total_pages)

    def has_prev(self) -> bool:
        return self.current_page > 1

    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    def page(self, view: Sequence[Any]) -> Page:
        self.set_view_length(len(view))
        start = (self.current_page - 1) * self.page_size
        items = list(view[start : start + self.page_size])
        return Page(
            items=items,
            page_number=self.current_page,
            total_pages=self.total_pages,
            total_records=len(view),
            page_size=self.page_size,
            start_index=start,
            end_index=start + len(items),
        )
