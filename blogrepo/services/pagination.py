"""
Pagination engine — page-number clamping and slicing.

Everything here is synchronous and side-effect free: it runs after the
data for a query has been fetched, so the result never depends on when a
page is requested relative to concurrent writes.
"""
import math
from dataclasses import dataclass
from typing import Sequence, TypeVar

from blogrepo.config import settings

T = TypeVar("T")


@dataclass(frozen=True)
class PageWindow:
    page_number: int
    page_size: int
    total_count: int
    total_pages: int

    @property
    def offset(self) -> int:
        """Index of the first item on the page within the full sequence."""
        return (self.page_number - 1) * self.page_size


def clamp_page_size(page_size: int, max_page_size: int | None = None) -> int:
    """Clamp *page_size* into ``[1, max_page_size]``."""
    ceiling = max_page_size if max_page_size is not None else settings.MAX_PAGE_SIZE
    return max(1, min(page_size, ceiling))


def compute_window(
    total_count: int,
    page_number: int,
    page_size: int,
    max_page_size: int | None = None,
) -> PageWindow:
    """
    Return the page window for a sequence of *total_count* items.

    Out-of-range page numbers are clamped rather than rejected: anything
    past the last page maps to the last page, anything below 1 (or any
    page of an empty sequence) maps to page 1.
    """
    page_size = clamp_page_size(page_size, max_page_size)
    total_count = max(total_count, 0)
    total_pages = math.ceil(total_count / page_size) if total_count > 0 else 0
    page_number = max(1, min(page_number, total_pages)) if total_pages else 1
    return PageWindow(
        page_number=page_number,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
    )


def paginate(
    items: Sequence[T],
    page_number: int,
    page_size: int,
    max_page_size: int | None = None,
) -> tuple[list[T], PageWindow]:
    """Slice the already-ordered *items* and return ``(page_items, window)``."""
    window = compute_window(len(items), page_number, page_size, max_page_size)
    page = list(items[window.offset:window.offset + window.page_size])
    return page, window
