from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from dbstudio.exceptions.errors import ValidationError


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            if isinstance(value, bool) or float(value) != int(value):
                raise ValueError(value)
            value = int(value)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValidationError(f"{label} must be a positive integer.") from e
    if value < 1:
        raise ValidationError(f"{label} must be a positive integer.")
    return value


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    page_size: int = 20

    def __post_init__(self) -> None:
        object.__setattr__(self, "page", _positive_int(self.page, "Page"))
        object.__setattr__(self, "page_size", _positive_int(self.page_size, "Page size"))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def ensure_max(self, max_page_size: Optional[int]) -> "PageRequest":
        if max_page_size and self.page_size > max_page_size:
            raise ValidationError(f"Page size must not exceed {max_page_size}.")
        return self


@dataclass(frozen=True)
class PageWindow:
    page: int
    page_size: int
    offset: int
    total: int
    total_pages: int


def total_pages(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return -(-total // page_size)


def paginate(request: PageRequest, total: int) -> PageWindow:
    total = max(int(total or 0), 0)
    return PageWindow(
        page=request.page,
        page_size=request.page_size,
        offset=request.offset,
        total=total,
        total_pages=total_pages(total, request.page_size),
    )
