from dataclasses import dataclass
from typing import Generic, TypeVar


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """Page of search results. next_page_id is opaque and None on the last page"""

    items: list[T]
    next_page_id: str | None = None
