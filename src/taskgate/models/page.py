"""Paginated result container."""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a scoped listing."""

    items: list[T]
    total: int
    page: int
    limit: int

    @computed_field
    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
