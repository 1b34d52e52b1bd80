from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 3
MAX_PER_PAGE = 100


class SearchTask(BaseModel):
    """Unit of work carried by the search queue.

    Wire format: ``{"query": str, "page": int, "per_page": int}``. Values are
    clamped by :meth:`normalized` at the producer; consumers take them as-is.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    query: str
    page: int = Field(default=DEFAULT_PAGE, strict=True)
    per_page: int = Field(default=DEFAULT_PER_PAGE, strict=True)

    @classmethod
    def normalized(cls, query: str, page: Optional[int] = None, per_page: Optional[int] = None) -> "SearchTask":
        if page is None or page <= 0:
            page = DEFAULT_PAGE
        if per_page is None or per_page <= 0 or per_page > MAX_PER_PAGE:
            per_page = DEFAULT_PER_PAGE
        return cls(query=query, page=page, per_page=per_page)

    def to_wire(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_wire(cls, body: str | bytes) -> "SearchTask":
        return cls.model_validate_json(body)


__all__ = ["SearchTask", "DEFAULT_PAGE", "DEFAULT_PER_PAGE", "MAX_PER_PAGE"]
