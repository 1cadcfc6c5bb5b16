"""Uniform response envelope and pagination helpers."""

import math
from typing import Any, Generic, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel, ConfigDict, model_serializer
from pydantic.alias_generators import to_camel

T = TypeVar("T")

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class PaginationMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class ApiResponse(BaseModel, Generic[T]):
    """
    ``{success, message?, data, details?}``

    ``data`` is always present (null on errors); ``message`` and
    ``details`` are omitted when unset.
    """

    success: bool = True
    message: str | None = None
    data: T | None = None
    details: dict[str, str] | None = None

    @model_serializer(mode="wrap")
    def _drop_unset_optionals(self, handler):
        payload = handler(self)
        for key in ("message", "details"):
            if payload.get(key) is None:
                payload.pop(key, None)
        return payload


class PaginatedResponse(ApiResponse[list[T]], Generic[T]):
    pagination: PaginationMeta


class PageParams:
    """Query dependency: ``?page=&limit=`` with offset derived from both."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number, starting at 1"),
        limit: int = Query(
            default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Items per page"
        ),
    ):
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def ok(data: Any = None, message: str = "Success") -> ApiResponse:
    return ApiResponse(message=message, data=data)


def paginated(
    items: Sequence[Any], params: PageParams, total: int, message: str
) -> PaginatedResponse:
    return PaginatedResponse(
        message=message,
        data=list(items),
        pagination=PaginationMeta.build(params.page, params.limit, total),
    )


def error_body(message: str, details: dict[str, str] | None = None) -> dict:
    """JSON-ready body for exception handlers and middleware."""
    return ApiResponse(success=False, message=message, details=details).model_dump(
        mode="json"
    )
