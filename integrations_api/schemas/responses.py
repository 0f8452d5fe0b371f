from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    data: T


class PageResponse(BaseModel, Generic[T]):
    data: list[T]
    next_cursor: str | None = None


class ErrorResponse(BaseModel):
    message: str
