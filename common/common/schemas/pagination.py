"""페이지네이션 공통 스키마."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """페이지 단위 목록 응답. total 은 필터 기준 전체 개수다."""

    items: list[T]
    total: int
    page: int
    page_size: int
