# FILE: app/schemas/common.py
from __future__ import annotations

from pydantic import BaseModel


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


def page_meta(page: int, limit: int, total: int) -> PageMeta:
    pages = (total + limit - 1) // limit if limit else 0
    return PageMeta(page=page, limit=limit, total=total, pages=pages)
