from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from blogrepo.cache import LookupCache
from blogrepo.config import settings
from blogrepo.database import get_db
from blogrepo.schemas import PostQuery
from blogrepo.services.content_repository import ContentRepository


class PaginationParams:
    """
    Reusable FastAPI dependency that parses paging query parameters.

    Usage in a router::

        @router.get("/posts")
        async def list_posts(pagination: PaginationParams = Depends()):
            ...

    Attributes
    ----------
    page:
        1-based page number (minimum 1).  Pages past the end are clamped
        by the pagination engine, not rejected here.
    page_size:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``
        regardless of the value supplied by the caller.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            description=f"Number of items returned per page (max {settings.MAX_PAGE_SIZE}).",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)


def post_query_params(
    keyword: str | None = Query(None, description="Case-insensitive match on title, description or body."),
    category_id: int | None = Query(None),
    category_slug: str | None = Query(None),
    author_id: int | None = Query(None),
    author_slug: str | None = Query(None),
    tag_id: int | None = Query(None),
    tag_slug: str | None = Query(None),
    year: int | None = Query(None, ge=1),
    month: int | None = Query(None, ge=1, le=12),
    published_only: bool = Query(False),
) -> PostQuery:
    return PostQuery(
        keyword=keyword,
        category_id=category_id,
        category_slug=category_slug,
        author_id=author_id,
        author_slug=author_slug,
        tag_id=tag_id,
        tag_slug=tag_slug,
        year=year,
        month=month,
        published_only=published_only,
    )


def get_author_cache(request: Request) -> LookupCache:
    """The process-wide author cache created in the application lifespan."""
    return request.app.state.author_cache


def get_repository(
    db: AsyncSession = Depends(get_db),
    author_cache: LookupCache = Depends(get_author_cache),
) -> ContentRepository:
    return ContentRepository(db, author_cache)
