from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from blogrepo.cache import LookupCache
from blogrepo.database import get_db
from blogrepo.dependencies import get_author_cache
from blogrepo.models import Author, Category, Post, Tag
from blogrepo.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])

@router.get("", response_model=MetricsResponse)
async def get_metrics(
    db: AsyncSession = Depends(get_db),
    author_cache: LookupCache = Depends(get_author_cache),
):

    total_posts = (await db.execute(select(func.count()).select_from(Post))).scalar_one()

    published_posts = (
        await db.execute(select(func.count()).select_from(Post).where(Post.published.is_(True)))
    ).scalar_one()

    total_authors = (await db.execute(select(func.count()).select_from(Author))).scalar_one()

    total_categories = (await db.execute(select(func.count()).select_from(Category))).scalar_one()

    total_tags = (await db.execute(select(func.count()).select_from(Tag))).scalar_one()

    return MetricsResponse(
        total_posts=total_posts,
        published_posts=published_posts,
        total_authors=total_authors,
        total_categories=total_categories,
        total_tags=total_tags,
        cache_info=author_cache.stats,
    )
