"""
Test infrastructure for the content repository.

Strategy
--------
- SQLite in-memory via aiosqlite; StaticPool makes every session share the
  single connection that holds the in-memory database.
- Foreign keys are switched on for the test engine as for production, so
  the RESTRICT rules on posts are exercised.
- All tables are created fresh before each test and dropped after.
- Each test gets a brand-new author LookupCache on a MemoryBackend; the
  same instance is installed on ``app.state`` for HTTP tests, so cache
  behaviour is exercised without Redis.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blogrepo.cache import LookupCache, MemoryBackend
from blogrepo.database import Base, get_db, install_sqlite_pragmas
from blogrepo.main import app
from blogrepo.middleware import install_query_counter
from blogrepo.models import Author, Category, Post, Tag, post_tags
from blogrepo.services.content_repository import ContentRepository

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)
install_sqlite_pragmas(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def author_cache() -> LookupCache:
    """A fresh author cache per test, also installed on the app."""
    cache = LookupCache(MemoryBackend(), namespace="authors", ttl=300)
    app.state.author_cache = cache
    return cache


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def repo(db_session: AsyncSession, author_cache: LookupCache) -> ContentRepository:
    return ContentRepository(db_session, author_cache)


@pytest_asyncio.fixture
async def async_client(author_cache: LookupCache) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Seeding helpers — insert rows directly so tests control timestamps
# ---------------------------------------------------------------------------

BASE_TIME = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


async def make_author(db: AsyncSession, slug: str = "jane-doe", full_name: str = "Jane Doe") -> Author:
    author = Author(full_name=full_name, email=f"{slug}@example.com", slug=slug)
    db.add(author)
    await db.flush()
    return author


async def make_category(db: AsyncSession, slug: str = "backend", name: str = "Backend") -> Category:
    category = Category(name=name, description=f"All about {name}", slug=slug)
    db.add(category)
    await db.flush()
    return category


async def make_post(
    db: AsyncSession,
    author: Author,
    category: Category,
    slug: str,
    *,
    title: str | None = None,
    body: str = "Body text",
    short_description: str = "Short description",
    published: bool = True,
    posted_date: datetime = BASE_TIME,
    tags: list[Tag] = (),
) -> Post:
    post = Post(
        title=title or slug.replace("-", " ").title(),
        short_description=short_description,
        body=body,
        slug=slug,
        published=published,
        posted_date=posted_date,
        author_id=author.id,
        category_id=category.id,
    )
    db.add(post)
    await db.flush()
    if tags:
        await db.execute(insert(post_tags), [{"post_id": post.id, "tag_id": t.id} for t in tags])
    return post


async def make_tag(db: AsyncSession, slug: str, name: str | None = None) -> Tag:
    tag = Tag(name=name or slug, slug=slug)
    db.add(tag)
    await db.flush()
    return tag


def hours_before(hours: int) -> datetime:
    return BASE_TIME - timedelta(hours=hours)
