"""
Tag lifecycle tests — parsing free-text tag lists, resolving them to rows
and syncing a post's associations.
"""
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogrepo.models import Tag
from blogrepo.schemas import PostEdit, PostWrite
from blogrepo.services.content_repository import ContentRepository
from blogrepo.services import tag_service
from blogrepo.services.tag_service import (
    diff_tag_ids,
    get_post_tag_ids,
    normalize_tag_names,
    resolve_tags,
    split_tag_text,
    sync_post_tags,
)

from conftest import make_author, make_category, make_post, make_tag


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def test_split_tag_text_accepts_commas_semicolons_and_newlines():
    assert split_tag_text("python, web;backend\r\nasync\n\n") == ["python", "web", "backend", "async"]


def test_split_tag_text_empty():
    assert split_tag_text("") == []
    assert split_tag_text(None) == []
    assert split_tag_text(" , ; ") == []


def test_normalize_dedupes_by_slug_keeping_first_display_name():
    result = normalize_tag_names(["ASP.NET Core", "asp net core", "Python", "  python  "])
    assert result == {"aspnet-core": "ASP.NET Core", "asp-net-core": "asp net core", "python": "Python"}


def test_normalize_skips_names_without_slug_characters():
    assert normalize_tag_names(["!!!", "  ", "C#"]) == {"c": "C#"}


def test_normalize_truncates_long_names():
    result = normalize_tag_names(["x" * 250])
    slug, display = next(iter(result.items()))
    assert len(slug) == 100
    assert len(display) == 100


def test_diff_tag_ids():
    diff = diff_tag_ids({1, 2, 3}, [2, 3, 4])
    assert diff.to_add == {4}
    assert diff.to_remove == {1}


def test_post_write_accepts_tag_text():
    data = PostWrite(
        title="t", short_description="s", body="b", author_id=1, category_id=1, tags="a, b; c"
    )
    assert data.tags == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# Database operations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resolve_tags_reuses_existing_and_creates_missing(db_session: AsyncSession):
    existing = await make_tag(db_session, "python", "Python")

    tags, created = await resolve_tags(db_session, ["Python", "FastAPI"])

    assert [t.slug for t in tags] == ["python", "fastapi"]
    assert tags[0].id == existing.id
    assert [t.slug for t in created] == ["fastapi"]
    assert created[0].name == "FastAPI"


@pytest.mark.asyncio
async def test_sync_is_idempotent(db_session: AsyncSession):
    author = await make_author(db_session)
    category = await make_category(db_session)
    post = await make_post(db_session, author, category, "post")

    first = await sync_post_tags(db_session, post.id, ["python", "web"])
    assert first.changed is True
    assert sorted(first.created) == ["python", "web"]

    second = await sync_post_tags(db_session, post.id, ["Python", "web"])
    assert second.changed is False
    assert second.created == []

    tag_count = len((await db_session.execute(select(Tag))).scalars().all())
    assert tag_count == 2


@pytest.mark.asyncio
async def test_sync_swaps_tags_and_keeps_detached_tag(db_session: AsyncSession):
    author = await make_author(db_session)
    category = await make_category(db_session)
    dotnet = await make_tag(db_session, "dotnet")
    backend = await make_tag(db_session, "backend")
    post = await make_post(db_session, author, category, "post", tags=[dotnet, backend])

    result = await sync_post_tags(db_session, post.id, ["dotnet", "frontend"])

    frontend = (await db_session.execute(select(Tag).where(Tag.slug == "frontend"))).scalar_one()
    assert result.created == ["frontend"]
    assert result.added == {frontend.id}
    assert result.removed == {backend.id}
    assert await get_post_tag_ids(db_session, post.id) == {dotnet.id, frontend.id}
    # Untagging never deletes the tag itself.
    assert (await db_session.execute(select(Tag).where(Tag.slug == "backend"))).scalar_one_or_none() is not None


@pytest.mark.asyncio
async def test_sync_with_empty_list_removes_all_associations(db_session: AsyncSession):
    author = await make_author(db_session)
    category = await make_category(db_session)
    python = await make_tag(db_session, "python")
    post = await make_post(db_session, author, category, "post", tags=[python])

    result = await sync_post_tags(db_session, post.id, [])

    assert result.removed == {python.id}
    assert await get_post_tag_ids(db_session, post.id) == set()


@pytest.mark.asyncio
async def test_tags_shared_between_posts(db_session: AsyncSession, repo: ContentRepository):
    author = await make_author(db_session)
    category = await make_category(db_session)
    await db_session.commit()

    def edit(title: str) -> PostEdit:
        return PostEdit(
            title=title, short_description="s", body="b", author_id=author.id, category_id=category.id
        )

    first = await repo.create_or_update_post(edit("First"), ["python", "web"])
    second = await repo.create_or_update_post(edit("Second"), ["Python"])

    assert {t.slug for t in first.tags} == {"python", "web"}
    assert [t.id for t in second.tags] == [t.id for t in first.tags if t.slug == "python"]

    counts = {t.slug: t.post_count for t in await repo.get_tags()}
    assert counts == {"python": 2, "web": 1}


@pytest.mark.asyncio
async def test_delete_tag_detaches_it_from_posts(db_session: AsyncSession, repo: ContentRepository):
    author = await make_author(db_session)
    category = await make_category(db_session)
    python = await make_tag(db_session, "python")
    web = await make_tag(db_session, "web")
    post = await make_post(db_session, author, category, "post", tags=[python, web])
    await db_session.commit()

    assert await repo.delete_tag(python.id) is True
    assert await repo.delete_tag(python.id) is False

    detail = await repo.get_post_by_id(post.id, include_details=True)
    assert [t.slug for t in detail.tags] == ["web"]


@pytest.mark.asyncio
async def test_tag_created_concurrently_is_reused(
    db_session: AsyncSession, repo: ContentRepository, monkeypatch
):
    author = await make_author(db_session)
    category = await make_category(db_session)
    python = await make_tag(db_session, "python", "Python")
    await db_session.commit()
    python_id = python.id

    real_find_tags = tag_service.find_tags
    lookups = 0

    async def lookup_before_other_writer_commits(db, slugs):
        # The first lookup runs before the concurrent writer's tag is visible.
        nonlocal lookups
        lookups += 1
        if lookups == 1:
            return {}
        return await real_find_tags(db, slugs)

    monkeypatch.setattr(tag_service, "find_tags", lookup_before_other_writer_commits)

    post = await repo.create_or_update_post(
        PostEdit(
            title="My Post", short_description="s", body="b",
            author_id=author.id, category_id=category.id,
        ),
        ["python", "web"],
    )

    assert post.slug == "my-post"
    assert {t.slug: t.id for t in post.tags}["python"] == python_id
    slugs = sorted((await db_session.execute(select(Tag.slug))).scalars().all())
    assert slugs == ["python", "web"]


@pytest.mark.asyncio
async def test_resolve_tags_reports_only_rows_it_inserted(db_session: AsyncSession, monkeypatch):
    await make_tag(db_session, "python")

    real_find_tags = tag_service.find_tags
    lookups = 0

    async def stale_first_lookup(db, slugs):
        nonlocal lookups
        lookups += 1
        return {} if lookups == 1 else await real_find_tags(db, slugs)

    monkeypatch.setattr(tag_service, "find_tags", stale_first_lookup)

    tags, created = await resolve_tags(db_session, ["python", "rust"])

    assert [t.slug for t in tags] == ["python", "rust"]
    assert [t.slug for t in created] == ["rust"]
