"""
Slug normalization and uniqueness tests.
"""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from blogrepo.errors import SlugConflictError, ValidationFailedError
from blogrepo.schemas import AuthorEdit, CategoryEdit, PostEdit
from blogrepo.services.content_repository import ContentRepository
from blogrepo.services.slug_index import EntityType, SlugIndex, slugify

from conftest import make_author, make_category, make_post, make_tag


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Hello World", "hello-world"),
        ("  Trailing  spaces  ", "trailing-spaces"),
        ("snake_case_title", "snake-case-title"),
        ("Đà Lạt trip", "da-lat-trip"),
        ("Crème brûlée", "creme-brulee"),
        ("C# & .NET!", "c-net"),
        ("a---b", "a-b"),
        ("!!!", ""),
    ],
)
def test_slugify(text, expected):
    assert slugify(text) == expected


@pytest.mark.asyncio
async def test_exists_per_entity_type(db_session: AsyncSession):
    await make_author(db_session, "john-doe", "John Doe")
    index = SlugIndex()

    assert await index.exists(db_session, EntityType.AUTHOR, "john-doe") is True
    assert await index.exists(db_session, "author", "John Doe") is True
    # Slugs are unique per type, not globally.
    assert await index.exists(db_session, EntityType.CATEGORY, "john-doe") is False


@pytest.mark.asyncio
async def test_exists_excludes_the_entity_being_edited(db_session: AsyncSession):
    author = await make_author(db_session, "john-doe", "John Doe")
    index = SlugIndex()

    assert await index.exists(db_session, EntityType.AUTHOR, "john-doe", exclude_id=author.id) is False
    assert await index.exists(db_session, EntityType.AUTHOR, "john-doe", exclude_id=0) is True


@pytest.mark.asyncio
async def test_is_slug_existed_for_every_type(db_session: AsyncSession, repo: ContentRepository):
    author = await make_author(db_session, "jane")
    category = await make_category(db_session, "news")
    await make_tag(db_session, "python")
    post = await make_post(db_session, author, category, "hello")

    assert await repo.is_slug_existed(EntityType.AUTHOR, None, "jane")
    assert await repo.is_slug_existed(EntityType.CATEGORY, None, "news")
    assert await repo.is_slug_existed(EntityType.TAG, None, "python")
    assert await repo.is_slug_existed(EntityType.POST, None, "hello")
    assert not await repo.is_slug_existed(EntityType.POST, post.id, "hello")
    assert not await repo.is_slug_existed(EntityType.POST, None, "missing")


@pytest.mark.asyncio
async def test_duplicate_author_slug_is_rejected(repo: ContentRepository):
    await repo.add_or_update_author(AuthorEdit(full_name="John Doe", email="john@example.com", slug="john-doe"))

    with pytest.raises(SlugConflictError) as exc_info:
        await repo.add_or_update_author(
            AuthorEdit(full_name="Johnny Doe", email="johnny@example.com", slug="John Doe")
        )
    assert exc_info.value.slug == "john-doe"
    assert exc_info.value.http_status == 409

    authors = await repo.get_authors()
    assert [a.full_name for a in authors] == ["John Doe"]


@pytest.mark.asyncio
async def test_update_keeping_own_slug_is_allowed(repo: ContentRepository):
    created = await repo.add_or_update_author(
        AuthorEdit(full_name="John Doe", email="john@example.com", slug="john-doe")
    )
    updated = await repo.add_or_update_author(
        AuthorEdit(id=created.id, full_name="John A. Doe", email="john@example.com", slug="john-doe")
    )
    assert updated.id == created.id
    assert updated.full_name == "John A. Doe"


@pytest.mark.asyncio
async def test_duplicate_category_slug_is_rejected(repo: ContentRepository):
    await repo.add_or_update_category(CategoryEdit(name="News", description="d", slug="news"))
    with pytest.raises(SlugConflictError):
        await repo.add_or_update_category(CategoryEdit(name="More news", description="d", slug="NEWS"))


@pytest.mark.asyncio
async def test_post_slug_derived_from_title_and_checked(db_session: AsyncSession, repo: ContentRepository):
    author = await make_author(db_session)
    category = await make_category(db_session)
    await db_session.commit()

    data = PostEdit(
        title="Hello World", short_description="s", body="b", author_id=author.id, category_id=category.id
    )
    created = await repo.create_or_update_post(data)
    assert created.slug == "hello-world"

    with pytest.raises(SlugConflictError):
        await repo.create_or_update_post(data)


@pytest.mark.asyncio
async def test_slug_without_usable_characters_is_invalid(repo: ContentRepository):
    with pytest.raises(ValidationFailedError):
        await repo.add_or_update_author(AuthorEdit(full_name="X", email="x@example.com", slug="???"))


class _AlwaysFreeSlugIndex(SlugIndex):
    """Lets every write reach the database, as a concurrent writer would."""

    async def exists(self, db, entity_type, slug, exclude_id=None) -> bool:
        return False


@pytest.mark.asyncio
async def test_constraint_rejects_duplicate_the_advisory_check_missed(
    db_session: AsyncSession, author_cache
):
    repo = ContentRepository(db_session, author_cache, slug_index=_AlwaysFreeSlugIndex())
    await repo.add_or_update_author(AuthorEdit(full_name="John Doe", email="john@example.com", slug="john-doe"))

    with pytest.raises(SlugConflictError) as exc_info:
        await repo.add_or_update_author(
            AuthorEdit(full_name="Johnny Doe", email="johnny@example.com", slug="John Doe")
        )
    assert exc_info.value.entity_type == "author"
    assert exc_info.value.slug == "john-doe"
    assert [a.full_name for a in await repo.get_authors()] == ["John Doe"]


@pytest.mark.asyncio
async def test_constraint_rejects_duplicate_post_slug(db_session: AsyncSession, author_cache):
    author = await make_author(db_session)
    category = await make_category(db_session)
    await make_post(db_session, author, category, "hello-world")
    await db_session.commit()
    author_id, category_id = author.id, category.id

    repo = ContentRepository(db_session, author_cache, slug_index=_AlwaysFreeSlugIndex())
    with pytest.raises(SlugConflictError) as exc_info:
        await repo.create_or_update_post(
            PostEdit(
                title="Hello World", short_description="s", body="b",
                author_id=author_id, category_id=category_id,
            ),
            ["python"],
        )
    assert exc_info.value.entity_type == "post"
    assert exc_info.value.slug == "hello-world"
