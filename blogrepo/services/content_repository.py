"""
Content repository — the public operations over authors, categories,
tags and posts.

Design notes
------------
- One ``ContentRepository`` per request, wrapping that request's
  ``AsyncSession``.  The only state shared between requests is the author
  ``LookupCache`` passed in by the caller.
- Every write runs inside ``_write``: the body flushes, ``_write`` commits,
  and any failure rolls the whole unit back.  A post and its tag
  associations are therefore committed together or not at all.
- Slug checks are advisory (``SlugIndex``); the unique constraints decide,
  and their ``IntegrityError`` surfaces as ``SlugConflictError``.
- Cache entries are invalidated after commit and before the method
  returns, under the cache's per-key lock.
- Paged post queries read one page of ids and the total count in a single
  statement (a ``count() OVER ()`` column), then load the page rows with
  their author, category and tags under the same conditions.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blogrepo.cache import LookupCache
from blogrepo.config import settings
from blogrepo.errors import (
    ContentError,
    DependentRecordsError,
    NotFoundError,
    SlugConflictError,
    StorageFailureError,
    ValidationFailedError,
)
from blogrepo.models import Author, Category, Post, Tag, post_tags
from blogrepo.schemas import (
    AuthorEdit,
    AuthorItem,
    CategoryEdit,
    CategoryItem,
    PaginationResult,
    PostDetail,
    PostEdit,
    PostItem,
    PostQuery,
    TagItem,
)
from blogrepo.services.pagination import clamp_page_size, compute_window
from blogrepo.services.query_builder import build_post_conditions, post_ordering
from blogrepo.services.slug_index import EntityType, SlugIndex, slugify
from blogrepo.services.tag_service import sync_post_tags

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_SLUG_TABLES = {
    EntityType.AUTHOR: "authors",
    EntityType.CATEGORY: "categories",
    EntityType.TAG: "tags",
    EntityType.POST: "posts",
}


def _slug_conflict_type(exc: IntegrityError) -> EntityType | None:
    """Return the entity type whose slug constraint *exc* violated, if any."""
    message = str(exc.orig).lower()
    for entity_type, table in _SLUG_TABLES.items():
        if f"uq_{table}_slug" in message or f"{table}.slug" in message:
            return entity_type
    return None


def _author_item(author: Author, post_count: int) -> AuthorItem:
    return AuthorItem.model_validate(author).model_copy(update={"post_count": post_count})


class ContentRepository:
    def __init__(
        self,
        db: AsyncSession,
        author_cache: LookupCache,
        slug_index: SlugIndex | None = None,
    ) -> None:
        self._db = db
        self._author_cache = author_cache
        self._slugs = slug_index or SlugIndex()

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _write(
        self,
        operation: str,
        entity_type: EntityType | None = None,
        slug: str | None = None,
    ):
        """
        Run the body as one transaction and commit it.

        Typed repository errors roll back and propagate unchanged.  A unique
        violation on the slug constraint of *entity_type*, the entity being
        written, becomes ``SlugConflictError`` for *slug*; any other database
        error is logged and raised as ``StorageFailureError``.
        """
        try:
            yield
            await self._db.commit()
        except ContentError:
            await self._db.rollback()
            raise
        except IntegrityError as exc:
            await self._db.rollback()
            conflict = _slug_conflict_type(exc)
            if conflict is not None and conflict is entity_type:
                logger.info("Slug conflict on %s caught by constraint during %s", conflict.value, operation)
                raise SlugConflictError(conflict.value, slug or "") from exc
            logger.exception("Integrity error during %s", operation)
            raise StorageFailureError(operation) from exc
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Storage failure during %s", operation)
            raise StorageFailureError(operation) from exc

    async def _read(self, operation: str, statement):
        """Execute a read statement, translating driver errors."""
        try:
            return await self._db.execute(statement)
        except SQLAlchemyError as exc:
            logger.exception("Storage failure during %s", operation)
            raise StorageFailureError(operation) from exc

    async def _normalized_slug(
        self, entity_type: EntityType, raw: str, entity_id: int | None
    ) -> str:
        slug = slugify(raw)
        if not slug:
            raise ValidationFailedError("slug", f"'{raw}' does not produce a usable slug")
        if await self._slugs.exists(self._db, entity_type, slug, exclude_id=entity_id):
            raise SlugConflictError(entity_type.value, slug)
        return slug

    async def _post_count(self, column, entity_id: int) -> int:
        result = await self._db.execute(
            select(func.count()).select_from(Post).where(column == entity_id)
        )
        return result.scalar_one()

    async def _invalidate_authors(self, *author_ids: int | None) -> None:
        for author_id in {a for a in author_ids if a is not None}:
            await self._author_cache.invalidate(author_id)

    # ------------------------------------------------------------------
    # Slugs
    # ------------------------------------------------------------------

    async def is_slug_existed(
        self, entity_type: EntityType | str, entity_id: int | None, slug: str
    ) -> bool:
        """Advisory check used by forms before they submit a write."""
        return await self._slugs.exists(self._db, entity_type, slug, exclude_id=entity_id)

    # ------------------------------------------------------------------
    # Posts — reads
    # ------------------------------------------------------------------

    def _post_with_details(self):
        return (
            select(Post)
            .options(
                joinedload(Post.author),
                joinedload(Post.category),
                selectinload(Post.tags),
            )
            .execution_options(populate_existing=True)
        )

    async def _page_of_post_ids(self, conditions, offset: int, limit: int) -> tuple[list[int], int | None]:
        """
        Return the ids on one page and the total match count.

        The count is a window column of the same statement, so both come
        from one snapshot.  It is None when the page is empty.
        """
        q = (
            select(Post.id, func.count().over().label("total_count"))
            .where(*conditions)
            .order_by(*post_ordering())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._read("list posts", q)).all()
        return [row.id for row in rows], (rows[0].total_count if rows else None)

    async def get_paged_posts(
        self, query: PostQuery, page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE
    ) -> PaginationResult[PostItem]:
        """
        Return one page of posts matching *query* in the default order.

        Only the requested page of ids is read, together with the total
        count.  An empty page falls back to a count so a page past the end
        can be clamped to the last one.  The page rows are then loaded with
        their relations under the same conditions, so a post that stopped
        matching in between is left out rather than returned with its new
        values.
        """
        conditions = build_post_conditions(query)
        page_size = clamp_page_size(page_size)
        page = max(page, 1)

        page_ids, total = await self._page_of_post_ids(conditions, (page - 1) * page_size, page_size)
        if total is not None:
            window = compute_window(total, page, page_size)
        else:
            count_q = select(func.count()).select_from(Post).where(*conditions)
            total = (await self._read("list posts", count_q)).scalar_one()
            window = compute_window(total, page, page_size)
            if total:
                page_ids, refreshed = await self._page_of_post_ids(conditions, window.offset, page_size)
                window = compute_window(refreshed or 0, window.page_number, page_size)

        items: list[PostItem] = []
        if page_ids:
            result = await self._read(
                "list posts",
                self._post_with_details().where(Post.id.in_(page_ids), *conditions),
            )
            by_id = {post.id: post for post in result.unique().scalars().all()}
            items = [PostItem.model_validate(by_id[pid]) for pid in page_ids if pid in by_id]

        return PaginationResult[PostItem](
            items=items,
            page_number=window.page_number,
            page_size=window.page_size,
            total_count=window.total_count,
            total_pages=window.total_pages,
        )

    async def get_post_by_id(self, post_id: int, include_details: bool = False) -> PostDetail | None:
        """
        Return the post, or None when it does not exist.

        With *include_details* the author, category and tags are loaded;
        otherwise those fields are left empty.
        """
        if include_details:
            q = self._post_with_details().where(Post.id == post_id)
        else:
            q = select(Post).where(Post.id == post_id).execution_options(populate_existing=True)
        post = (await self._read("get post", q)).unique().scalar_one_or_none()
        return PostDetail.model_validate(post) if post is not None else None

    async def get_post_by_slug(self, slug: str, published_only: bool = True) -> PostDetail | None:
        q = self._post_with_details().where(Post.slug == slugify(slug))
        if published_only:
            q = q.where(Post.published.is_(True), Post.posted_date <= _utcnow())
        post = (await self._read("get post", q)).unique().scalar_one_or_none()
        return PostDetail.model_validate(post) if post is not None else None

    # ------------------------------------------------------------------
    # Posts — writes
    # ------------------------------------------------------------------

    async def create_or_update_post(self, data: PostEdit, tag_names: Iterable[str] = ()) -> PostDetail:
        """
        Insert a new post (``data.id`` is None) or replace an existing one,
        then sync its tags to *tag_names* in the same transaction.

        Raises ``NotFoundError`` for an unknown post, author or category id
        and ``SlugConflictError`` when the slug belongs to another post.
        """
        raw_slug = data.slug if data.slug and data.slug.strip() else data.title
        slug = slugify(raw_slug)
        previous_author_id: int | None = None

        async with self._write("save post", EntityType.POST, slug):
            slug = await self._normalized_slug(EntityType.POST, raw_slug, data.id)
            if await self._db.get(Author, data.author_id, populate_existing=True) is None:
                raise NotFoundError(EntityType.AUTHOR.value, data.author_id)
            if await self._db.get(Category, data.category_id, populate_existing=True) is None:
                raise NotFoundError(EntityType.CATEGORY.value, data.category_id)

            fields = {
                "title": data.title,
                "short_description": data.short_description,
                "body": data.body,
                "meta": data.meta,
                "slug": slug,
                "image_url": data.image_url,
                "published": data.published,
                "author_id": data.author_id,
                "category_id": data.category_id,
            }
            if data.id is None:
                post = Post(**fields, view_count=0, posted_date=_utcnow(), modified_date=None)
                self._db.add(post)
            else:
                post = await self._db.get(Post, data.id, populate_existing=True)
                if post is None:
                    raise NotFoundError(EntityType.POST.value, data.id)
                previous_author_id = post.author_id
                for name, value in fields.items():
                    setattr(post, name, value)
                post.modified_date = _utcnow()
            await self._db.flush()

            sync = await sync_post_tags(self._db, post.id, tag_names)
            post_id = post.id

        await self._invalidate_authors(previous_author_id, data.author_id)
        logger.info(
            "Saved post %s (%s); tags +%d -%d, %d new",
            post_id, "created" if data.id is None else "updated",
            len(sync.added), len(sync.removed), len(sync.created),
        )
        return await self.get_post_by_id(post_id, include_details=True)

    async def delete_post(self, post_id: int) -> bool:
        """
        Delete the post and its tag associations.  Tags themselves are kept.

        Returns False when the post does not exist.
        """
        async with self._write("delete post"):
            post = await self._db.get(Post, post_id, populate_existing=True)
            if post is None:
                return False
            author_id = post.author_id
            await self._db.execute(delete(post_tags).where(post_tags.c.post_id == post_id))
            await self._db.delete(post)
            await self._db.flush()

        await self._invalidate_authors(author_id)
        logger.info("Deleted post %s", post_id)
        return True

    async def set_post_published(self, post_id: int, published: bool | None = None) -> PostDetail | None:
        """
        Set the published flag, or flip it when *published* is None.

        ``posted_date`` is left alone; ``modified_date`` is stamped.
        Returns None when the post does not exist.
        """
        async with self._write("publish post"):
            post = await self._db.get(Post, post_id, populate_existing=True)
            if post is None:
                return None
            post.published = (not post.published) if published is None else published
            post.modified_date = _utcnow()
            author_id = post.author_id
            await self._db.flush()

        await self._invalidate_authors(author_id)
        return await self.get_post_by_id(post_id, include_details=True)

    async def increase_view_count(self, post_id: int) -> bool:
        async with self._write("count post view"):
            result = await self._db.execute(
                update(Post)
                .where(Post.id == post_id)
                .values(view_count=Post.view_count + 1)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Authors
    # ------------------------------------------------------------------

    def _authors_with_counts(self, published_only: bool = False):
        join_on = Post.author_id == Author.id
        if published_only:
            join_on = and_(join_on, Post.published.is_(True))
        return (
            select(Author, func.count(Post.id).label("post_count"))
            .outerjoin(Post, join_on)
            .group_by(Author.id)
            .execution_options(populate_existing=True)
        )

    async def get_authors(self) -> list[AuthorItem]:
        q = self._authors_with_counts().order_by(Author.full_name, Author.id)
        rows = (await self._read("list authors", q)).all()
        return [_author_item(author, count) for author, count in rows]

    async def get_paged_authors(
        self, name: str | None = None, page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE
    ) -> PaginationResult[AuthorItem]:
        """Page through authors ordered by name, optionally filtered by *name*."""
        condition = Author.full_name.icontains(name.strip(), autoescape=True) if name and name.strip() else None

        count_q = select(func.count()).select_from(Author)
        rows_q = self._authors_with_counts()
        if condition is not None:
            count_q = count_q.where(condition)
            rows_q = rows_q.where(condition)

        total = (await self._read("list authors", count_q)).scalar_one()
        window = compute_window(total, page, page_size)
        rows = (
            await self._read(
                "list authors",
                rows_q.order_by(Author.full_name, Author.id).offset(window.offset).limit(window.page_size),
            )
        ).all()

        return PaginationResult[AuthorItem](
            items=[_author_item(author, count) for author, count in rows],
            page_number=window.page_number,
            page_size=window.page_size,
            total_count=window.total_count,
            total_pages=window.total_pages,
        )

    async def _load_author(self, author_id: int) -> AuthorItem | None:
        q = self._authors_with_counts().where(Author.id == author_id)
        row = (await self._read("get author", q)).first()
        return _author_item(*row) if row is not None else None

    async def get_author_by_id(self, author_id: int) -> AuthorItem | None:
        """Read-through cached author lookup."""

        async def loader() -> dict | None:
            item = await self._load_author(author_id)
            return item.model_dump(mode="json") if item is not None else None

        data = await self._author_cache.get_or_load(author_id, loader)
        return AuthorItem.model_validate(data) if data is not None else None

    async def add_or_update_author(self, data: AuthorEdit) -> AuthorItem:
        """
        Insert a new author (``data.id`` is None) or update an existing one.

        The image URL is not part of *data*; see ``set_author_image_url``.
        """
        async with self._write("save author", EntityType.AUTHOR, slugify(data.slug)):
            slug = await self._normalized_slug(EntityType.AUTHOR, data.slug, data.id)
            if data.id is None:
                author = Author(full_name=data.full_name, email=data.email, bio=data.bio, slug=slug)
                self._db.add(author)
            else:
                author = await self._db.get(Author, data.id, populate_existing=True)
                if author is None:
                    raise NotFoundError(EntityType.AUTHOR.value, data.id)
                author.full_name = data.full_name
                author.email = data.email
                author.bio = data.bio
                author.slug = slug
            await self._db.flush()
            author_id = author.id

        await self._author_cache.invalidate(author_id)
        logger.info("Saved author %s (%s)", author_id, slug)
        return await self._load_author(author_id)

    async def delete_author(self, author_id: int) -> bool:
        """
        Delete an author without posts.

        Returns False when the author does not exist and raises
        ``DependentRecordsError`` while posts still reference it.
        """
        async with self._write("delete author"):
            author = await self._db.get(Author, author_id, populate_existing=True)
            if author is None:
                return False
            post_count = await self._post_count(Post.author_id, author_id)
            if post_count:
                raise DependentRecordsError(EntityType.AUTHOR.value, author_id, post_count)
            await self._db.delete(author)
            await self._db.flush()

        await self._author_cache.invalidate(author_id)
        logger.info("Deleted author %s", author_id)
        return True

    async def set_author_image_url(self, author_id: int, image_url: str) -> str | None:
        """
        Point the author at a new image and return the previous URL.

        The caller removes the old file once this returns.
        """
        async with self._write("set author image"):
            author = await self._db.get(Author, author_id, populate_existing=True)
            if author is None:
                raise NotFoundError(EntityType.AUTHOR.value, author_id)
            previous = author.image_url
            author.image_url = image_url
            await self._db.flush()

        await self._author_cache.invalidate(author_id)
        return previous

    async def get_authors_with_most_posts(self, limit: int) -> list[AuthorItem]:
        """
        Authors ranked by number of published posts, ties by ascending id.

        ``post_count`` on each item is the published count.
        """
        if limit <= 0:
            return []
        post_count = func.count(Post.id)
        q = (
            self._authors_with_counts(published_only=True)
            .order_by(post_count.desc(), Author.id.asc())
            .limit(limit)
        )
        rows = (await self._read("rank authors", q)).all()
        return [_author_item(author, count) for author, count in rows]

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def get_categories(self) -> list[CategoryItem]:
        q = (
            select(Category, func.count(Post.id).label("post_count"))
            .outerjoin(Post, Post.category_id == Category.id)
            .group_by(Category.id)
            .order_by(Category.name, Category.id)
        )
        rows = (await self._read("list categories", q)).all()
        return [
            CategoryItem.model_validate(category).model_copy(update={"post_count": count})
            for category, count in rows
        ]

    async def add_or_update_category(self, data: CategoryEdit) -> CategoryItem:
        async with self._write("save category", EntityType.CATEGORY, slugify(data.slug)):
            slug = await self._normalized_slug(EntityType.CATEGORY, data.slug, data.id)
            if data.id is None:
                category = Category(name=data.name, description=data.description, slug=slug)
                self._db.add(category)
            else:
                category = await self._db.get(Category, data.id, populate_existing=True)
                if category is None:
                    raise NotFoundError(EntityType.CATEGORY.value, data.id)
                category.name = data.name
                category.description = data.description
                category.slug = slug
            await self._db.flush()
            post_count = await self._post_count(Post.category_id, category.id)
            item = CategoryItem.model_validate(category).model_copy(update={"post_count": post_count})

        logger.info("Saved category %s (%s)", item.id, slug)
        return item

    async def delete_category(self, category_id: int) -> bool:
        async with self._write("delete category"):
            category = await self._db.get(Category, category_id, populate_existing=True)
            if category is None:
                return False
            post_count = await self._post_count(Post.category_id, category_id)
            if post_count:
                raise DependentRecordsError(EntityType.CATEGORY.value, category_id, post_count)
            await self._db.delete(category)
            await self._db.flush()

        logger.info("Deleted category %s", category_id)
        return True

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def get_tags(self) -> list[TagItem]:
        q = (
            select(Tag, func.count(post_tags.c.post_id).label("post_count"))
            .outerjoin(post_tags, post_tags.c.tag_id == Tag.id)
            .group_by(Tag.id)
            .order_by(Tag.name, Tag.id)
        )
        rows = (await self._read("list tags", q)).all()
        return [TagItem.model_validate(tag).model_copy(update={"post_count": count}) for tag, count in rows]

    async def delete_tag(self, tag_id: int) -> bool:
        """
        Delete a tag and detach it from every post.

        Untagging a post never deletes tags, so this is how orphaned tags
        are cleaned up.
        """
        async with self._write("delete tag"):
            tag = await self._db.get(Tag, tag_id, populate_existing=True)
            if tag is None:
                return False
            await self._db.execute(delete(post_tags).where(post_tags.c.tag_id == tag_id))
            await self._db.delete(tag)
            await self._db.flush()

        logger.info("Deleted tag %s", tag_id)
        return True
