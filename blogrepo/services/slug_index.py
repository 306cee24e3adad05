"""
Slug index — normalization and per-type uniqueness checks for slugs.

``SlugIndex.exists`` is an advisory check: it lets the repository report a
friendly conflict before writing, but a concurrent writer can still slip in
between the check and the insert.  The ``uq_<table>_slug`` constraints are
the source of truth; the repository turns their ``IntegrityError`` into
``SlugConflictError``.
"""
import re
import unicodedata
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogrepo.models import Author, Category, Post, Tag

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")


class EntityType(str, Enum):
    AUTHOR = "author"
    CATEGORY = "category"
    TAG = "tag"
    POST = "post"


_SLUGGED_MODELS = {
    EntityType.AUTHOR: Author,
    EntityType.CATEGORY: Category,
    EntityType.TAG: Tag,
    EntityType.POST: Post,
}


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase ASCII slug derived from *text*."""
    # Fold accented characters to their ASCII base ("Đà Lạt" -> "da-lat").
    text = text.replace("đ", "d").replace("Đ", "D")
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


class SlugIndex:
    """Answers "is slug S taken by another entity of type T?"."""

    async def exists(
        self,
        db: AsyncSession,
        entity_type: EntityType | str,
        slug: str,
        exclude_id: int | None = None,
    ) -> bool:
        """
        Return True when *slug* belongs to an entity of *entity_type* other
        than *exclude_id*.

        *exclude_id* of None or 0 means "a new entity", so every match
        counts.  *slug* is compared after normalization.
        """
        model = _SLUGGED_MODELS[EntityType(entity_type)]
        q = select(model.id).where(model.slug == slugify(slug))
        if exclude_id:
            q = q.where(model.id != exclude_id)
        result = await db.execute(q.limit(1))
        return result.first() is not None
