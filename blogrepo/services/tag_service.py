"""
Tag lifecycle — free-text tag lists to persisted tags and post associations.

Design notes
------------
- Resolution is split in two: ``normalize_tag_names`` and ``diff_tag_ids``
  are pure functions, and only ``resolve_tags`` / ``sync_post_tags`` touch
  the database.
- Sync writes only the join rows that actually change, so re-applying the
  same tag list is a no-op.
- Tags are shared between posts and are never deleted here; removing a
  tag from a post only removes the association row.
- Functions flush but do not commit; the repository owns the transaction.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from blogrepo.models import Tag, post_tags
from blogrepo.services.slug_index import slugify

logger = logging.getLogger(__name__)

_TAG_SEPARATORS_RE = re.compile(r"[,;\r\n]+")
_WHITESPACE_RE = re.compile(r"\s+")
# Matches the width of the tags.name and tags.slug columns.
_MAX_TAG_LENGTH = 100

# Dialect inserts that support ON CONFLICT DO NOTHING.
_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def split_tag_text(text: str | None) -> list[str]:
    """Split "python, web; backend" style input into tag names."""
    return [part.strip() for part in _TAG_SEPARATORS_RE.split(text or "") if part.strip()]


def normalize_tag_names(names: Iterable[str]) -> dict[str, str]:
    """
    Map each tag's slug to its display name.

    Keeps first-seen order, drops later duplicates of the same slug and
    skips names that normalize to an empty slug.
    """
    normalized: dict[str, str] = {}
    for raw in names:
        display = _WHITESPACE_RE.sub(" ", raw or "").strip()[:_MAX_TAG_LENGTH]
        slug = slugify(display)[:_MAX_TAG_LENGTH].strip("-")
        if slug and slug not in normalized:
            normalized[slug] = display
    return normalized


@dataclass(frozen=True)
class TagDiff:
    to_add: frozenset[int]
    to_remove: frozenset[int]


def diff_tag_ids(current: Iterable[int], target: Iterable[int]) -> TagDiff:
    current_ids, target_ids = set(current), set(target)
    return TagDiff(
        to_add=frozenset(target_ids - current_ids),
        to_remove=frozenset(current_ids - target_ids),
    )


@dataclass
class TagSyncResult:
    created: list[str] = field(default_factory=list)
    added: set[int] = field(default_factory=set)
    removed: set[int] = field(default_factory=set)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.added or self.removed)


# ---------------------------------------------------------------------------
# Database operations
# ---------------------------------------------------------------------------

async def find_tags(db: AsyncSession, slugs: Iterable[str]) -> dict[str, Tag]:
    result = await db.execute(select(Tag).where(Tag.slug.in_(sorted(slugs))))
    return {tag.slug: tag for tag in result.scalars().all()}


def _insert_ignoring_duplicates(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    return _DIALECT_INSERTS[dialect](Tag.__table__)


async def resolve_tags(db: AsyncSession, names: Iterable[str]) -> tuple[list[Tag], list[Tag]]:
    """
    Return ``(tags, created)`` for *names*, creating tags that do not exist.

    *tags* follows the order of the normalized input.  Missing tags are
    inserted with ``ON CONFLICT DO NOTHING`` and then re-read, so a tag
    created by a concurrent writer after the lookup is reused rather than
    failing the whole write on ``uq_tags_slug``.
    """
    wanted = normalize_tag_names(names)
    if not wanted:
        return [], []

    existing = await find_tags(db, wanted)
    missing = [slug for slug in wanted if slug not in existing]

    created: list[Tag] = []
    if missing:
        stmt = (
            _insert_ignoring_duplicates(db)
            .values([{"name": wanted[slug], "slug": slug} for slug in missing])
            .on_conflict_do_nothing(index_elements=["slug"])
            .returning(Tag.__table__.c.slug)
        )
        inserted = set((await db.execute(stmt)).scalars().all())
        existing.update(await find_tags(db, missing))
        created = [existing[slug] for slug in missing if slug in inserted]
        if created:
            logger.info("Created %d tag(s): %s", len(created), ", ".join(t.slug for t in created))
        if len(inserted) < len(missing):
            logger.info("Reused %d tag(s) created concurrently", len(missing) - len(inserted))

    return [existing[slug] for slug in wanted], created


async def get_post_tag_ids(db: AsyncSession, post_id: int) -> set[int]:
    result = await db.execute(select(post_tags.c.tag_id).where(post_tags.c.post_id == post_id))
    return set(result.scalars().all())


async def sync_post_tags(db: AsyncSession, post_id: int, names: Iterable[str]) -> TagSyncResult:
    """
    Make the tag associations of *post_id* exactly match *names*.

    Associations present in both the current and the target set are left
    untouched.
    """
    tags, created = await resolve_tags(db, names)
    current = await get_post_tag_ids(db, post_id)
    diff = diff_tag_ids(current, (tag.id for tag in tags))

    if diff.to_remove:
        await db.execute(
            delete(post_tags).where(
                post_tags.c.post_id == post_id,
                post_tags.c.tag_id.in_(sorted(diff.to_remove)),
            )
        )
    if diff.to_add:
        await db.execute(
            insert(post_tags),
            [{"post_id": post_id, "tag_id": tag_id} for tag_id in sorted(diff.to_add)],
        )

    return TagSyncResult(
        created=[tag.slug for tag in created],
        added=set(diff.to_add),
        removed=set(diff.to_remove),
    )
