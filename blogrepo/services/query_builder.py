"""
Post query builder — PostQuery -> WHERE clauses + ORDER BY.

Each populated field of a ``PostQuery`` contributes exactly one condition
and the caller ANDs them together; unset or blank fields contribute
nothing, so an empty query matches every post.

Filters given as slugs are expressed as sub-selects on the owning table
rather than resolved up front.  An unknown slug therefore matches no rows
and the query simply returns an empty page.
"""
from datetime import datetime, timezone

from sqlalchemy import ColumnElement, and_, extract, or_, select

from blogrepo.models import Author, Category, Post, Tag, post_tags
from blogrepo.schemas import PostQuery


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def build_post_conditions(
    query: PostQuery, now: datetime | None = None
) -> list[ColumnElement[bool]]:
    """Return the list of conditions selected by *query*."""
    now = now or datetime.now(timezone.utc)
    conditions: list[ColumnElement[bool]] = []

    if _present(query.keyword):
        keyword = query.keyword.strip()
        conditions.append(
            or_(
                Post.title.icontains(keyword, autoescape=True),
                Post.short_description.icontains(keyword, autoescape=True),
                Post.body.icontains(keyword, autoescape=True),
            )
        )

    if query.category_id is not None:
        conditions.append(Post.category_id == query.category_id)
    if _present(query.category_slug):
        conditions.append(
            Post.category_id.in_(
                select(Category.id).where(Category.slug == query.category_slug.strip().lower())
            )
        )

    if query.author_id is not None:
        conditions.append(Post.author_id == query.author_id)
    if _present(query.author_slug):
        conditions.append(
            Post.author_id.in_(
                select(Author.id).where(Author.slug == query.author_slug.strip().lower())
            )
        )

    if query.tag_id is not None:
        conditions.append(
            Post.id.in_(select(post_tags.c.post_id).where(post_tags.c.tag_id == query.tag_id))
        )
    if _present(query.tag_slug):
        conditions.append(
            Post.id.in_(
                select(post_tags.c.post_id)
                .join(Tag, Tag.id == post_tags.c.tag_id)
                .where(Tag.slug == query.tag_slug.strip().lower())
            )
        )

    if query.year is not None:
        conditions.append(extract("year", Post.posted_date) == query.year)
    if query.month is not None:
        conditions.append(extract("month", Post.posted_date) == query.month)

    if query.published_only:
        conditions.append(and_(Post.published.is_(True), Post.posted_date <= now))

    return conditions


def post_ordering() -> tuple:
    """Newest first; equal timestamps fall back to the larger id."""
    return (Post.posted_date.desc(), Post.id.desc())
