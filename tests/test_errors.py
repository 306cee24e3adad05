"""
Error envelope and database error translation tests.
"""
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from blogrepo.errors import (
    DependentRecordsError,
    NotFoundError,
    SlugConflictError,
    StorageFailureError,
)
from blogrepo.schemas import PostEdit
from blogrepo.services import content_repository
from blogrepo.services.content_repository import ContentRepository, _slug_conflict_type
from blogrepo.services.slug_index import EntityType

from conftest import make_author, make_category


def test_error_envelope():
    body = NotFoundError("post", 7).to_response()
    assert body == {
        "error": {
            "code": "NOT_FOUND",
            "message": "Post 7 not found",
            "entity_type": "post",
            "entity_id": 7,
        }
    }


def test_status_codes():
    assert NotFoundError("author", 1).http_status == 404
    assert SlugConflictError("author", "x").http_status == 409
    assert DependentRecordsError("category", 1, 3).http_status == 409
    assert StorageFailureError("list posts").http_status == 503


@pytest.mark.parametrize(
    "message, expected",
    [
        ("UNIQUE constraint failed: posts.slug", EntityType.POST),
        ('duplicate key value violates unique constraint "uq_authors_slug"', EntityType.AUTHOR),
        ("UNIQUE constraint failed: tags.slug", EntityType.TAG),
        ("FOREIGN KEY constraint failed", None),
    ],
)
def test_slug_conflict_detection(message, expected):
    exc = IntegrityError("INSERT ...", {}, Exception(message))
    assert _slug_conflict_type(exc) == expected


class _FailingSession:
    """Stands in for a session whose connection has gone away."""

    def __init__(self) -> None:
        self.rolled_back = False

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT ...", {}, Exception("connection refused"))

    async def get(self, *args, **kwargs):
        raise OperationalError("SELECT ...", {}, Exception("connection refused"))

    async def rollback(self):
        self.rolled_back = True


@pytest.mark.asyncio
async def test_read_failure_becomes_storage_failure(author_cache):
    repo = ContentRepository(_FailingSession(), author_cache)
    with pytest.raises(StorageFailureError) as exc_info:
        await repo.get_tags()
    assert exc_info.value.operation == "list tags"


@pytest.mark.asyncio
async def test_write_failure_rolls_back(author_cache):
    session = _FailingSession()
    repo = ContentRepository(session, author_cache)
    with pytest.raises(StorageFailureError):
        await repo.delete_tag(1)
    assert session.rolled_back is True


@pytest.mark.asyncio
async def test_storage_failure_maps_to_503(async_client, monkeypatch):
    async def broken(self):
        raise StorageFailureError("list tags")

    monkeypatch.setattr(ContentRepository, "get_tags", broken)
    resp = await async_client.get("/api/v1/tags")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "STORAGE_FAILURE"


@pytest.mark.asyncio
async def test_other_entity_slug_violation_is_not_reported_as_conflict(
    db_session, repo: ContentRepository, monkeypatch
):
    author = await make_author(db_session)
    category = await make_category(db_session)
    await db_session.commit()

    async def tag_insert_fails(db, post_id, names):
        raise IntegrityError("INSERT INTO tags ...", {}, Exception("UNIQUE constraint failed: tags.slug"))

    monkeypatch.setattr(content_repository, "sync_post_tags", tag_insert_fails)

    with pytest.raises(StorageFailureError) as exc_info:
        await repo.create_or_update_post(
            PostEdit(
                title="My Post", short_description="s", body="b",
                author_id=author.id, category_id=category.id,
            ),
            ["python"],
        )
    assert exc_info.value.operation == "save post"
