"""
Typed failures raised by the content repository.

Every error carries a stable ``code``, a human-readable ``message`` and
the HTTP status the API layer maps it to.  ``NotFoundError`` and the two
conflict errors are expected outcomes of normal use; ``StorageFailureError``
means the database could not complete the operation and is never retried
by the repository.
"""


class ContentError(Exception):
    """Base class for all repository errors."""

    code = "CONTENT_ERROR"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict:
        return {}

    def to_response(self) -> dict:
        """Return the JSON error envelope used by the API layer."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                **self.details(),
            }
        }


class NotFoundError(ContentError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity_type: str, entity_id: int) -> None:
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id

    def details(self) -> dict:
        return {"entity_type": self.entity_type, "entity_id": self.entity_id}


class SlugConflictError(ContentError):
    """The slug already belongs to another entity of the same type."""

    code = "SLUG_CONFLICT"
    http_status = 409

    def __init__(self, entity_type: str, slug: str) -> None:
        super().__init__(f"Slug '{slug}' is already used by another {entity_type}")
        self.entity_type = entity_type
        self.slug = slug

    def details(self) -> dict:
        return {"entity_type": self.entity_type, "slug": self.slug}


class DependentRecordsError(ContentError):
    """An author or category cannot be deleted while posts reference it."""

    code = "HAS_DEPENDENTS"
    http_status = 409

    def __init__(self, entity_type: str, entity_id: int, post_count: int) -> None:
        super().__init__(
            f"{entity_type.capitalize()} {entity_id} still has {post_count} post(s)"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.post_count = post_count

    def details(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "post_count": self.post_count,
        }


class ValidationFailedError(ContentError):
    code = "VALIDATION_FAILED"
    http_status = 422

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def details(self) -> dict:
        return {"field": self.field}


class StorageFailureError(ContentError):
    code = "STORAGE_FAILURE"
    http_status = 503

    def __init__(self, operation: str) -> None:
        super().__init__(f"Storage failure while trying to {operation}")
        self.operation = operation
