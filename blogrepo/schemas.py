from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from blogrepo.services.tag_service import split_tag_text

T = TypeVar("T")


# --- Tag ---

class TagRef(BaseModel):
    id: int
    name: str
    slug: str
    model_config = ConfigDict(from_attributes=True)


class TagItem(TagRef):
    post_count: int = 0


# --- Author ---

class AuthorEdit(BaseModel):
    id: int | None = None
    full_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=150)
    bio: str | None = None
    slug: str = Field(min_length=1, max_length=100)


class AuthorRef(BaseModel):
    id: int
    full_name: str
    slug: str
    model_config = ConfigDict(from_attributes=True)


class AuthorItem(AuthorRef):
    email: str
    bio: str | None = None
    image_url: str | None = None
    joined_date: datetime | None = None
    post_count: int = 0


class AuthorImageUpdate(BaseModel):
    image_url: str = Field(min_length=1, max_length=500)


# --- Category ---

class CategoryEdit(BaseModel):
    id: int | None = None
    name: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    slug: str = Field(min_length=1, max_length=1000)

    @field_validator("name", "description", "slug")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class CategoryRef(BaseModel):
    id: int
    name: str
    slug: str
    model_config = ConfigDict(from_attributes=True)


class CategoryItem(CategoryRef):
    description: str
    post_count: int = 0


# --- Post ---

class PostEdit(BaseModel):
    id: int | None = None
    title: str = Field(min_length=1, max_length=500)
    short_description: str = Field(min_length=1, max_length=1000)
    body: str = Field(min_length=1)
    meta: str | None = Field(None, max_length=1000)
    # Blank slug is derived from the title.
    slug: str | None = Field(None, max_length=500)
    image_url: str | None = Field(None, max_length=500)
    published: bool = False
    author_id: int
    category_id: int


class PostWrite(PostEdit):
    """Request body for post create/update: the post fields plus its tags."""

    tags: list[str] = []

    @field_validator("tags", mode="before")
    @classmethod
    def split_tag_text(cls, value):
        # Accept the free-text form ("a, b; c") as well as a list.
        if isinstance(value, str):
            return split_tag_text(value)
        return value


class PostItem(BaseModel):
    id: int
    title: str
    short_description: str
    slug: str
    image_url: str | None = None
    view_count: int = 0
    published: bool
    posted_date: datetime
    modified_date: datetime | None = None
    author_id: int
    category_id: int
    author: AuthorRef | None = None
    category: CategoryRef | None = None
    tags: list[TagRef] = []
    model_config = ConfigDict(from_attributes=True)


class PostDetail(PostItem):
    body: str
    meta: str | None = None


class PublishToggle(BaseModel):
    # None flips the current flag.
    published: bool | None = None


# --- Query ---

class PostQuery(BaseModel):
    keyword: str | None = None
    category_id: int | None = None
    category_slug: str | None = None
    author_id: int | None = None
    author_slug: str | None = None
    tag_id: int | None = None
    tag_slug: str | None = None
    year: int | None = Field(None, ge=1)
    month: int | None = Field(None, ge=1, le=12)
    published_only: bool = False


# --- Pagination ---

class PaginationResult(BaseModel, Generic[T]):
    items: list[T]
    page_number: int
    page_size: int
    total_count: int
    total_pages: int

    @computed_field
    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @computed_field
    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages


# --- Slugs ---

class SlugCheckResponse(BaseModel):
    entity_type: str
    slug: str
    exists: bool


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_posts: int
    published_posts: int
    total_authors: int
    total_categories: int
    total_tags: int
    cache_info: dict = {}
