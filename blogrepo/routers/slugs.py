from fastapi import APIRouter, Depends, Query
from blogrepo.dependencies import get_repository
from blogrepo.schemas import SlugCheckResponse
from blogrepo.services.content_repository import ContentRepository
from blogrepo.services.slug_index import EntityType, slugify

router = APIRouter(prefix="/api/v1/slugs", tags=["slugs"])

@router.get("/{entity_type}", response_model=SlugCheckResponse)
async def check_slug(
    entity_type: EntityType,
    slug: str = Query(..., min_length=1),
    exclude_id: int | None = Query(None, description="Id of the entity being edited."),
    repo: ContentRepository = Depends(get_repository),
):
    exists = await repo.is_slug_existed(entity_type, exclude_id, slug)
    return SlugCheckResponse(entity_type=entity_type.value, slug=slugify(slug), exists=exists)
