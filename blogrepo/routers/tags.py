from fastapi import APIRouter, Depends, HTTPException
from blogrepo.dependencies import get_repository
from blogrepo.schemas import TagItem
from blogrepo.services.content_repository import ContentRepository

router = APIRouter(prefix="/api/v1/tags", tags=["tags"])

@router.get("", response_model=list[TagItem])
async def list_tags(repo: ContentRepository = Depends(get_repository)):
    return await repo.get_tags()

@router.delete("/{tag_id}", status_code=204)
async def delete_tag(tag_id: int, repo: ContentRepository = Depends(get_repository)):
    deleted = await repo.delete_tag(tag_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Tag not found")
