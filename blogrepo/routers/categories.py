from fastapi import APIRouter, Depends, HTTPException
from blogrepo.dependencies import get_repository
from blogrepo.schemas import CategoryEdit, CategoryItem
from blogrepo.services.content_repository import ContentRepository

router = APIRouter(prefix="/api/v1/categories", tags=["categories"])

@router.get("", response_model=list[CategoryItem])
async def list_categories(repo: ContentRepository = Depends(get_repository)):
    return await repo.get_categories()

@router.post("", status_code=201, response_model=CategoryItem)
async def create_category(data: CategoryEdit, repo: ContentRepository = Depends(get_repository)):
    return await repo.add_or_update_category(data.model_copy(update={"id": None}))

@router.put("/{category_id}", response_model=CategoryItem)
async def update_category(category_id: int, data: CategoryEdit, repo: ContentRepository = Depends(get_repository)):
    return await repo.add_or_update_category(data.model_copy(update={"id": category_id}))

@router.delete("/{category_id}", status_code=204)
async def delete_category(category_id: int, repo: ContentRepository = Depends(get_repository)):
    deleted = await repo.delete_category(category_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Category not found")
