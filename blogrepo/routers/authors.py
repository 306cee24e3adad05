from fastapi import APIRouter, Depends, HTTPException, Query
from blogrepo.dependencies import PaginationParams, get_repository
from blogrepo.schemas import AuthorEdit, AuthorImageUpdate, AuthorItem, PaginationResult, PostItem, PostQuery
from blogrepo.services.content_repository import ContentRepository

router = APIRouter(prefix="/api/v1/authors", tags=["authors"])

@router.get("", response_model=list[AuthorItem])
async def list_authors(repo: ContentRepository = Depends(get_repository)):
    return await repo.get_authors()

@router.get("/paged", response_model=PaginationResult[AuthorItem])
async def list_authors_paged(
    name: str | None = Query(None),
    pagination: PaginationParams = Depends(),
    repo: ContentRepository = Depends(get_repository),
):
    return await repo.get_paged_authors(name, pagination.page, pagination.page_size)

@router.get("/best/{limit}", response_model=list[AuthorItem])
async def list_best_authors(limit: int, repo: ContentRepository = Depends(get_repository)):
    return await repo.get_authors_with_most_posts(limit)

@router.get("/{author_id:int}", response_model=AuthorItem)
async def get_author(author_id: int, repo: ContentRepository = Depends(get_repository)):
    author = await repo.get_author_by_id(author_id)
    if not author:
        raise HTTPException(status_code=404, detail="Author not found")
    return author

@router.get("/{slug}/posts", response_model=PaginationResult[PostItem])
async def list_author_posts(
    slug: str,
    pagination: PaginationParams = Depends(),
    repo: ContentRepository = Depends(get_repository),
):
    query = PostQuery(author_slug=slug, published_only=True)
    return await repo.get_paged_posts(query, pagination.page, pagination.page_size)

@router.post("", status_code=201, response_model=AuthorItem)
async def create_author(data: AuthorEdit, repo: ContentRepository = Depends(get_repository)):
    return await repo.add_or_update_author(data.model_copy(update={"id": None}))

@router.put("/{author_id}", response_model=AuthorItem)
async def update_author(author_id: int, data: AuthorEdit, repo: ContentRepository = Depends(get_repository)):
    return await repo.add_or_update_author(data.model_copy(update={"id": author_id}))

@router.put("/{author_id}/image")
async def set_author_image(
    author_id: int,
    data: AuthorImageUpdate,
    repo: ContentRepository = Depends(get_repository),
):
    previous = await repo.set_author_image_url(author_id, data.image_url)
    return {"image_url": data.image_url, "previous_image_url": previous}

@router.delete("/{author_id}", status_code=204)
async def delete_author(author_id: int, repo: ContentRepository = Depends(get_repository)):
    deleted = await repo.delete_author(author_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Author not found")
