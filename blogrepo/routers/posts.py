from fastapi import APIRouter, Depends, HTTPException
from blogrepo.dependencies import PaginationParams, get_repository, post_query_params
from blogrepo.schemas import PaginationResult, PostDetail, PostItem, PostQuery, PostWrite, PublishToggle
from blogrepo.services.content_repository import ContentRepository

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

@router.get("", response_model=PaginationResult[PostItem])
async def list_posts(
    query: PostQuery = Depends(post_query_params),
    pagination: PaginationParams = Depends(),
    repo: ContentRepository = Depends(get_repository),
):
    return await repo.get_paged_posts(query, pagination.page, pagination.page_size)

@router.get("/slug/{slug}", response_model=PostDetail)
async def get_post_by_slug(slug: str, repo: ContentRepository = Depends(get_repository)):
    post = await repo.get_post_by_slug(slug)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    await repo.increase_view_count(post.id)
    return post

@router.get("/{post_id}", response_model=PostDetail)
async def get_post(post_id: int, details: bool = True, repo: ContentRepository = Depends(get_repository)):
    post = await repo.get_post_by_id(post_id, include_details=details)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post

@router.post("", status_code=201, response_model=PostDetail)
async def create_post(data: PostWrite, repo: ContentRepository = Depends(get_repository)):
    post = data.model_copy(update={"id": None})
    return await repo.create_or_update_post(post, data.tags)

@router.put("/{post_id}", response_model=PostDetail)
async def update_post(post_id: int, data: PostWrite, repo: ContentRepository = Depends(get_repository)):
    post = data.model_copy(update={"id": post_id})
    return await repo.create_or_update_post(post, data.tags)

@router.post("/{post_id}/published", response_model=PostDetail)
async def set_published(
    post_id: int,
    data: PublishToggle | None = None,
    repo: ContentRepository = Depends(get_repository),
):
    post = await repo.set_post_published(post_id, data.published if data else None)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post

@router.delete("/{post_id}", status_code=204)
async def delete_post(post_id: int, repo: ContentRepository = Depends(get_repository)):
    deleted = await repo.delete_post(post_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Post not found")
