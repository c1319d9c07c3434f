"""
Articles: CRUD with a cover image
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
import logging

from portfolio_cms.api.forms import parse_bool, require_text
from portfolio_cms.core.dependencies import get_repositories, get_upload_service, upload_slot
from portfolio_cms.core.exceptions import NotFoundException, UploadException, ValidationException
from portfolio_cms.repositories import Repositories
from portfolio_cms.schemas.article import ArticleResponse
from portfolio_cms.schemas.common import Pagination
from portfolio_cms.security.authentication import CurrentUser, get_current_user
from portfolio_cms.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_or_404(repos: Repositories, article_id: int) -> ArticleResponse:
    article = await repos.articles.get(article_id)
    if article is None:
        raise NotFoundException("Article", article_id)
    return article


@router.post("/", status_code=201)
async def create_article(
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    isFeatured: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    cover: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    """Create an article; title, content and cover are required"""
    values = {
        "title": require_text(title, "title", max_length=200),
        "content": require_text(content, "content"),
        "is_featured": bool(parse_bool(isFeatured, "isFeatured")),
    }
    published = parse_bool(status, "status")
    if published is not None:
        values["status"] = published
    if cover is None or not cover.filename:
        raise UploadException("Cover image is required")

    async with uploads.batch() as batch:
        stored = await batch.save(cover)
        values["cover"] = stored.url
        article = await repos.articles.create(values)

    logger.info(f"User {current_user.username} created article {article.id}")
    return {"success": True, "message": "Article created", "data": article}


@router.put("/{article_id}")
async def update_article(
    article_id: int,
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    isFeatured: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    cover: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    existing = await _get_or_404(repos, article_id)

    values = {}
    if title is not None:
        values["title"] = require_text(title, "title", max_length=200)
    if content is not None:
        values["content"] = require_text(content, "content")
    if isFeatured is not None:
        values["is_featured"] = parse_bool(isFeatured, "isFeatured")
    if status is not None:
        values["status"] = parse_bool(status, "status")

    replaced = None
    async with uploads.batch() as batch:
        if cover is not None and cover.filename:
            stored = await batch.save(cover)
            values["cover"] = stored.url
            replaced = existing.cover
        if not values:
            raise ValidationException("No fields to update")
        article = await repos.articles.update(article_id, values)
        if article is None:
            raise NotFoundException("Article", article_id)

    if replaced:
        await uploads.delete_urls([replaced])
    logger.info(f"User {current_user.username} updated article {article_id}")
    return {"success": True, "message": "Article updated", "data": article}


@router.put("/{article_id}/cover")
async def update_article_cover(
    article_id: int,
    cover: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    if cover is None or not cover.filename:
        raise UploadException("Cover image is required")
    existing = await _get_or_404(repos, article_id)

    async with uploads.batch() as batch:
        stored = await batch.save(cover)
        article = await repos.articles.update(article_id, {"cover": stored.url})
        if article is None:
            raise NotFoundException("Article", article_id)

    await uploads.delete_urls([existing.cover])
    logger.info(f"User {current_user.username} replaced cover of article {article_id}")
    return {"success": True, "message": "Cover updated", "data": article}


@router.get("/admin/list")
async def admin_list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    keyword: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    _: CurrentUser = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
):
    articles, total = await repos.articles.list_all(
        page=page,
        limit=limit,
        keyword=keyword,
        status=parse_bool(status, "status"),
    )
    return {
        "success": True,
        "data": articles,
        "pagination": Pagination.build(total, page, limit),
    }


@router.get("/{article_id}")
async def get_article(
    article_id: int,
    repos: Repositories = Depends(get_repositories),
):
    article = await repos.articles.increment_views(article_id)
    if article is None:
        raise NotFoundException("Article", article_id)
    return {"success": True, "data": article}


@router.delete("/{article_id}")
async def delete_article(
    article_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(get_upload_service),
    repos: Repositories = Depends(get_repositories),
):
    existing = await _get_or_404(repos, article_id)
    if not await repos.articles.delete(article_id):
        raise NotFoundException("Article", article_id)

    await uploads.delete_urls([existing.cover])
    logger.info(f"User {current_user.username} deleted article {article_id}")
    return {"success": True, "message": "Article deleted"}


@router.get("/")
async def list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    featured: Optional[str] = Query(None),
    repos: Repositories = Depends(get_repositories),
):
    """Published articles, newest first"""
    articles, total = await repos.articles.list_published(
        page=page,
        limit=limit,
        featured=True if parse_bool(featured, "featured") else None,
    )
    return {"success": True, "data": {"articles": articles, "total": total}}
