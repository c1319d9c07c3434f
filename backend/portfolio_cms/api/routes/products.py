"""
Portfolio products: CRUD, cover and gallery management
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
import logging

from portfolio_cms.api.forms import parse_bool, parse_date, parse_stars, parse_tags, require_text
from portfolio_cms.core.dependencies import get_repositories, get_upload_service, upload_slot
from portfolio_cms.core.exceptions import NotFoundException, UploadException, ValidationException
from portfolio_cms.repositories import PRODUCT_SORT_FIELDS, Repositories
from portfolio_cms.schemas.common import Pagination
from portfolio_cms.schemas.product import ProductResponse, ReorderImagesRequest, UpdateImageOrderRequest
from portfolio_cms.security.authentication import CurrentUser, get_current_user
from portfolio_cms.services import gallery
from portfolio_cms.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_or_404(repos: Repositories, product_id: int) -> ProductResponse:
    product = await repos.products.get(product_id)
    if product is None:
        raise NotFoundException("Product", product_id)
    return product


async def _save_gallery(repos: Repositories, product_id: int, images) -> ProductResponse:
    product = await repos.products.update(product_id, {"images": gallery.dump(images)})
    if product is None:
        raise NotFoundException("Product", product_id)
    return product


# ===================================================================
# Create and update
# ===================================================================

@router.post("/", status_code=201)
async def create_product(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    stars: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    date: Optional[str] = Form(None),
    featured: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    cover: Optional[UploadFile] = File(None),
    images: Optional[List[UploadFile]] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    """
    Create a product from a multipart form

    The cover is required; gallery images are ordered by the number in
    their original filenames.
    """
    title = require_text(title, "title", max_length=200)
    if cover is None or not cover.filename:
        raise UploadException("Cover image is required", filename=None)

    values = {
        "title": title,
        "description": description,
        "stars": parse_stars(stars) or 0,
        "tags": parse_tags(tags) or [],
        "featured": bool(parse_bool(featured, "featured")),
    }
    product_date = parse_date(date)
    if product_date is not None:
        values["date"] = product_date
    published = parse_bool(status, "status")
    if published is not None:
        values["status"] = published

    async with uploads.batch() as batch:
        stored_cover = await batch.save(cover)
        stored_images = await batch.save_all(images or [])
        values["cover"] = stored_cover.url
        values["images"] = gallery.dump(gallery.build([stored.url for stored in stored_images]))
        product = await repos.products.create(values)

    logger.info(f"User {current_user.username} created product {product.id} with {len(stored_images)} image(s)")
    return {"success": True, "message": "Product created", "data": product}


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    stars: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    date: Optional[str] = Form(None),
    featured: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    cover: Optional[UploadFile] = File(None),
    images: Optional[List[UploadFile]] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    """
    Partially update a product

    A new cover or a new set of gallery images replaces the old ones; the
    replaced files are deleted once the row update has succeeded.
    """
    existing = await _get_or_404(repos, product_id)

    values = {}
    if title is not None:
        values["title"] = require_text(title, "title", max_length=200)
    if description is not None:
        values["description"] = description
    if stars is not None:
        values["stars"] = parse_stars(stars) or 0
    if tags is not None:
        values["tags"] = parse_tags(tags)
    if date:
        values["date"] = parse_date(date)
    if featured is not None:
        values["featured"] = parse_bool(featured, "featured")
    if status is not None:
        values["status"] = parse_bool(status, "status")

    replaced = []
    async with uploads.batch() as batch:
        if cover is not None and cover.filename:
            stored_cover = await batch.save(cover)
            values["cover"] = stored_cover.url
            replaced.append(existing.cover)

        new_images = [upload for upload in images or [] if upload is not None and upload.filename]
        if new_images:
            stored_images = await batch.save_all(new_images)
            values["images"] = gallery.dump(gallery.build([stored.url for stored in stored_images]))
            replaced.extend(image.url for image in existing.images)

        if not values:
            raise ValidationException("No fields to update")
        product = await repos.products.update(product_id, values)
        if product is None:
            raise NotFoundException("Product", product_id)

    await uploads.delete_urls(replaced)
    logger.info(f"User {current_user.username} updated product {product_id}")
    return {"success": True, "message": "Product updated", "data": product}


@router.put("/{product_id}/cover")
async def update_cover(
    product_id: int,
    cover: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    if cover is None or not cover.filename:
        raise UploadException("Cover image is required")
    existing = await _get_or_404(repos, product_id)

    async with uploads.batch() as batch:
        stored = await batch.save(cover)
        product = await repos.products.update(product_id, {"cover": stored.url})
        if product is None:
            raise NotFoundException("Product", product_id)

    await uploads.delete_urls([existing.cover])
    logger.info(f"User {current_user.username} replaced cover of product {product_id}")
    return {"success": True, "message": "Cover updated", "data": product}


# ===================================================================
# Gallery
# ===================================================================

@router.post("/{product_id}/images")
async def add_images(
    product_id: int,
    images: Optional[List[UploadFile]] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
    repos: Repositories = Depends(get_repositories),
):
    """Append images after the current highest order"""
    existing = await _get_or_404(repos, product_id)

    async with uploads.batch() as batch:
        stored_images = await batch.save_all(images or [])
        if not stored_images:
            raise UploadException("No images uploaded")
        updated = gallery.append(existing.images, [stored.url for stored in stored_images])
        product = await _save_gallery(repos, product_id, updated)

    logger.info(f"User {current_user.username} added {len(stored_images)} image(s) to product {product_id}")
    return {"success": True, "message": "Images added", "data": product}


@router.put("/{product_id}/images/reorder")
async def reorder_images(
    product_id: int,
    payload: ReorderImagesRequest,
    _: CurrentUser = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
):
    await _get_or_404(repos, product_id)
    product = await _save_gallery(repos, product_id, gallery.reorder(payload.images))
    return {"success": True, "message": "Images reordered", "data": product}


@router.put("/{product_id}/images/order")
async def update_image_order(
    product_id: int,
    payload: UpdateImageOrderRequest,
    _: CurrentUser = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
):
    existing = await _get_or_404(repos, product_id)
    updated = gallery.apply_order_updates(existing.images, payload.image_order)
    product = await _save_gallery(repos, product_id, updated)
    return {"success": True, "message": "Image order updated", "data": product}


@router.delete("/{product_id}/images/{order}")
async def delete_image(
    product_id: int,
    order: int,
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(get_upload_service),
    repos: Repositories = Depends(get_repositories),
):
    existing = await _get_or_404(repos, product_id)
    remaining, removed = gallery.remove(existing.images, order)
    product = await _save_gallery(repos, product_id, remaining)

    await uploads.delete_urls([removed.url])
    logger.info(f"User {current_user.username} removed image {order} from product {product_id}")
    return {"success": True, "message": "Image deleted", "data": product}


# ===================================================================
# Queries
# ===================================================================

@router.get("/")
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: str = Query("date"),
    order: str = Query("DESC"),
    featured: Optional[str] = Query(None),
    repos: Repositories = Depends(get_repositories),
):
    """Published products for the public site"""
    if sort not in PRODUCT_SORT_FIELDS:
        raise ValidationException(f"Unsupported sort field: {sort}", field="sort", value=sort)
    if order.upper() not in ("ASC", "DESC"):
        raise ValidationException("order must be ASC or DESC", field="order", value=order)

    products, total = await repos.products.list_published(
        page=page,
        limit=limit,
        sort=PRODUCT_SORT_FIELDS[sort],
        descending=order.upper() == "DESC",
        featured=parse_bool(featured, "featured"),
    )
    return {
        "success": True,
        "data": products,
        "pagination": Pagination.build(total, page, limit),
    }


@router.get("/admin/list")
async def admin_list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    keyword: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    _: CurrentUser = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
):
    products, total = await repos.products.list_all(
        page=page,
        limit=limit,
        keyword=keyword,
        status=parse_bool(status, "status"),
    )
    return {
        "success": True,
        "data": products,
        "pagination": Pagination.build(total, page, limit),
    }


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    repos: Repositories = Depends(get_repositories),
):
    product = await repos.products.increment_views(product_id)
    if product is None:
        raise NotFoundException("Product", product_id)
    return {"success": True, "data": product}


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(get_upload_service),
    repos: Repositories = Depends(get_repositories),
):
    existing = await _get_or_404(repos, product_id)
    if not await repos.products.delete(product_id):
        raise NotFoundException("Product", product_id)

    await uploads.delete_urls([existing.cover, *(image.url for image in existing.images)])
    logger.info(f"User {current_user.username} deleted product {product_id}")
    return {"success": True, "message": "Product deleted"}
