"""
Image upload for the rich text editor
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
import logging

from portfolio_cms.core.dependencies import upload_slot
from portfolio_cms.core.exceptions import UploadException
from portfolio_cms.security.authentication import CurrentUser, get_current_user
from portfolio_cms.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/upload")
async def upload_editor_image(
    file: Optional[UploadFile] = File(None),
    cover: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    uploads: UploadService = Depends(upload_slot),
):
    """
    Store one image and answer in the editor's format

    The location is relative so the editor resolves it against the page origin.
    """
    upload = file if file is not None and file.filename else cover
    if upload is None or not upload.filename:
        raise UploadException("Please choose an image to upload")

    async with uploads.batch() as batch:
        stored = await batch.save(upload)

    logger.info(f"User {current_user.username} uploaded editor image {stored.filename}")
    return {"success": True, "location": f"/uploads/{stored.filename}"}
