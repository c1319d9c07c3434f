"""
Upload Service Module

Validates and stores uploaded images, enforces the concurrent-upload ceiling,
and removes every file written for a request when that request fails.
"""

import asyncio
import logging
import os
import re
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional, Sequence

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from portfolio_cms.core.config import Settings
from portfolio_cms.core.exceptions import (
    TooManyUploadsException,
    UploadException,
    UploadTimeoutException,
)
from portfolio_cms.services import gallery

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpeg", "jpg", "png", "gif", "webp"}
ALLOWED_MIME_PATTERN = re.compile(r"^image/(jpeg|jpg|png|gif|webp)$", re.IGNORECASE)
UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9]")
CHUNK_SIZE = 1024 * 1024


@dataclass
class StoredFile:
    """A file written to the upload directory"""
    original_name: str
    filename: str
    path: str
    url: str
    size: int = 0


@dataclass
class UploadStats:
    total: int = 0
    success: int = 0
    failed: int = 0
    active: int = 0
    peak_active: int = 0
    max_concurrent: int = 0
    last_upload_time: Optional[str] = None


class UploadGate:
    """Concurrent upload ceiling; rejects instead of queueing"""

    def __init__(self, limit: int):
        self.limit = limit
        self.active = 0
        self.peak = 0

    def acquire(self) -> None:
        if self.active >= self.limit:
            logger.warning(f"Upload rejected: {self.active}/{self.limit} uploads in progress")
            raise TooManyUploadsException(self.limit)
        self.active += 1
        self.peak = max(self.peak, self.active)

    def release(self) -> None:
        self.active = max(0, self.active - 1)


class UploadBatch:
    """Files written on behalf of one request"""

    def __init__(self, service: "UploadService"):
        self._service = service
        self.files: List[StoredFile] = []

    async def save(self, upload: UploadFile) -> StoredFile:
        return await self._service.write(upload, self)

    async def save_all(self, uploads: Sequence[UploadFile]) -> List[StoredFile]:
        """Validate the batch size, then store the files in order-token order"""
        uploads = [upload for upload in uploads or [] if upload is not None and upload.filename]
        if len(uploads) > self._service.max_files:
            raise UploadException(
                f"Too many files, at most {self._service.max_files} are allowed per request"
            )
        stored = []
        for upload in gallery.sort_by_filename(uploads, name_of=lambda item: item.filename):
            stored.append(await self.save(upload))
        return stored

    async def discard(self) -> None:
        await self._service.delete_paths(stored.path for stored in self.files)
        self.files.clear()


class UploadService:
    """
    Image storage under the upload directory.

    Files are named ``{epoch_ms}-{random}-{sanitized stem}{ext}`` and exposed
    as ``{public_base_url}/uploads/{name}``.
    """

    def __init__(
        self,
        upload_dir: str,
        public_base_url: str = "",
        max_file_size: int = 5 * 1024 * 1024,
        max_files: int = 20,
        max_concurrent: int = 5,
        timeout_seconds: float = 30.0,
    ):
        self.upload_dir = os.path.abspath(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.timeout_seconds = timeout_seconds
        self.gate = UploadGate(max_concurrent)
        self.stats = UploadStats(max_concurrent=max_concurrent)
        os.makedirs(self.upload_dir, exist_ok=True)

    @classmethod
    def from_settings(cls, config: Settings) -> "UploadService":
        return cls(
            upload_dir=config.UPLOAD_PATH,
            public_base_url=config.PUBLIC_BASE_URL,
            max_file_size=config.MAX_FILE_SIZE,
            max_files=config.MAX_FILES_PER_REQUEST,
            max_concurrent=config.MAX_CONCURRENT_UPLOADS,
            timeout_seconds=config.FILE_PROCESSING_TIMEOUT,
        )

    # ===================================================================
    # Naming and validation
    # ===================================================================

    def validate(self, upload: UploadFile) -> str:
        """
        Check extension and MIME type

        Returns:
            The normalized extension including the dot

        Raises:
            UploadException: If the file is not an accepted image type
        """
        filename = upload.filename or ""
        _, ext = os.path.splitext(filename)
        if ext.lower().lstrip(".") not in ALLOWED_EXTENSIONS:
            raise UploadException(f"Unsupported file extension: {filename}", filename=filename)
        if not ALLOWED_MIME_PATTERN.match(upload.content_type or ""):
            raise UploadException(
                f"Unsupported file type {upload.content_type!r} for {filename}", filename=filename
            )
        return ext.lower()

    def generate_filename(self, original_name: str, ext: str) -> str:
        stem, _ = os.path.splitext(os.path.basename(original_name))
        safe_stem = UNSAFE_NAME_CHARS.sub("_", stem)
        return f"{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}-{safe_stem}{ext}"

    def public_url(self, filename: str) -> str:
        return f"{self.public_base_url}/uploads/{filename}"

    def path_for_url(self, url: Optional[str]) -> Optional[str]:
        """Map a stored URL back to its file in the upload directory"""
        if not url:
            return None
        filename = os.path.basename(url.split("?", 1)[0])
        if not filename or filename.startswith("."):
            return None
        return os.path.join(self.upload_dir, filename)

    # ===================================================================
    # Writing and cleanup
    # ===================================================================

    async def write(self, upload: UploadFile, batch: UploadBatch) -> StoredFile:
        """Stream an upload to disk, registering it with the batch before the first byte"""
        ext = self.validate(upload)
        filename = self.generate_filename(upload.filename, ext)
        stored = StoredFile(
            original_name=upload.filename,
            filename=filename,
            path=os.path.join(self.upload_dir, filename),
            url=self.public_url(filename),
        )
        batch.files.append(stored)

        async with aiofiles.open(stored.path, "wb") as out:
            while chunk := await upload.read(CHUNK_SIZE):
                stored.size += len(chunk)
                if stored.size > self.max_file_size:
                    raise UploadException(
                        f"File {upload.filename} exceeds the {self.max_file_size} byte limit",
                        filename=upload.filename,
                    )
                await out.write(chunk)

        logger.debug(f"Stored upload {upload.filename} as {filename} ({stored.size} bytes)")
        return stored

    async def delete_paths(self, paths: Iterable[str]) -> None:
        """Best-effort removal; failures are logged"""
        for path in paths:
            try:
                await aiofiles.os.remove(path)
                logger.debug(f"Deleted file {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Failed to delete file {path}: {e}")

    async def delete_urls(self, urls: Iterable[Optional[str]]) -> None:
        await self.delete_paths(path for path in map(self.path_for_url, urls) if path)

    @asynccontextmanager
    async def batch(self) -> AsyncIterator[UploadBatch]:
        """
        Scope one request's uploads

        Any exception escaping the block, including the processing timeout,
        deletes every file the batch wrote before the error propagates.

        Raises:
            UploadTimeoutException: If the block runs past timeout_seconds
        """
        batch = UploadBatch(self)
        self.stats.total += 1
        self.stats.last_upload_time = datetime.now(timezone.utc).isoformat()
        deadline = asyncio.timeout(self.timeout_seconds)
        try:
            async with deadline:
                yield batch
        except BaseException as e:
            self.stats.failed += 1
            # A TimeoutError raised inside the block is not our deadline
            timed_out = isinstance(e, TimeoutError) and deadline.expired()
            if timed_out:
                logger.warning(f"Upload processing timed out, removing {len(batch.files)} file(s)")
            elif batch.files:
                logger.warning(f"Upload request failed, removing {len(batch.files)} file(s)")
            await batch.discard()
            if timed_out:
                raise UploadTimeoutException(self.timeout_seconds) from None
            raise
        else:
            self.stats.success += 1

    def get_stats(self) -> dict:
        self.stats.active = self.gate.active
        self.stats.peak_active = self.gate.peak
        return asdict(self.stats)
