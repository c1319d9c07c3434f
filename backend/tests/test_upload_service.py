"""
Unit Tests: Upload Service
==========================

Tests for UploadService covering:
1. File type and size validation
2. Stored file naming and URL mapping
3. Batch cleanup on failure and on timeout
4. Concurrent upload ceiling
"""

import asyncio
import io
import os
import re

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from portfolio_cms.core.exceptions import (
    TooManyUploadsException,
    UploadException,
    UploadTimeoutException,
)
from portfolio_cms.services.upload_service import UploadGate, UploadService


def make_upload(name: str, content: bytes = b"\x89PNG data", content_type: str = "image/png") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


class TestUploadService:
    """Test suite for UploadService"""

    @pytest.fixture
    def service(self, tmp_path):
        return UploadService(
            upload_dir=str(tmp_path / "uploads"),
            public_base_url="http://testserver/",
            max_file_size=1024,
            max_files=3,
            timeout_seconds=0.2,
        )

    def stored_names(self, service):
        return sorted(os.listdir(service.upload_dir))

    # ===================
    # Validation Tests
    # ===================

    @pytest.mark.parametrize("name,content_type", [
        ("notes.txt", "text/plain"),
        ("image.png", "text/plain"),
        ("image.svg", "image/svg+xml"),
        ("no-extension", "image/png"),
    ])
    def test_rejects_non_images(self, service, name, content_type):
        with pytest.raises(UploadException) as exc_info:
            service.validate(make_upload(name, content_type=content_type))

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("name", ["a.jpeg", "a.JPG", "a.png", "a.gif", "a.webp"])
    def test_accepts_images(self, service, name):
        ext = name.rsplit(".", 1)[1].lower()
        mime = "image/jpeg" if ext in ("jpg", "jpeg") else f"image/{ext}"

        assert service.validate(make_upload(name, content_type=mime)) == f".{ext}"

    # ===================
    # Naming Tests
    # ===================

    def test_generated_filename_format(self, service):
        """Test names follow {epoch_ms}-{random}-{sanitized stem}{ext}"""
        filename = service.generate_filename("my photo (1).PNG", ".png")

        assert re.fullmatch(r"\d{13}-\d+-my_photo__1_\.png", filename)

    def test_generated_filenames_differ(self, service):
        names = {service.generate_filename("a.png", ".png") for _ in range(20)}

        assert len(names) > 1

    def test_public_url_uses_base(self, service):
        assert service.public_url("x.png") == "http://testserver/uploads/x.png"

    def test_path_for_url(self, service):
        assert service.path_for_url("http://testserver/uploads/x.png?v=2") == os.path.join(service.upload_dir, "x.png")
        assert service.path_for_url("/uploads/..") is None
        assert service.path_for_url(None) is None

    # ===================
    # Batch Tests
    # ===================

    @pytest.mark.asyncio
    async def test_successful_batch_keeps_files(self, service):
        async with service.batch() as batch:
            stored = await batch.save(make_upload("cover.png"))

        assert self.stored_names(service) == [stored.filename]
        assert stored.size == len(b"\x89PNG data")
        assert stored.url.endswith(f"/uploads/{stored.filename}")
        assert service.get_stats()["success"] == 1

    @pytest.mark.asyncio
    async def test_failure_after_two_files_removes_all(self, service):
        """Test an error after two stored files leaves nothing on disk"""
        with pytest.raises(RuntimeError):
            async with service.batch() as batch:
                await batch.save(make_upload("one.png"))
                await batch.save(make_upload("two.png"))
                assert len(self.stored_names(service)) == 2
                raise RuntimeError("database insert failed")

        assert self.stored_names(service) == []
        assert service.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_rejected_file_in_batch_removes_earlier_files(self, service):
        with pytest.raises(UploadException):
            async with service.batch() as batch:
                await batch.save(make_upload("one.png"))
                await batch.save(make_upload("two.txt", content_type="text/plain"))

        assert self.stored_names(service) == []

    @pytest.mark.asyncio
    async def test_oversized_file_is_removed(self, service):
        with pytest.raises(UploadException) as exc_info:
            async with service.batch() as batch:
                await batch.save(make_upload("big.png", content=b"x" * 2048))

        assert "exceeds" in exc_info.value.details.message
        assert self.stored_names(service) == []

    @pytest.mark.asyncio
    async def test_timeout_removes_files(self, service):
        """Test a block running past the timeout raises and cleans up"""
        with pytest.raises(UploadTimeoutException) as exc_info:
            async with service.batch() as batch:
                await batch.save(make_upload("slow.png"))
                await asyncio.sleep(2)

        assert exc_info.value.status_code == 408
        assert self.stored_names(service) == []

    @pytest.mark.asyncio
    async def test_inner_timeout_is_not_an_upload_timeout(self, service):
        """Test a TimeoutError from work inside the block keeps its own type"""
        with pytest.raises(TimeoutError) as exc_info:
            async with service.batch() as batch:
                await batch.save(make_upload("photo.png"))
                raise TimeoutError("database statement timed out")

        assert not isinstance(exc_info.value, UploadTimeoutException)
        assert str(exc_info.value) == "database statement timed out"
        assert self.stored_names(service) == []

    @pytest.mark.asyncio
    async def test_save_all_orders_by_filename_token(self, service):
        uploads = [make_upload("img3.png"), make_upload("img1.png"), make_upload("img10.png")]

        async with service.batch() as batch:
            stored = await batch.save_all(uploads)

        assert [item.original_name for item in stored] == ["img1.png", "img3.png", "img10.png"]

    @pytest.mark.asyncio
    async def test_save_all_enforces_file_count(self, service):
        uploads = [make_upload(f"img{i}.png") for i in range(4)]

        with pytest.raises(UploadException):
            async with service.batch() as batch:
                await batch.save_all(uploads)

        assert self.stored_names(service) == []

    @pytest.mark.asyncio
    async def test_delete_urls_ignores_missing_files(self, service):
        async with service.batch() as batch:
            stored = await batch.save(make_upload("a.png"))

        await service.delete_urls([stored.url, "http://testserver/uploads/missing.png", None])

        assert self.stored_names(service) == []


class TestUploadGate:

    def test_rejects_past_limit(self):
        gate = UploadGate(limit=1)
        gate.acquire()

        with pytest.raises(TooManyUploadsException) as exc_info:
            gate.acquire()

        assert exc_info.value.status_code == 429
        assert exc_info.value.details.retry_after_seconds == 5

    def test_release_frees_slot(self):
        gate = UploadGate(limit=1)
        gate.acquire()
        gate.release()
        gate.acquire()

        assert gate.active == 1
        assert gate.peak == 1
