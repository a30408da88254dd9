"""
Upload ingestion: buffer, classify, remux, store and commit.

A video upload moves through Validating -> Buffered -> Classified ->
Repackaged -> Uploaded -> Committed. Any failure is terminal for the request;
the only compensation is a best-effort delete of the stored object when the
metadata commit fails. Local temp files are removed on every exit path.

Thumbnails take a shorter route: they are sniffed, buffered to a temp file,
moved into the assets directory once complete and referenced by a plain URL.
"""

import logging
import os
import secrets
import shutil
import tempfile
import time
import uuid
from contextlib import ExitStack
from pathlib import Path

from fastapi import HTTPException, Request
from starlette.datastructures import UploadFile

from api.exception_utils import log_and_raise_http_exception
from api.metrics import (
    COMPENSATING_DELETES_TOTAL,
    INGEST_DURATION_SECONDS,
    INGEST_FAILURES_TOTAL,
    THUMBNAIL_UPLOADS_TOTAL,
    VIDEO_UPLOADS_TOTAL,
)
from api.sniff import SNIFF_LENGTH, extension_for, sniff_content_type
from api.storage import SignError, StoreDeleteError, StoreWriteError, encode_video_reference
from config import THUMBNAIL_CONTENT_TYPES, VIDEO_CONTENT_TYPE, Settings
from media.inspector import ASPECT_LANDSCAPE, ASPECT_OTHER, ASPECT_PORTRAIT, ProbeError, get_video_aspect_ratio
from media.repackager import RepackageError, fast_start_output_path

logger = logging.getLogger(__name__)

VIDEO_FORM_FIELD = "video"
THUMBNAIL_FORM_FIELD = "thumbnail"

TEMP_FILE_PREFIX = "tubely-upload-"

# Storage key directory per aspect category
ASPECT_PREFIXES = {
    ASPECT_LANDSCAPE: "landscape",
    ASPECT_PORTRAIT: "portrait",
    ASPECT_OTHER: "square",
}

# Random bytes in generated thumbnail names (URL-safe base64 encoded)
THUMBNAIL_NAME_BYTES = 32


def _size_label(size: int) -> str:
    if size >= 1 << 30:
        return f"{size / (1 << 30):.0f} GB"
    if size >= 1 << 20:
        return f"{size / (1 << 20):.0f} MB"
    return f"{size} bytes"


def _too_large(max_size: int) -> HTTPException:
    return HTTPException(status_code=413, detail=f"File too large. Maximum upload size is {_size_label(max_size)}")


def remove_quietly(path: Path) -> None:
    """Delete a local file; a file that is already gone is not an error."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove temp file {path}: {e}")


def create_temp_file(temp_dir: Path, suffix: str, cleanup: ExitStack) -> Path:
    """Create an empty temp file whose removal is registered on cleanup."""
    try:
        fd, name = tempfile.mkstemp(prefix=TEMP_FILE_PREFIX, suffix=suffix, dir=temp_dir)
    except OSError as e:
        log_and_raise_http_exception(e, 500, "Couldn't create temp file", "create_temp_file")
    os.close(fd)
    path = Path(name)
    cleanup.callback(remove_quietly, path)
    return path


def validate_content_length(request: Request, max_size: int) -> None:
    """
    Reject a request whose declared body size exceeds max_size.

    Runs before the multipart body is read, so nothing is buffered for an
    oversized request. Bodies without a usable Content-Length are still capped
    while streaming (see buffer_upload).

    Raises:
        HTTPException: 413 if Content-Length exceeds max_size
    """
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            return  # Invalid Content-Length header, continue with streaming validation
        if declared > max_size:
            raise _too_large(max_size)


def get_form_file(form, field: str) -> UploadFile:
    """Return the uploaded file for field, or raise 400 if it is missing or not a file."""
    value = form.get(field)
    if not isinstance(value, UploadFile):
        raise HTTPException(status_code=400, detail=f"Couldn't get {field} file")
    return value


async def sniff_upload(upload: UploadFile) -> str:
    """Detect the content type from the first bytes, then rewind the upload."""
    head = await upload.read(SNIFF_LENGTH)
    await upload.seek(0)
    return sniff_content_type(head)


async def buffer_upload(upload: UploadFile, path: Path, max_size: int, chunk_size: int) -> int:
    """
    Stream an upload to disk with size validation.

    Returns the total bytes written. The caller owns path and removes it.

    Raises:
        HTTPException: 413 if the upload exceeds max_size, 500 on disk errors
    """
    total_size = 0
    try:
        with open(path, "wb") as f:
            while chunk := await upload.read(chunk_size):
                total_size += len(chunk)
                if total_size > max_size:
                    raise _too_large(max_size)
                f.write(chunk)
    except OSError as e:
        log_and_raise_http_exception(e, 500, "Couldn't save upload", f"buffer_upload({path.name})")
    return total_size


class VideoIngestor:
    """Runs the video upload pipeline for one already-authorized record."""

    def __init__(self, settings: Settings, metadata, objects, inspector, repackager):
        self.settings = settings
        self.metadata = metadata
        self.objects = objects
        self.inspector = inspector
        self.repackager = repackager

    async def ingest(self, request: Request, video: dict) -> dict:
        """
        Ingest the multipart "video" field of request into video.

        Returns the updated record with video_url resolved to a presigned URL.

        Raises:
            HTTPException: 400/413/415 for bad input, 500 for any processing failure
        """
        try:
            result = await self._ingest(request, video)
        except HTTPException as e:
            VIDEO_UPLOADS_TOTAL.labels(result="rejected" if e.status_code < 500 else "failed").inc()
            raise
        VIDEO_UPLOADS_TOTAL.labels(result="success").inc()
        return result

    async def _ingest(self, request: Request, video: dict) -> dict:
        settings = self.settings
        video_id = video["id"]

        validate_content_length(request, settings.max_upload_size)

        async with request.form() as form:
            upload = get_form_file(form, VIDEO_FORM_FIELD)

            content_type = await sniff_upload(upload)
            if content_type != VIDEO_CONTENT_TYPE:
                logger.info(f"Rejected upload for video {video_id}: sniffed {content_type}")
                raise HTTPException(status_code=415, detail="Invalid file type. Only MP4 is allowed.")

            with ExitStack() as cleanup:
                try:
                    upload_path = create_temp_file(settings.temp_dir, ".mp4", cleanup)
                except HTTPException:
                    INGEST_FAILURES_TOTAL.labels(step="buffer").inc()
                    raise
                try:
                    size = await buffer_upload(upload, upload_path, settings.max_upload_size, settings.upload_chunk_size)
                except HTTPException as e:
                    if e.status_code >= 500:
                        INGEST_FAILURES_TOTAL.labels(step="buffer").inc()
                    raise
                if size == 0:
                    INGEST_FAILURES_TOTAL.labels(step="buffer").inc()
                    raise HTTPException(status_code=500, detail="Couldn't save upload: empty upload")
                logger.info(f"Buffered {size} bytes for video {video_id}")

                started = time.monotonic()
                return await self._process(video, upload_path, content_type, cleanup, started)

    async def _process(self, video: dict, upload_path: Path, content_type: str, cleanup: ExitStack, started: float):
        settings = self.settings
        video_id = video["id"]

        try:
            aspect = await get_video_aspect_ratio(upload_path, self.inspector)
        except (ProbeError, ValueError) as e:
            INGEST_FAILURES_TOTAL.labels(step="classify").inc()
            log_and_raise_http_exception(e, 500, "Couldn't determine video aspect ratio", f"probe({video_id})")

        # The remuxer may leave a partial output behind when it fails
        cleanup.callback(remove_quietly, fast_start_output_path(upload_path))
        try:
            processed_path = await self.repackager.repackage(upload_path)
        except RepackageError as e:
            INGEST_FAILURES_TOTAL.labels(step="repackage").inc()
            log_and_raise_http_exception(e, 500, "Couldn't process video", f"repackage({video_id})")
        cleanup.callback(remove_quietly, processed_path)

        bucket = settings.s3_bucket
        key = f"/{ASPECT_PREFIXES[aspect]}/{uuid.uuid4()}.mp4"
        try:
            reference = encode_video_reference(bucket, key)
        except ValueError as e:
            INGEST_FAILURES_TOTAL.labels(step="upload").inc()
            log_and_raise_http_exception(e, 500, "Couldn't upload video", f"video_reference({video_id})")

        try:
            await self.objects.put(bucket, key, processed_path, content_type)
        except StoreWriteError as e:
            INGEST_FAILURES_TOTAL.labels(step="upload").inc()
            log_and_raise_http_exception(e, 500, "Couldn't upload video", f"store_put({video_id})")

        previous_reference = video.get("video_url")
        video["video_url"] = reference
        try:
            await self.metadata.update_video(video)
        except Exception as e:
            video["video_url"] = previous_reference
            INGEST_FAILURES_TOTAL.labels(step="commit").inc()
            await self._compensate(bucket, key)
            log_and_raise_http_exception(e, 500, "Couldn't update video metadata", f"commit({video_id})")

        INGEST_DURATION_SECONDS.observe(time.monotonic() - started)
        logger.info(f"Video {video_id} stored at {bucket}/{key} ({aspect})")

        try:
            signed_url = self.objects.sign_reference(reference, settings.signed_url_ttl)
        except SignError as e:
            INGEST_FAILURES_TOTAL.labels(step="sign").inc()
            log_and_raise_http_exception(e, 500, "Couldn't generate presigned URL", f"sign({video_id})")

        return dict(video, video_url=signed_url)

    async def _compensate(self, bucket: str, key: str) -> None:
        """Best-effort removal of an object whose metadata commit failed."""
        try:
            await self.objects.delete(bucket, key)
        except StoreDeleteError as e:
            COMPENSATING_DELETES_TOTAL.labels(result="failed").inc()
            logger.error(f"Orphaned object {bucket}/{key}: compensating delete failed: {e}")
            return
        COMPENSATING_DELETES_TOTAL.labels(result="success").inc()
        logger.warning(f"Deleted {bucket}/{key} after failed metadata commit")


class ThumbnailIngestor:
    """Stores an uploaded JPEG/PNG thumbnail under assets_root."""

    def __init__(self, settings: Settings, metadata, objects):
        self.settings = settings
        self.metadata = metadata
        self.objects = objects

    async def ingest(self, request: Request, video: dict) -> dict:
        try:
            result = await self._ingest(request, video)
        except HTTPException as e:
            THUMBNAIL_UPLOADS_TOTAL.labels(result="rejected" if e.status_code < 500 else "failed").inc()
            raise
        THUMBNAIL_UPLOADS_TOTAL.labels(result="success").inc()
        return result

    async def _ingest(self, request: Request, video: dict) -> dict:
        settings = self.settings
        video_id = video["id"]

        validate_content_length(request, settings.max_thumbnail_size)

        async with request.form() as form:
            upload = get_form_file(form, THUMBNAIL_FORM_FIELD)

            content_type = await sniff_upload(upload)
            if content_type not in THUMBNAIL_CONTENT_TYPES:
                logger.info(f"Rejected thumbnail for video {video_id}: sniffed {content_type}")
                raise HTTPException(status_code=415, detail="Invalid file type. Only JPEG and PNG are allowed.")

            name = f"{secrets.token_urlsafe(THUMBNAIL_NAME_BYTES)}.{extension_for(content_type)}"
            path = settings.assets_root / name
            with ExitStack() as cleanup:
                temp_path = create_temp_file(settings.temp_dir, f".{extension_for(content_type)}", cleanup)
                await buffer_upload(upload, temp_path, settings.max_thumbnail_size, settings.upload_chunk_size)
                # Only complete, size-checked files become servable under /assets
                try:
                    shutil.move(str(temp_path), str(path))
                except OSError as e:
                    log_and_raise_http_exception(e, 500, "Couldn't save upload", f"thumbnail_publish({video_id})")

        previous_url = video.get("thumbnail_url")
        video["thumbnail_url"] = f"{settings.public_url}/assets/{name}"
        try:
            await self.metadata.update_video(video)
        except Exception as e:
            video["thumbnail_url"] = previous_url
            remove_quietly(path)
            log_and_raise_http_exception(e, 500, "Couldn't update video metadata", f"thumbnail_commit({video_id})")

        logger.info(f"Thumbnail for video {video_id} saved as {name}")

        try:
            signed_url = self.objects.sign_reference(video.get("video_url"), settings.signed_url_ttl)
        except SignError as e:
            log_and_raise_http_exception(e, 500, "Couldn't generate presigned URL", f"sign({video_id})")

        return dict(video, video_url=signed_url)
