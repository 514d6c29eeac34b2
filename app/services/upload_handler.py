"""
Per-user tus upload handler.

Pairs one FileStore rooted at the user's temporary upload directory with the
CompletionConsumer that finalizes the store's completed uploads.
"""

import os
from typing import Mapping, Optional, Union
from loguru import logger

from app.core.config import Settings
from app.core.errors import UploadRequestError
from app.models.upload import CompletionEvent, HandlerResponse, UploadInfo
from app.services.completion_consumer import CompletionConsumer
from app.services.file_store import FileStore, encode_metadata_header, parse_metadata_header
from app.services.finalizer import finalize_upload

TUS_RESUMABLE = "1.0.0"
OFFSET_CONTENT_TYPE = "application/offset+octet-stream"


def _parse_int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise UploadRequestError(f"{name} header must be an integer")
    if parsed < 0:
        raise UploadRequestError(f"{name} header must not be negative")
    return parsed


class UploadHandler:
    def __init__(self, user_id: Union[int, str], user_root: str, settings: Settings):
        self.user_id = user_id
        self.user_root = user_root
        self.upload_dir = os.path.join(user_root, settings.upload_dir_name)
        self.base_path = settings.tus_base_path
        self.store = FileStore(self.upload_dir, max_size=settings.tus_max_size)
        self.consumer = CompletionConsumer(str(user_id), self.store.completed_uploads, self.handle_completed_upload)

    def start(self):
        self.consumer.start()

    @property
    def idle(self) -> bool:
        return self.consumer.idle

    async def close(self, drain: bool = True):
        await self.consumer.stop(drain=drain)

    async def handle_completed_upload(self, event: CompletionEvent) -> bool:
        # Holding the store lock keeps new sessions out of the directory while it may be removed
        async with self.store.lock:
            return await finalize_upload(self.user_root, self.upload_dir, event)

    def _headers(self, **extra: str) -> dict:
        return {"Tus-Resumable": TUS_RESUMABLE, **extra}

    async def post_file(self, headers: Mapping[str, str], body: bytes = b"") -> HandlerResponse:
        """Create an upload session, optionally writing the request body as its first chunk"""
        concat = headers.get("upload-concat")
        size = _parse_int_header(headers, "upload-length")
        metadata = parse_metadata_header(headers.get("upload-metadata"))
        if body and headers.get("content-type") != OFFSET_CONTENT_TYPE:
            raise UploadRequestError(f"Content-Type must be {OFFSET_CONTENT_TYPE}")

        info = await self.store.create_upload(size, metadata, concat=concat)

        if body and not info.is_complete and not info.partial_uploads:
            info = await self.store.write_chunk(info.id, 0, body)

        return HandlerResponse(
            status_code=201,
            headers=self._headers(**{
                "Location": f"{self.base_path}{info.id}",
                "Upload-Offset": str(info.offset),
            }),
        )

    async def head_file(self, upload_id: str) -> HandlerResponse:
        info = await self.store.get_upload(upload_id)

        headers = self._headers(**{
            "Upload-Offset": str(info.offset),
            "Upload-Length": str(info.size),
            "Cache-Control": "no-store",
        })
        if info.metadata:
            headers["Upload-Metadata"] = encode_metadata_header(info.metadata)
        concat = self._concat_header(info)
        if concat:
            headers["Upload-Concat"] = concat

        return HandlerResponse(status_code=200, headers=headers)

    async def patch_file(self, upload_id: str, headers: Mapping[str, str], body: bytes) -> HandlerResponse:
        if headers.get("content-type") != OFFSET_CONTENT_TYPE:
            raise UploadRequestError(f"Content-Type must be {OFFSET_CONTENT_TYPE}")

        offset = _parse_int_header(headers, "upload-offset")
        if offset is None:
            raise UploadRequestError("Upload-Offset header required")

        info = await self.store.write_chunk(upload_id, offset, body)

        return HandlerResponse(
            status_code=204,
            headers=self._headers(**{"Upload-Offset": str(info.offset)}),
        )

    def _concat_header(self, info: UploadInfo) -> Optional[str]:
        if info.is_partial:
            return "partial"
        if info.partial_uploads:
            return "final;" + " ".join(f"{self.base_path}{partial_id}" for partial_id in info.partial_uploads)
        return None

    def get_status(self) -> dict:
        return {
            'user_id': self.user_id,
            'upload_dir': self.upload_dir,
            'consumer': self.consumer.get_status(),
        }


def create_upload_handler(user_id: Union[int, str], user_root: str, settings: Settings) -> UploadHandler:
    """Build a handler and spawn its completion consumer"""
    logger.info(f"Creating tus handler for user {user_id}")
    handler = UploadHandler(user_id, user_root, settings)
    handler.start()
    return handler
