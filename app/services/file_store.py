"""
File-backed store for tus resumable uploads.

Every session keeps its bytes in <directory>/<id> and its state in a JSON
sidecar <directory>/<id>.info. Once a session has received all of its bytes
the store puts a CompletionEvent on its completion queue.
"""

import os
import uuid
import base64
import asyncio
import binascii
from typing import Dict, List, Optional
from loguru import logger
import aiofiles
import aiofiles.os

from app.core.errors import (
    UploadConcatError,
    UploadLengthError,
    UploadNotFoundError,
    UploadOffsetMismatchError,
    UploadRequestError,
)
from app.models.upload import CompletionEvent, UploadInfo

INFO_SUFFIX = ".info"
COPY_BUFFER_SIZE = 64 * 1024  # 64KB


def parse_metadata_header(header: Optional[str]) -> Dict[str, str]:
    """Decode an Upload-Metadata header (key base64value,key base64value)"""
    metadata: Dict[str, str] = {}
    if not header:
        return metadata

    for pair in header.split(','):
        pair = pair.strip()
        if not pair:
            continue
        if ' ' in pair:
            key, encoded_value = pair.split(' ', 1)
            try:
                metadata[key] = base64.b64decode(encoded_value.strip(), validate=True).decode('utf-8')
            except (binascii.Error, UnicodeDecodeError):
                raise UploadRequestError(f"Invalid Upload-Metadata value for key {key}")
        else:
            metadata[pair] = ""
    return metadata


def encode_metadata_header(metadata: Dict[str, str]) -> str:
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
        for key, value in metadata.items()
    )


class FileStore:
    def __init__(self, directory: str, max_size: int = 0):
        self.directory = directory
        self.max_size = max_size
        self.completed_uploads: "asyncio.Queue[CompletionEvent]" = asyncio.Queue()
        self.lock = asyncio.Lock()

    def _bin_path(self, upload_id: str) -> str:
        return os.path.join(self.directory, upload_id)

    def _info_path(self, upload_id: str) -> str:
        return os.path.join(self.directory, f"{upload_id}{INFO_SUFFIX}")

    async def _write_info(self, info: UploadInfo):
        async with aiofiles.open(self._info_path(info.id), 'w') as f:
            await f.write(info.model_dump_json(indent=2))

    async def get_upload(self, upload_id: str) -> UploadInfo:
        """Load the persisted state of an upload session"""
        info_path = self._info_path(upload_id)
        if os.sep in upload_id or not await aiofiles.os.path.exists(info_path):
            raise UploadNotFoundError(upload_id)

        async with aiofiles.open(info_path, 'r') as f:
            return UploadInfo.model_validate_json(await f.read())

    async def create_upload(self, size: Optional[int], metadata: Dict[str, str],
                            concat: Optional[str] = None) -> UploadInfo:
        """Create a new upload session, or a final concatenation of partial uploads"""
        if concat and concat.startswith("final"):
            return await self._create_final_upload(concat, metadata)

        if size is None or size < 0:
            raise UploadRequestError("Upload-Length header required")
        if self.max_size and size > self.max_size:
            raise UploadLengthError(f"File too large. Max size: {self.max_size} bytes")

        is_partial = concat == "partial"
        if concat and not is_partial:
            raise UploadConcatError(f"Invalid Upload-Concat header: {concat}")

        info = UploadInfo(
            id=uuid.uuid4().hex,
            size=size,
            metadata=metadata,
            is_partial=is_partial,
            is_final=not is_partial,
        )

        async with self.lock:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            async with aiofiles.open(self._bin_path(info.id), 'wb'):
                pass
            await self._write_info(info)

        logger.info(f"Created upload session {info.id} ({size} bytes{', partial' if is_partial else ''}) in {self.directory}")

        if info.is_complete:
            await self._notify_complete(info)
        return info

    async def _create_final_upload(self, concat: str, metadata: Dict[str, str]) -> UploadInfo:
        urls = concat[len("final"):].lstrip(';').split()
        if not urls:
            raise UploadConcatError("Final upload must reference at least one partial upload")

        partial_ids = [url.rstrip('/').rsplit('/', 1)[-1] for url in urls]
        partials: List[UploadInfo] = []
        for partial_id in partial_ids:
            partial = await self.get_upload(partial_id)
            if not partial.is_partial:
                raise UploadConcatError(f"Upload {partial_id} is not a partial upload")
            if not partial.is_complete:
                raise UploadConcatError(f"Partial upload {partial_id} is not complete yet")
            partials.append(partial)

        size = sum(partial.size for partial in partials)
        if self.max_size and size > self.max_size:
            raise UploadLengthError(f"File too large. Max size: {self.max_size} bytes")

        info = UploadInfo(
            id=uuid.uuid4().hex,
            size=size,
            offset=size,
            metadata=metadata,
            partial_uploads=partial_ids,
        )

        async with self.lock:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            async with aiofiles.open(self._bin_path(info.id), 'wb') as output_file:
                for partial in partials:
                    async with aiofiles.open(self._bin_path(partial.id), 'rb') as partial_file:
                        while True:
                            data = await partial_file.read(COPY_BUFFER_SIZE)
                            if not data:
                                break
                            await output_file.write(data)
            await self._write_info(info)

        logger.info(f"Concatenated {len(partials)} partial uploads into {info.id} ({size} bytes)")

        await self._notify_complete(info)
        return info

    async def write_chunk(self, upload_id: str, offset: int, data: bytes) -> UploadInfo:
        """Append a chunk at the current offset of an upload session"""
        async with self.lock:
            info = await self.get_upload(upload_id)

            if info.partial_uploads:
                raise UploadConcatError("Final concatenation uploads cannot be modified")
            if offset != info.offset:
                raise UploadOffsetMismatchError(
                    f"Upload-Offset {offset} does not match current offset {info.offset}"
                )
            if info.offset + len(data) > info.size:
                raise UploadLengthError("Chunk exceeds the declared upload length")

            if data:
                async with aiofiles.open(self._bin_path(upload_id), 'r+b') as f:
                    await f.seek(offset)
                    await f.write(data)
                info.offset += len(data)
                await self._write_info(info)

        progress_percentage = (info.offset / info.size) * 100 if info.size > 0 else 100
        logger.debug(f"Wrote {len(data)} bytes to {upload_id} at offset {offset} ({progress_percentage:.1f}% complete)")

        if data and info.is_complete:
            await self._notify_complete(info)
        return info

    async def _notify_complete(self, info: UploadInfo):
        logger.info(f"Upload {info.id} complete ({info.size} bytes, final={info.is_final})")
        await self.completed_uploads.put(CompletionEvent.from_info(info))
