"""
Finalization of completed uploads.

Moves the uploaded bytes of a final session from the user's temporary upload
directory into the user's storage tree and removes every temporary artifact
that belongs to the session, including the fragments of concatenated uploads.
"""

import os
from typing import List, Optional
from loguru import logger
import aiofiles.os

from app.core.errors import (
    CleanupError,
    InvalidOverwriteFlagError,
    InvalidPathError,
    MoveError,
    OverwriteRejectedError,
    SourceNotFoundError,
    parse_bool,
)
from app.models.upload import CompletionEvent
from app.services.metadata import read_metadata


def resolve_destination(user_root: str, destination: str) -> str:
    """Join a client supplied destination onto the user root without escaping it"""
    root = os.path.abspath(user_root)
    full_destination = os.path.abspath(os.path.join(root, destination.lstrip("/\\")))
    if full_destination == root or not full_destination.startswith(root + os.sep):
        raise InvalidPathError(destination)
    return full_destination


async def finalize_upload(user_root: str, upload_dir: str, event: CompletionEvent) -> bool:
    """
    Commit a completed upload into the user's storage tree.

    Returns False when the event belongs to a partial upload and nothing was
    done, True once the file has been moved and the temporary files removed.
    Raises a FinalizationError subclass otherwise. The rename is the only
    externally visible step; cleanup failures never undo it.
    """
    # Partial uploads are finalized through the final concatenation
    if not event.is_final:
        return False

    filename = read_metadata(event.metadata, "filename", event.id)
    destination = read_metadata(event.metadata, "destination", event.id)
    overwrite_str = read_metadata(event.metadata, "overwrite", event.id)

    uploaded_file = os.path.join(upload_dir, event.id)
    try:
        full_destination = resolve_destination(user_root, destination)
    except InvalidPathError as e:
        e.upload_id = event.id
        raise

    if not await aiofiles.os.path.isfile(uploaded_file):
        raise SourceNotFoundError(uploaded_file, event.id)

    logger.info(f"Upload of {filename} ({uploaded_file}) is finished. Moving file to destination "
                f"({full_destination}) and cleaning up temporary files.")

    if await aiofiles.os.path.exists(full_destination):
        try:
            overwrite = parse_bool(overwrite_str)
        except ValueError:
            raise InvalidOverwriteFlagError(overwrite_str, event.id)
        if not overwrite:
            raise OverwriteRejectedError(destination, event.id)

    try:
        await aiofiles.os.makedirs(os.path.dirname(full_destination), exist_ok=True)
        await aiofiles.os.replace(uploaded_file, full_destination)
    except OSError as e:
        raise MoveError(f"Failed to move {uploaded_file} to {full_destination}: {e}", event.id) from e

    await cleanup_upload_files(upload_dir, [*event.partial_uploads, event.id], event.id)
    return True


async def cleanup_upload_files(upload_dir: str, upload_ids: List[str], upload_id: Optional[str] = None):
    """
    Remove every file in upload_dir whose name starts with one of upload_ids,
    then remove upload_dir itself if nothing else is left in it.

    Every deletion is attempted; failures are collected and raised together.
    """
    failures: List[str] = []

    try:
        entries = await aiofiles.os.listdir(upload_dir)
    except OSError as e:
        raise CleanupError([f"{upload_dir} ({e})"], upload_id) from e

    for filename in sorted(entries):
        if not any(filename.startswith(prefix) for prefix in upload_ids):
            continue
        path = os.path.join(upload_dir, filename)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {path}: {e}")
            failures.append(path)

    try:
        if not await aiofiles.os.listdir(upload_dir):
            # rmdir refuses non-empty directories, so a concurrent upload that
            # repopulated the directory in the meantime is left alone
            await aiofiles.os.rmdir(upload_dir)
            logger.debug(f"Removed empty upload directory {upload_dir}")
    except FileNotFoundError:
        pass
    except OSError as e:
        if await aiofiles.os.path.isdir(upload_dir) and await aiofiles.os.listdir(upload_dir):
            logger.debug(f"Upload directory {upload_dir} was repopulated, keeping it")
        else:
            logger.warning(f"Failed to remove upload directory {upload_dir}: {e}")
            failures.append(upload_dir)

    if failures:
        raise CleanupError(failures, upload_id)
