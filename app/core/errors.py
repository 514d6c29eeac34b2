"""
Error types for the upload pipeline.

Finalization errors are scoped to a single upload session. The completion
consumer catches FinalizationError, logs it and moves on to the next event.
"""

from typing import List, Optional


class FinalizationError(Exception):
    """Base class for every error raised while finalizing one upload"""

    def __init__(self, message: str, upload_id: Optional[str] = None):
        super().__init__(message)
        self.upload_id = upload_id


class MissingMetadataError(FinalizationError):
    def __init__(self, field: str, upload_id: Optional[str] = None):
        super().__init__(f"Metadata field {field} not found in upload request", upload_id)
        self.field = field


class InvalidOverwriteFlagError(FinalizationError):
    def __init__(self, value: str, upload_id: Optional[str] = None):
        super().__init__(f"Invalid overwrite flag {value!r}", upload_id)
        self.value = value


class OverwriteRejectedError(FinalizationError):
    """Destination exists and the client did not allow overwriting it"""

    def __init__(self, destination: str, upload_id: Optional[str] = None):
        super().__init__(
            f"Overwrite is set to false while destination file {destination} exists. Skipping upload.",
            upload_id,
        )
        self.destination = destination


class SourceNotFoundError(FinalizationError):
    def __init__(self, path: str, upload_id: Optional[str] = None):
        super().__init__(f"Uploaded file {path} not found", upload_id)
        self.path = path


class InvalidPathError(FinalizationError):
    def __init__(self, path: str, upload_id: Optional[str] = None):
        super().__init__(f"Destination {path} is outside of the user directory", upload_id)
        self.path = path


class MoveError(FinalizationError):
    pass


class CleanupError(FinalizationError):
    """One or more temporary artifacts could not be removed"""

    def __init__(self, failures: List[str], upload_id: Optional[str] = None):
        super().__init__(f"Failed to clean up {len(failures)} temporary path(s): {', '.join(failures)}", upload_id)
        self.failures = failures


class UploadStoreError(Exception):
    """Base class for upload store errors surfaced on the request path"""
    status_code = 400


class UploadNotFoundError(UploadStoreError):
    status_code = 404

    def __init__(self, upload_id: str):
        super().__init__(f"Upload session {upload_id} not found")
        self.upload_id = upload_id


class UploadOffsetMismatchError(UploadStoreError):
    status_code = 409


class UploadLengthError(UploadStoreError):
    status_code = 413


class UploadConcatError(UploadStoreError):
    status_code = 400


class UploadRequestError(UploadStoreError):
    status_code = 400


def parse_bool(value: str) -> bool:
    """Parse a stringified boolean the way the client sends it"""
    if value in ("1", "t", "T", "TRUE", "true", "True"):
        return True
    if value in ("0", "f", "F", "FALSE", "false", "False"):
        return False
    raise ValueError(f"invalid boolean {value!r}")
