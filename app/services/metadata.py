from typing import Mapping, Optional

from app.core.errors import MissingMetadataError


def read_metadata(metadata: Mapping[str, str], field: str, upload_id: Optional[str] = None) -> str:
    """Return a required metadata value, failing loudly if the client never sent it"""
    if field in metadata:
        return metadata[field]
    raise MissingMetadataError(field, upload_id)
