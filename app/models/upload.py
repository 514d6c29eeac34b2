from pydantic import BaseModel, Field
from typing import Dict, List
from datetime import datetime

class UploadInfo(BaseModel):
    """Persisted state of one resumable upload (the .info sidecar)"""
    id: str
    size: int
    offset: int = 0
    metadata: Dict[str, str] = Field(default_factory=dict)
    is_partial: bool = False
    is_final: bool = True
    partial_uploads: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_complete(self) -> bool:
        return self.offset >= self.size

class CompletionEvent(BaseModel):
    """Notification emitted by the upload store once all bytes have arrived"""
    id: str
    size: int
    is_final: bool
    metadata: Dict[str, str] = Field(default_factory=dict)
    partial_uploads: List[str] = Field(default_factory=list)

    @classmethod
    def from_info(cls, info: UploadInfo) -> "CompletionEvent":
        return cls(
            id=info.id,
            size=info.size,
            is_final=info.is_final,
            metadata=dict(info.metadata),
            partial_uploads=list(info.partial_uploads),
        )

class TusSettings(BaseModel):
    enabled: bool
    chunkSize: int

class HandlerResponse(BaseModel):
    """Status and headers produced by an upload handler operation"""
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
