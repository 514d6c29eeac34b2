from fastapi import APIRouter, Depends

from app.core.config import settings
from app.models.upload import TusSettings
from app.services.auth_service import CurrentUser, get_current_user

router = APIRouter(tags=["settings"])


@router.get("/settings-tus", response_model=TusSettings)
async def get_tus_settings(current_user: CurrentUser = Depends(get_current_user)):
    """tus settings the client needs before starting an upload"""
    return TusSettings(enabled=settings.tus_enabled, chunkSize=settings.tus_chunk_size)
