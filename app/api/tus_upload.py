"""
TUS Resumable Upload API Endpoints
Dispatches POST, HEAD and PATCH requests to the caller's upload handler
"""

from fastapi import APIRouter, HTTPException, Request, Depends, Response
from typing import Optional
from loguru import logger
import aiofiles.os

from app.core.errors import UploadStoreError
from app.services.auth_service import RequestContext, get_request_context
from app.services.handler_registry import HandlerRegistry
from app.services.upload_handler import TUS_RESUMABLE, UploadHandler

router = APIRouter(prefix="/tus", tags=["tus-upload"])

ALL_METHODS = ["GET", "POST", "HEAD", "PATCH", "PUT", "DELETE", "OPTIONS"]


def get_handler_registry(request: Request) -> HandlerRegistry:
    return request.app.state.handler_registry


async def _dispatch(request: Request, handler: UploadHandler, upload_id: Optional[str]) -> Response:
    method = request.method

    if method == "POST" and upload_id is None:
        result = await handler.post_file(request.headers, await request.body())
    elif method == "HEAD" and upload_id is not None:
        result = await handler.head_file(upload_id)
    elif method == "PATCH" and upload_id is not None:
        result = await handler.patch_file(upload_id, request.headers, await request.body())
    else:
        raise HTTPException(status_code=405, detail="Method not allowed")

    return Response(status_code=result.status_code, headers=result.headers)


async def _serve(request: Request, ctx: RequestContext, registry: HandlerRegistry,
                 upload_id: Optional[str] = None) -> Response:
    if not ctx.settings.tus_enabled:
        raise HTTPException(status_code=404, detail="tus uploads are disabled")

    # One handler per user, kept out of eviction until the request is done with it
    async with registry.acquire(ctx.user.user_id, ctx.user_root) as handler:
        # The finalizer removes the directory once it is empty, so recreate it per request
        try:
            await aiofiles.os.makedirs(handler.upload_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create upload directory {handler.upload_dir}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to create upload directory: {str(e)}")

        try:
            return await _dispatch(request, handler, upload_id)

        except HTTPException:
            raise
        except UploadStoreError as e:
            logger.warning(f"Rejected tus {request.method} for user {ctx.user.user_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=str(e), headers={"Tus-Resumable": TUS_RESUMABLE})
        except Exception as e:
            logger.error(f"Failed to handle tus {request.method} request: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to handle upload: {str(e)}")


@router.api_route("/", methods=ALL_METHODS)
async def tus_collection(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    registry: HandlerRegistry = Depends(get_handler_registry),
):
    """Create uploads (POST); every other method is rejected"""
    return await _serve(request, ctx, registry)


@router.api_route("/{upload_id}", methods=ALL_METHODS)
async def tus_upload(
    upload_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    registry: HandlerRegistry = Depends(get_handler_registry),
):
    """Query (HEAD) or append to (PATCH) an upload"""
    return await _serve(request, ctx, registry, upload_id)
