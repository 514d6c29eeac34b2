from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
import sys

from app.core.config import settings
from app.api.tus_upload import router as tus_upload_router
from app.api.settings import router as settings_router
from app.services.handler_registry import HandlerRegistry

# Configure logging
logger.remove()
logger.add(sys.stdout, level="INFO" if not settings.debug else "DEBUG")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.handler_registry = HandlerRegistry(settings)
    logger.info(f"{settings.app_name} started, storing uploads under {settings.storage_root}")
    yield
    await app.state.handler_registry.shutdown()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Resumable tus uploads committed into per-user storage",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Location", "Upload-Offset", "Upload-Length", "Tus-Resumable", "Upload-Metadata"],
)

# Include routers
app.include_router(tus_upload_router, prefix="/api")
app.include_router(settings_router, prefix="/api")

@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": "1.0.0",
        "endpoints": {
            "tus": settings.tus_base_path,
            "tus_settings": "/api/settings-tus",
            "health": "/health"
        }
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "upload_handlers": len(app.state.handler_registry),
        "uploads": app.state.handler_registry.get_status()
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
