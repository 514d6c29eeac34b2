#!/usr/bin/env python3
"""
Simple script to run the FastAPI application
"""
import uvicorn

from app.core.config import settings

if __name__ == "__main__":
    print(f"Starting {settings.app_name}...")
    print("")
    print("ACCESS:")
    print(f"  tus endpoint: http://localhost:8000{settings.tus_base_path}")
    print(f"  Storage root: {settings.storage_root}")
    print("")
    print("=" * 60)

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info"
    )
