"""
FastAPI application entry point for the cover-linking service.
"""

from __future__ import annotations

from fastapi import FastAPI

from coverlink.config import get_settings
from coverlink.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Cover Linking Service", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
