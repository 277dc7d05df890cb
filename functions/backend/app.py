"""
FastAPI application entry point for the content service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.config import Settings, get_settings
from backend.dependencies import Services, build_services
from backend.routes import router


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.start()
        try:
            yield
        finally:
            services.stop()

    app = FastAPI(title="Gogfather Content API", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
