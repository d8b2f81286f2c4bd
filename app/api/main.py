"""FastAPI application factory.

Assembles CORS and the API routers.
This module is the authoritative app object; app/main.py re-exports it.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes.device_tokens import router as device_tokens_router
from app.api.routes.health import router as health_router
from app.api.routes.quotations import router as quotations_router
from app.core.logging import setup_logging
from app.core.settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    logger.info("Starting %s (%s)", get_settings().app_name, get_settings().app_env)
    yield


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# Mobile and web clients call the API directly.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(quotations_router)
app.include_router(device_tokens_router)
