# =============================================================================
# FastAPI Application — Finance Chat Assistant
# =============================================================================
#
# Run:
#   uvicorn finchat.main:app --reload
#
# STARTUP (lifespan):
#   1. Create missing tables (schema migrations are out of scope; create_all
#      is idempotent)
#   2. Seed the canned provider registry when it is empty and
#      SEED_DEFAULT_PROVIDERS is on
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from finchat.api import chat, providers
from finchat.config import settings
from finchat.db.engine import get_engine, get_session_factory
from finchat.db.models import Base
from finchat.models.responses import HealthResponse
from finchat.pipeline.registry import seed_default_providers

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.seed_default_providers:
        async with get_session_factory()() as session:
            await seed_default_providers(session)
            await session.commit()

    logger.info("%s v%s started", settings.app_name, settings.app_version)
    yield
    await get_engine().dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Finance chat assistant that asks several answer providers at once, "
        "merges their replies into one confidence-weighted answer, and has "
        "the providers cross-rate the result."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router)
app.include_router(providers.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
