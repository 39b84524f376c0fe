# =============================================================================
# API Dependencies — Caller Identity & Pipeline Wiring
# =============================================================================
#
# get_current_user_id() — the caller's user id from the X-User-Id header.
#   Authentication itself is owned by an upstream service (gateway / auth
#   proxy) that sets this header; this API only trusts and scopes by it.
#
# get_pipeline() — the InquiryPipeline built from the application's
#   session factory, provider registry and admissibility gate. Tests swap
#   it out with app.dependency_overrides.
# =============================================================================

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Header, HTTPException

from finchat.config import settings
from finchat.db.engine import get_session_factory
from finchat.pipeline.orchestrator import InquiryPipeline
from finchat.pipeline.registry import ProviderRegistry
from finchat.services.admissibility import KeywordAdmissibilityGate

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, max_length=64),
) -> str:
    """
    Resolve the calling user.

    Raises:
        HTTPException 401: Header missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail="Missing user identity. Provide the 'X-User-Id' header.",
        )
    return x_user_id.strip()


@lru_cache
def get_registry() -> ProviderRegistry:
    return ProviderRegistry(default_timeout_ms=settings.default_provider_timeout_ms)


@lru_cache
def get_pipeline() -> InquiryPipeline:
    """Application pipeline, built on first use."""
    return InquiryPipeline(
        session_factory=get_session_factory(),
        registry=get_registry(),
        gate=KeywordAdmissibilityGate(),
        settings=settings,
    )
