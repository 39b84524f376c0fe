# =============================================================================
# Provider Registry — Admin-Configured Answer Providers
# =============================================================================
#
# Reads `provider_configs` and turns each ACTIVE row into a ProviderGateway.
# The orchestrator takes ONE snapshot per inquiry run and reuses it for
# both dispatch and cross-rating, so a provider toggled mid-run does not
# change who is asked or who rates.
#
# A row whose client spec cannot be built (bad spec, unknown canned
# profile, missing API key) is skipped with an ERROR log rather than
# failing the whole snapshot.
# =============================================================================

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finchat.config import settings
from finchat.db.models import ProviderConfig, ProviderStatus
from finchat.pipeline.gateway import ProviderGateway
from finchat.services.answer_clients import build_answer_client

logger = logging.getLogger(__name__)

# (provider_key, name, client_spec, priority, timeout_ms, config)
DEFAULT_PROVIDERS: list[tuple[str, str, str, int, int, dict]] = [
    ("YAHOO", "Yahoo Finance", "canned/yahoo", 1, 5000, {"delay_ms": 150}),
    ("GOOGLE", "Google Finance", "canned/google", 2, 5000, {"delay_ms": 200}),
    ("FALLBACK", "Fallback Advisor", "canned/fallback", 3, 3000, {"delay_ms": 50}),
]


class ProviderRegistry:
    """Builds gateways for the providers an admin has enabled."""

    def __init__(self, default_timeout_ms: int | None = None) -> None:
        self.default_timeout_ms = (
            default_timeout_ms
            if default_timeout_ms is not None
            else settings.default_provider_timeout_ms
        )

    async def list_all(self, session: AsyncSession) -> list[ProviderConfig]:
        """Every configured provider regardless of status, priority order."""
        result = await session.execute(
            select(ProviderConfig).order_by(ProviderConfig.priority, ProviderConfig.id)
        )
        return list(result.scalars().all())

    async def snapshot(self, session: AsyncSession) -> list[ProviderGateway]:
        """ACTIVE providers as gateways, lowest priority value first."""
        result = await session.execute(
            select(ProviderConfig)
            .where(ProviderConfig.status == ProviderStatus.ACTIVE)
            .order_by(ProviderConfig.priority, ProviderConfig.id)
        )

        gateways: list[ProviderGateway] = []
        for config in result.scalars().all():
            gateway = self.build_gateway(config)
            if gateway is not None:
                gateways.append(gateway)

        logger.info(
            "Provider snapshot: %s",
            [g.provider_id for g in gateways] or "none active",
        )
        return gateways

    def build_gateway(self, config: ProviderConfig) -> ProviderGateway | None:
        try:
            client = build_answer_client(config.client_spec, config.config or {})
        except ValueError as e:
            logger.error(
                "Skipping provider %s: cannot build client '%s': %s",
                config.provider_key, config.client_spec, e,
            )
            return None

        return ProviderGateway(
            provider_id=config.provider_key,
            client=client,
            timeout_ms=config.timeout_ms or self.default_timeout_ms,
            priority=config.priority,
        )


async def seed_default_providers(session: AsyncSession) -> int:
    """
    Register DEFAULT_PROVIDERS if no provider is configured yet.

    Returns the number of rows inserted (0 when the registry is non-empty).
    The caller owns the transaction.
    """
    existing = await session.scalar(select(func.count()).select_from(ProviderConfig))
    if existing:
        return 0

    for key, name, client_spec, priority, timeout_ms, config in DEFAULT_PROVIDERS:
        session.add(ProviderConfig(
            provider_key=key,
            name=name,
            client_spec=client_spec,
            status=ProviderStatus.ACTIVE,
            priority=priority,
            timeout_ms=timeout_ms,
            config=config,
        ))
    await session.flush()

    logger.info("Seeded %d default providers", len(DEFAULT_PROVIDERS))
    return len(DEFAULT_PROVIDERS)
