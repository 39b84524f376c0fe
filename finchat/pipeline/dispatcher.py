# =============================================================================
# Fan-Out Dispatcher — Ask Every Provider at Once
# =============================================================================
#
# Calls `ask` on every gateway concurrently and waits for all of them to
# settle. Gateways already convert failures into errored replies; the
# gather() safety net catches anything that still escapes (a bug in a
# client's __await__, say) and records it the same way.
#
# OUTPUT CONTRACT:
#   len(result) == len(providers), result[i].provider == providers[i].provider_id
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from finchat.pipeline.errors import NoProvidersAvailable
from finchat.pipeline.gateway import ProviderGateway, ProviderReply

logger = logging.getLogger(__name__)


async def ask_all_providers(
    providers: Sequence[ProviderGateway],
    question: str,
    context: str | None = None,
) -> list[ProviderReply]:
    """
    Dispatch a question to every provider concurrently.

    Raises:
        NoProvidersAvailable: If `providers` is empty.
    """
    if not providers:
        raise NoProvidersAvailable()

    logger.info("Dispatching to %d provider(s)", len(providers))

    results = await asyncio.gather(
        *(p.ask(question, context) for p in providers),
        return_exceptions=True,
    )

    replies: list[ProviderReply] = []
    for provider, result in zip(providers, results):
        if isinstance(result, BaseException):
            logger.warning(
                "Provider %s raised past its gateway: %r", provider.provider_id, result,
            )
            result = ProviderReply(
                provider=provider.provider_id,
                answer="",
                confidence=0.0,
                response_time_ms=0,
                error=f"{type(result).__name__}: {result}",
            )
        replies.append(result)

    succeeded = sum(1 for r in replies if r.usable)
    logger.info(
        "Dispatch complete: %d/%d usable replies", succeeded, len(replies),
    )
    return replies
