# =============================================================================
# Pipeline Exceptions
# =============================================================================
#
# Raised by the consolidation pipeline and translated to HTTP status codes
# by the API layer:
#
#   AdmissibilityRejected   → 422  (no inquiry created)
#   ThreadNotFound          → 404
#   ThreadInactive          → 409
#   InquiryNotFound         → 404
#   NoProvidersAvailable    → 503  (inquiry FAILED)
#   AllProvidersFailed      → 503  (inquiry FAILED)
#   InvalidStatusTransition → 500  (inquiry FAILED)
#
# Per-provider failures are NOT exceptions at this level: the gateway turns
# them into errored replies / ratings.
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from finchat.services.admissibility import AdmissibilityResult


class PipelineError(Exception):
    """Base class for consolidation pipeline failures."""


class AdmissibilityRejected(PipelineError):
    """The admissibility gate refused the prompt before an inquiry existed."""

    def __init__(
        self,
        result: AdmissibilityResult,
        system_message_id: int | None = None,
        system_message: str | None = None,
    ) -> None:
        super().__init__("Non-financial content detected")
        self.result = result
        self.system_message_id = system_message_id
        self.system_message = system_message


class ThreadNotFound(PipelineError):
    """Thread does not exist or belongs to another user."""


class ThreadInactive(PipelineError):
    """Thread is archived or deleted and accepts no new messages."""


class InquiryNotFound(PipelineError):
    """Inquiry does not exist or belongs to another user."""


class NoProvidersAvailable(PipelineError):
    """The registry snapshot contained no ACTIVE providers."""

    def __init__(self, message: str = "No active answer providers available") -> None:
        super().__init__(message)


class AllProvidersFailed(PipelineError):
    """Every provider reply was errored or empty."""

    def __init__(self, message: str = "All answer providers failed to respond") -> None:
        super().__init__(message)


class InvalidStatusTransition(PipelineError):
    """A conditional status update matched no row in the expected state."""

    def __init__(self, inquiry_id: int, target: str) -> None:
        super().__init__(
            f"Inquiry {inquiry_id} cannot transition to {target} "
            "from its current status"
        )
        self.inquiry_id = inquiry_id
        self.target = target
