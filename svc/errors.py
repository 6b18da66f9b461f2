# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Exceptions raised along the webhook reconciliation path."""


class PlanSyncError(Exception):
    """Base class for plan sync failures."""


class AuthenticationError(PlanSyncError):
    """Raised when a webhook signature or admin secret does not check out."""


class MalformedEventError(PlanSyncError):
    """Raised when a verified payload is not a usable event envelope."""


class UnresolvableEvent(PlanSyncError):
    """Raised while resolving an event that cannot be acted on.

    The reconciler converts this into a ``Skip`` decision; it never reaches
    the transport layer.
    """

    def __init__(self, reason: str, detail: object = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.detail = detail


class UpstreamFetchError(PlanSyncError):
    """Raised when the payment processor cannot be queried."""


class StoreWriteError(PlanSyncError):
    """Raised when the subscriber store rejects or cannot accept a write."""


class PlanMappingError(PlanSyncError):
    """Raised when the configured plan mapping cannot place a token."""
