"""Error taxonomy for the marketplace ledger layer.

Codec and derivation errors abort the request that raised them. Lineage
problems are not raised here; they are collected on the LineageTrace as
LineageViolation values so the caller can inspect a partial trace.
"""

from __future__ import annotations

from typing import Any


class MarketplaceError(Exception):
    """Base class for every error raised by modelmarket."""


class AddressDerivationError(MarketplaceError, ValueError):
    """Seeds exceed ledger limits, an address has the wrong length, or no bump works."""


class MalformedAccountError(MarketplaceError, ValueError):
    """Account bytes ended early or held a value the layout does not allow."""

    def __init__(self, message: str, offset: int | None = None):
        super().__init__(message)
        self.offset = offset


class RoyaltyComputationError(MarketplaceError, ValueError):
    """Negative or overflowing amount, or a split that does not conserve the total."""


class LedgerRequestError(MarketplaceError):
    """A read against the ledger failed at the transport or RPC level."""


class SubmissionError(MarketplaceError):
    """The ledger or network rejected a transaction.

    ``reason`` and ``data`` are passed through from the RPC response as-is.
    """

    def __init__(self, reason: str, data: Any = None):
        super().__init__(reason)
        self.reason = reason
        self.data = data


class LineageRejectedError(MarketplaceError):
    """A lineage trace had violations and the caller refused to settle against it."""

    def __init__(self, message: str, violations: list[str]):
        super().__init__(message)
        self.violations = violations


class ModelNotFoundError(MarketplaceError):
    """No model account exists at the requested address."""


class SubscriptionExistsError(MarketplaceError):
    """A subscription receipt already exists for this model and user."""


class ModelResolutionError(MarketplaceError):
    """A model identifier could not be resolved to an address."""


class SettlementError(MarketplaceError):
    """A payment cannot be settled: it is missing, failed, moved nothing or is below the minimum."""


__all__ = [
    "AddressDerivationError",
    "LedgerRequestError",
    "LineageRejectedError",
    "MalformedAccountError",
    "MarketplaceError",
    "ModelNotFoundError",
    "ModelResolutionError",
    "RoyaltyComputationError",
    "SettlementError",
    "SubmissionError",
    "SubscriptionExistsError",
]
