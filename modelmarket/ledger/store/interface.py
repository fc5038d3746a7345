"""LedgerClient protocol - pluggable ledger access.

Implementations: SolanaRPCClient (JSON-RPC over HTTP), SnapshotLedgerClient
(fixed in-memory / on-disk account snapshot).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from modelmarket.ledger.address import Address


@runtime_checkable
class LedgerClient(Protocol):
    """What the marketplace core needs from the ledger."""

    async def fetch_account_bytes(self, address: Address) -> bytes | None:
        """Raw account data, or None if no account exists at ``address``."""
        ...

    async def current_network_checkpoint(self) -> str:
        """A recent blockhash to stamp a transaction with before submission."""
        ...

    async def submit_transaction(self, raw: bytes) -> str:
        """Submit a signed, serialised transaction. Returns its id.

        Raises SubmissionError if the ledger rejects it or cannot be reached.
        """
        ...

    async def fetch_transaction(self, signature: str) -> dict[str, Any] | None:
        """A confirmed transaction in the ledger's jsonParsed form, or None if unknown."""
        ...


__all__ = ["LedgerClient"]
