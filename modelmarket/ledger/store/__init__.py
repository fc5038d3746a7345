"""Ledger access implementations behind the LedgerClient protocol."""

from .interface import LedgerClient
from .rpc_client import SolanaRPCClient
from .snapshot import SnapshotLedgerClient

__all__ = ["LedgerClient", "SnapshotLedgerClient", "SolanaRPCClient"]
