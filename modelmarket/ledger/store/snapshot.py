"""Snapshot-based LedgerClient.

Holds a fixed set of account bytes in memory, optionally persisted as a
gzip-compressed JSON file:
  {"checkpoint": "<blockhash>",
   "accounts": {"<base58 address>": "<base64 data>"},
   "transactions": {"<signature>": <jsonParsed transaction>}}

Lineage traces against a snapshot are reproducible: the same snapshot always
yields the same trace. Submitted transactions are recorded, not executed.
"""

from __future__ import annotations

import base64
import gzip
import json
from pathlib import Path
from typing import Any

import bittensor as bt

from modelmarket.ledger.address import Address
from modelmarket.ledger.codec import encode_model_account
from modelmarket.ledger.errors import SubmissionError
from modelmarket.ledger.message import transaction_id
from modelmarket.ledger.models import ModelRecord

# 32 zero bytes in base58; a syntactically valid blockhash for offline use
DEFAULT_CHECKPOINT = "11111111111111111111111111111111"


def _write_gzip_json(path: Path, data: Any) -> None:
    """Write data as gzipped JSON, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    raw = json.dumps(data, sort_keys=True).encode()
    with gzip.open(path, "wb") as f:
        f.write(raw)


def _read_gzip_json(path: Path) -> Any:
    """Read gzipped JSON file."""
    with gzip.open(path, "rb") as f:
        return json.loads(f.read())


class SnapshotLedgerClient:
    """LedgerClient over a fixed account snapshot."""

    def __init__(
        self,
        accounts: dict[Address, bytes] | None = None,
        checkpoint: str = DEFAULT_CHECKPOINT,
        transactions: dict[str, dict[str, Any]] | None = None,
    ):
        self.accounts: dict[Address, bytes] = dict(accounts or {})
        self.checkpoint = checkpoint
        self.transactions: dict[str, dict[str, Any]] = dict(transactions or {})
        self.submitted: list[bytes] = []

    # -- Snapshot editing --

    def put_account(self, address: Address, data: bytes) -> None:
        self.accounts[address] = bytes(data)

    def put_model(self, address: Address, record: ModelRecord) -> None:
        self.put_account(address, encode_model_account(record))

    def remove_account(self, address: Address) -> None:
        self.accounts.pop(address, None)

    def put_transaction(self, signature: str, transaction: dict[str, Any]) -> None:
        self.transactions[signature] = transaction

    # -- Persistence --

    def save(self, path: str | Path) -> None:
        _write_gzip_json(Path(path), {
            "checkpoint": self.checkpoint,
            "accounts": {
                str(addr): base64.b64encode(data).decode()
                for addr, data in self.accounts.items()
            },
            "transactions": self.transactions,
        })
        bt.logging.info({"ledger_snapshot": {"event": "saved", "path": str(path), "accounts": len(self.accounts)}})

    @classmethod
    def load(cls, path: str | Path) -> SnapshotLedgerClient:
        data = _read_gzip_json(Path(path))
        accounts = {
            Address.from_base58(addr): base64.b64decode(encoded)
            for addr, encoded in data.get("accounts", {}).items()
        }
        bt.logging.info({"ledger_snapshot": {"event": "loaded", "path": str(path), "accounts": len(accounts)}})
        return cls(
            accounts=accounts,
            checkpoint=data.get("checkpoint", DEFAULT_CHECKPOINT),
            transactions=data.get("transactions", {}),
        )

    # -- LedgerClient interface --

    async def fetch_account_bytes(self, address: Address) -> bytes | None:
        return self.accounts.get(address)

    async def current_network_checkpoint(self) -> str:
        return self.checkpoint

    async def submit_transaction(self, raw: bytes) -> str:
        try:
            tx_id = transaction_id(raw)
        except ValueError as e:
            raise SubmissionError(f"unparseable transaction: {e}") from e
        self.submitted.append(bytes(raw))
        bt.logging.info({"ledger_snapshot": {"event": "transaction_recorded", "id": tx_id}})
        return tx_id

    async def fetch_transaction(self, signature: str) -> dict[str, Any] | None:
        return self.transactions.get(signature)


__all__ = ["DEFAULT_CHECKPOINT", "SnapshotLedgerClient"]
