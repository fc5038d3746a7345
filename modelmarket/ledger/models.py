"""Pydantic models for decoded ledger state, lineage traces, royalty splits
and assembled transactions.

All models are frozen: they are produced per call and never mutated after
construction.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .address import Address

U16_MAX = 65535
U64_MAX = 2**64 - 1
I64_MIN = -(2**63)
I64_MAX = 2**63 - 1


# ---------------------------------------------------------------------------
# Decoded model account
# ---------------------------------------------------------------------------


class ModelRecord(BaseModel):
    """A model account as stored by the marketplace program.

    ``address`` is not part of the account bytes; the lineage resolver fills
    it in from the address it fetched.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    creator_address: Address
    model_name: str
    metadata_json: str = ""
    cid_root: str = ""
    parent_address: Address | None = None
    lineage_depth: int = Field(default=0, ge=0, le=U16_MAX)
    created_at: int = Field(default=0, ge=I64_MIN, le=I64_MAX)
    address: Address | None = None


# ---------------------------------------------------------------------------
# Lineage trace
# ---------------------------------------------------------------------------


class LineageViolation(str, Enum):
    """Problems found while walking a parent chain."""

    NOT_FOUND = "account not found"
    DECODE_FAILURE = "decode failure"
    MAX_DEPTH_EXCEEDED = "max depth exceeded"
    CIRCULAR_REFERENCE = "circular reference detected"


class LineageTrace(BaseModel):
    """Parent chain from the queried model (index 0) up to the root (last)."""

    model_config = ConfigDict(frozen=True)

    lineage: list[ModelRecord] = Field(default_factory=list)
    total_depth: int = 0
    is_valid: bool = True
    violations: list[LineageViolation] = Field(default_factory=list)

    @property
    def addresses(self) -> list[Address | None]:
        return [r.address for r in self.lineage]


# ---------------------------------------------------------------------------
# Royalty distribution
# ---------------------------------------------------------------------------


class AncestorShare(BaseModel):
    """One accepted lineage payout."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    address: Address | None = Field(description="Model account the share is earned by")
    recipient: Address = Field(description="Creator wallet the share is paid to")
    model_name: str = ""
    depth: int = Field(ge=0, description="Index of the model in the lineage trace")
    amount: int = Field(gt=0)


class RoyaltyDistribution(BaseModel):
    """How a gross payment splits between platform, lineage and developer.

    platform_amount + total_ancestor_amount + developer_amount == total_amount.
    """

    model_config = ConfigDict(frozen=True)

    total_amount: int = Field(ge=0)
    platform_amount: int = Field(ge=0)
    ancestor_shares: list[AncestorShare] = Field(default_factory=list)
    total_ancestor_amount: int = Field(ge=0)
    developer_amount: int = Field(ge=0)
    developer: Address | None = None


# ---------------------------------------------------------------------------
# Instructions and transactions
# ---------------------------------------------------------------------------


class AccountMeta(BaseModel):
    """An account referenced by an instruction."""

    model_config = ConfigDict(frozen=True)

    pubkey: Address
    is_signer: bool = False
    is_writable: bool = False


class Instruction(BaseModel):
    """A single program invocation: program, ordered account keys, payload."""

    model_config = ConfigDict(frozen=True)

    program_id: Address
    keys: list[AccountMeta] = Field(default_factory=list)
    data: bytes = b""


class TransferDirective(BaseModel):
    """Move ``amount`` minor units from ``source`` to ``destination``."""

    model_config = ConfigDict(frozen=True)

    source: Address
    destination: Address
    amount: int = Field(ge=0, le=U64_MAX)


class AssembledTransaction(BaseModel):
    """Program instructions plus value transfers, applied atomically."""

    model_config = ConfigDict(frozen=True)

    fee_payer: Address
    recent_checkpoint: str = Field(min_length=1, description="Recent blockhash (base58)")
    instructions: list[Instruction] = Field(default_factory=list)
    transfers: list[TransferDirective] = Field(default_factory=list)

    @property
    def transfer_total(self) -> int:
        return sum(t.amount for t in self.transfers)


__all__ = [
    "I64_MAX",
    "I64_MIN",
    "U16_MAX",
    "U64_MAX",
    "AccountMeta",
    "AncestorShare",
    "AssembledTransaction",
    "Instruction",
    "LineageTrace",
    "LineageViolation",
    "ModelRecord",
    "RoyaltyDistribution",
    "TransferDirective",
]
