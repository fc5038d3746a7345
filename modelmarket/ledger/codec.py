"""Binary codec for marketplace program instructions and accounts.

Wire rules (must match the deployed program byte for byte):
- Discriminator: first 8 bytes of sha256("global:<instruction>"), or
  sha256("account:<AccountName>") for account data.
- String: u32 little-endian byte length, then raw UTF-8, no terminator.
- Optional address: one tag byte (0 absent, 1 present), then 32 bytes if present.
- Integers: little-endian at the width the field declares.

Nothing in this module performs I/O.
"""

from __future__ import annotations

import hashlib
import struct

from .address import ADDRESS_LENGTH, Address
from .errors import MalformedAccountError
from .models import ModelRecord

DISCRIMINATOR_SIZE = 8
MODEL_ACCOUNT_NAME = "ModelAccount"

_OPTION_NONE = 0
_OPTION_SOME = 1


def discriminator(name: str, namespace: str = "global") -> bytes:
    """8-byte tag selecting an instruction (namespace ``global``) or account type."""
    return hashlib.sha256(f"{namespace}:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_SIZE]


# ---------------------------------------------------------------------------
# Primitive encoders
# ---------------------------------------------------------------------------


def _pack(fmt: str, value: int, bits: int, signed: bool = False) -> bytes:
    lo, hi = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
    if not lo <= value <= hi:
        raise ValueError(f"{value} does not fit in {'i' if signed else 'u'}{bits}")
    return struct.pack(fmt, value)


def encode_u8(value: int) -> bytes:
    return _pack("<B", value, 8)


def encode_u16(value: int) -> bytes:
    return _pack("<H", value, 16)


def encode_u32(value: int) -> bytes:
    return _pack("<I", value, 32)


def encode_u64(value: int) -> bytes:
    return _pack("<Q", value, 64)


def encode_i64(value: int) -> bytes:
    return _pack("<q", value, 64, signed=True)


def encode_string(value: str) -> bytes:
    data = value.encode("utf-8")
    return encode_u32(len(data)) + data


def encode_optional_address(address: Address | None) -> bytes:
    if address is None:
        return bytes([_OPTION_NONE])
    return bytes([_OPTION_SOME]) + bytes(address)


# ---------------------------------------------------------------------------
# Instruction payloads
# ---------------------------------------------------------------------------


def encode_create_model(
    model_name: str,
    metadata_json: str,
    cid_root: str,
    parent_address: Address | None = None,
) -> bytes:
    """create_model(model_name, metadata_json, cid_root, parent: Option<Pubkey>)."""
    return b"".join((
        discriminator("create_model"),
        encode_string(model_name),
        encode_string(metadata_json),
        encode_string(cid_root),
        encode_optional_address(parent_address),
    ))


def encode_purchase_subscription() -> bytes:
    """purchase_subscription() carries no arguments in the current program version."""
    return discriminator("purchase_subscription")


# ---------------------------------------------------------------------------
# Account decoding
# ---------------------------------------------------------------------------


class AccountReader:
    """Sequential little-endian reader that fails loudly on underrun."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = bytes(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, size: int, field: str) -> bytes:
        if size > self.remaining:
            raise MalformedAccountError(
                f"buffer underrun reading {field}: need {size} bytes at offset "
                f"{self.offset}, {self.remaining} left",
                offset=self.offset,
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def skip(self, size: int, field: str) -> None:
        self.read(size, field)

    def read_u8(self, field: str) -> int:
        return self.read(1, field)[0]

    def read_u16(self, field: str) -> int:
        return struct.unpack("<H", self.read(2, field))[0]

    def read_u32(self, field: str) -> int:
        return struct.unpack("<I", self.read(4, field))[0]

    def read_i64(self, field: str) -> int:
        return struct.unpack("<q", self.read(8, field))[0]

    def read_address(self, field: str) -> Address:
        return Address(self.read(ADDRESS_LENGTH, field))

    def read_string(self, field: str) -> str:
        length = self.read_u32(f"{field} length")
        start = self.offset
        raw = self.read(length, field)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedAccountError(f"{field} is not valid UTF-8: {e}", offset=start) from e

    def read_optional_address(self, field: str) -> Address | None:
        start = self.offset
        tag = self.read_u8(f"{field} tag")
        if tag == _OPTION_NONE:
            return None
        if tag == _OPTION_SOME:
            return self.read_address(field)
        raise MalformedAccountError(f"{field} has invalid option tag {tag}", offset=start)


def decode_model_account(data: bytes) -> ModelRecord:
    """Decode a model account. The leading discriminator is skipped, not checked."""
    reader = AccountReader(data)
    reader.skip(DISCRIMINATOR_SIZE, "discriminator")
    creator = reader.read_address("creator_address")
    model_name = reader.read_string("model_name")
    metadata_json = reader.read_string("metadata_json")
    cid_root = reader.read_string("cid_root")
    parent = reader.read_optional_address("parent_address")
    lineage_depth = reader.read_u16("lineage_depth")
    created_at = reader.read_i64("created_at")

    return ModelRecord(
        creator_address=creator,
        model_name=model_name,
        metadata_json=metadata_json,
        cid_root=cid_root,
        parent_address=parent,
        lineage_depth=lineage_depth,
        created_at=created_at,
    )


def encode_model_account(record: ModelRecord) -> bytes:
    """Account bytes for ``record`` in the layout decode_model_account reads.

    Used to build ledger snapshots and fixtures.
    """
    return b"".join((
        discriminator(MODEL_ACCOUNT_NAME, namespace="account"),
        bytes(record.creator_address),
        encode_string(record.model_name),
        encode_string(record.metadata_json),
        encode_string(record.cid_root),
        encode_optional_address(record.parent_address),
        encode_u16(record.lineage_depth),
        encode_i64(record.created_at),
    ))


__all__ = [
    "DISCRIMINATOR_SIZE",
    "AccountReader",
    "decode_model_account",
    "discriminator",
    "encode_create_model",
    "encode_i64",
    "encode_model_account",
    "encode_optional_address",
    "encode_purchase_subscription",
    "encode_string",
    "encode_u16",
    "encode_u32",
    "encode_u64",
    "encode_u8",
]
