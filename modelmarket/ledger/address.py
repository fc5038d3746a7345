"""Ledger addresses and deterministic program address derivation.

A program address is the SHA-256 of the seeds, a one-byte bump, the program
id and the ``ProgramDerivedAddress`` marker, chosen so that the hash is NOT a
valid ed25519 point (no private key can exist for it). The bump is searched
from 255 downwards and the first off-curve hash wins.

This must stay bit-compatible with the deployed program: a different seed
order, width or encoding yields an address the program will not accept.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Iterable, Union

import base58
from pydantic_core import core_schema

from .errors import AddressDerivationError

ADDRESS_LENGTH = 32
MAX_SEEDS = 16
MAX_SEED_LENGTH = 32
PDA_MARKER = b"ProgramDerivedAddress"

MODEL_SEED = b"model"
RECEIPT_SEED = b"receipt"

# Curve25519 field prime and the twisted Edwards constant d = -121665/121666
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


@dataclass(frozen=True)
class Address:
    """A 32-byte ledger identity. Text form is base58."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, (bytes, bytearray)):
            raise AddressDerivationError(f"address must be bytes, got {type(self.raw).__name__}")
        if len(self.raw) != ADDRESS_LENGTH:
            raise AddressDerivationError(
                f"address must be {ADDRESS_LENGTH} bytes, got {len(self.raw)}"
            )
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_base58(cls, text: str) -> Address:
        try:
            raw = base58.b58decode(text.strip())
        except ValueError as e:
            raise AddressDerivationError(f"invalid base58 address {text!r}: {e}") from e
        return cls(raw)

    @classmethod
    def parse(cls, value: Any) -> Address:
        """Accept an Address, 32 raw bytes, or a base58 string."""
        if isinstance(value, Address):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        if isinstance(value, str):
            return cls.from_base58(value)
        raise AddressDerivationError(f"cannot interpret {type(value).__name__} as an address")

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return base58.b58encode(self.raw).decode()

    def __repr__(self) -> str:
        return f"Address('{self}')"

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls.parse,
            serialization=core_schema.plain_serializer_function_ser_schema(str, when_used="json"),
        )


SeedLike = Union[bytes, bytearray, Address]

SYSTEM_PROGRAM_ID = Address(bytes(ADDRESS_LENGTH))


def is_on_curve(raw: bytes) -> bool:
    """True if ``raw`` decompresses to a point on the ed25519 curve.

    Mirrors curve25519 point decompression: the top bit is the x sign and is
    ignored, y is reduced mod p, and the point exists iff
    (y^2 - 1) / (d*y^2 + 1) is a square in GF(p).
    """
    if len(raw) != ADDRESS_LENGTH:
        raise AddressDerivationError(f"curve check needs {ADDRESS_LENGTH} bytes, got {len(raw)}")

    y = (int.from_bytes(raw, "little") & ((1 << 255) - 1)) % _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    if v == 0:
        return u == 0

    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    # Euler's criterion
    return pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: list[bytes], reserved: int = 0) -> None:
    if len(seeds) + reserved > MAX_SEEDS:
        raise AddressDerivationError(
            f"too many seeds: {len(seeds)} (max {MAX_SEEDS - reserved})"
        )
    for i, seed in enumerate(seeds):
        if len(seed) > MAX_SEED_LENGTH:
            raise AddressDerivationError(
                f"seed {i} is {len(seed)} bytes (max {MAX_SEED_LENGTH})"
            )


def _hash_seeds(seeds: Iterable[bytes], program_id: Address) -> bytes:
    h = hashlib.sha256()
    for seed in seeds:
        h.update(seed)
    h.update(bytes(program_id))
    h.update(PDA_MARKER)
    return h.digest()


def create_program_address(seeds: Iterable[SeedLike], program_id: Address) -> Address:
    """Hash ``seeds`` (bump already included) into a program address.

    Raises AddressDerivationError if the result lies on the curve.
    """
    seed_bytes = [bytes(s) for s in seeds]
    _check_seeds(seed_bytes)
    digest = _hash_seeds(seed_bytes, program_id)
    if is_on_curve(digest):
        raise AddressDerivationError("derived address lies on the ed25519 curve")
    return Address(digest)


def derive_address(program_id: Address, seeds: Iterable[SeedLike]) -> tuple[Address, int]:
    """Find the canonical program address and bump for ``seeds``.

    Tries bump 255 down to 0 and returns the first off-curve hash.
    """
    seed_bytes = [bytes(s) for s in seeds]
    _check_seeds(seed_bytes, reserved=1)

    for bump in range(255, -1, -1):
        digest = _hash_seeds([*seed_bytes, bytes([bump])], program_id)
        if not is_on_curve(digest):
            return Address(digest), bump

    raise AddressDerivationError("no bump produced an off-curve address")


def model_seeds(creator: Address, model_name: str) -> list[bytes]:
    return [MODEL_SEED, bytes(creator), model_name.encode("utf-8")]


def receipt_seeds(model_address: Address, user: Address) -> list[bytes]:
    return [RECEIPT_SEED, bytes(model_address), bytes(user)]


def derive_model_address(
    program_id: Address, creator: Address, model_name: str,
) -> tuple[Address, int]:
    """Model account address: ["model", creator, utf8(model_name)]."""
    return derive_address(program_id, model_seeds(creator, model_name))


def derive_receipt_address(
    program_id: Address, model_address: Address, user: Address,
) -> tuple[Address, int]:
    """Subscription receipt address: ["receipt", model, user]."""
    return derive_address(program_id, receipt_seeds(model_address, user))


__all__ = [
    "ADDRESS_LENGTH",
    "MAX_SEEDS",
    "MAX_SEED_LENGTH",
    "SYSTEM_PROGRAM_ID",
    "Address",
    "create_program_address",
    "derive_address",
    "derive_model_address",
    "derive_receipt_address",
    "is_on_curve",
    "model_seeds",
    "receipt_seeds",
]
