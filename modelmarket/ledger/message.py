"""Lower assembled transactions to the ledger's legacy wire format and sign them.

Message compilation (account key dedup and ordering, header, compact-u16
framing) and signature assembly are done by ``solders``, the ledger SDK's
Python bindings. This module only maps marketplace records onto its types:

  program instructions first, in assembly order
  then one system program transfer per directive
  fee payer first, then signers, then the remaining keys

A serialised transaction is the signatures in account-key order followed by
the message bytes every signer signed.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from solders.errors import BincodeError
from solders.hash import Hash, ParseHashError
from solders.instruction import AccountMeta as WireAccountMeta
from solders.instruction import Instruction as WireInstruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .address import Address
from .models import AssembledTransaction, Instruction

KEYPAIR_LENGTH = 64
MAX_ACCOUNT_KEYS = 256


def to_pubkey(address: Address) -> Pubkey:
    return Pubkey.from_bytes(bytes(address))


def _lower_instruction(ix: Instruction) -> WireInstruction:
    accounts = [WireAccountMeta(to_pubkey(m.pubkey), m.is_signer, m.is_writable) for m in ix.keys]
    return WireInstruction(to_pubkey(ix.program_id), ix.data, accounts)


def lower_instructions(tx: AssembledTransaction) -> list[WireInstruction]:
    """Program instructions, then one system transfer per directive."""
    lowered = [_lower_instruction(ix) for ix in tx.instructions]
    for directive in tx.transfers:
        lowered.append(transfer(TransferParams(
            from_pubkey=to_pubkey(directive.source),
            to_pubkey=to_pubkey(directive.destination),
            lamports=directive.amount,
        )))
    return lowered


def _blockhash(checkpoint: str) -> Hash:
    try:
        return Hash.from_string(checkpoint)
    except ParseHashError as e:
        raise ValueError(f"recent checkpoint is not a 32-byte base58 hash: {checkpoint!r}") from e


def build_message(tx: AssembledTransaction) -> Message:
    message = Message.new_with_blockhash(
        lower_instructions(tx), to_pubkey(tx.fee_payer), _blockhash(tx.recent_checkpoint),
    )
    if len(message.account_keys) > MAX_ACCOUNT_KEYS:
        raise ValueError(
            f"transaction references {len(message.account_keys)} accounts (max {MAX_ACCOUNT_KEYS})"
        )
    return message


def compile_message(tx: AssembledTransaction) -> bytes:
    """The bytes every required signer signs."""
    return bytes(build_message(tx))


def _signer_keys(message: Message) -> list[Pubkey]:
    return list(message.account_keys[:message.header.num_required_signatures])


def required_signers(tx: AssembledTransaction) -> list[Address]:
    """Signer addresses in signature order (fee payer first)."""
    return [Address(bytes(k)) for k in _signer_keys(build_message(tx))]


def sign_transaction(tx: AssembledTransaction, signing_keys: Iterable[Keypair]) -> bytes:
    """Sign ``tx`` with every required key and return the wire bytes.

    Keys that the transaction does not need are ignored.

    Raises ValueError if a required signer has no key.
    """
    message = build_message(tx)
    signers = _signer_keys(message)
    by_pubkey = {key.pubkey(): key for key in signing_keys}

    missing = [str(k) for k in signers if k not in by_pubkey]
    if missing:
        raise ValueError(f"missing signing keys for: {', '.join(missing)}")

    signed = Transaction([by_pubkey[k] for k in signers], message, message.recent_blockhash)
    return bytes(signed)


def transaction_id(raw: bytes) -> str:
    """Base58 of the first signature, which is how the ledger names a transaction."""
    try:
        signatures = Transaction.from_bytes(raw).signatures
    except BincodeError as e:
        raise ValueError(f"not a serialised transaction: {e}") from e
    if not signatures:
        raise ValueError("transaction carries no signatures")
    return str(signatures[0])


def load_keypair(path: str | Path) -> Keypair:
    """Load a JSON keypair file (64 integers: 32-byte seed then 32-byte public key)."""
    with open(Path(path).expanduser()) as f:
        data = json.load(f)

    secret = bytes(data)
    if len(secret) != KEYPAIR_LENGTH:
        raise ValueError(f"keypair file must hold {KEYPAIR_LENGTH} bytes, got {len(secret)}")

    keypair = Keypair.from_seed(secret[:32])
    if bytes(keypair.pubkey()) != secret[32:]:
        raise ValueError("keypair file public key does not match its seed")
    return keypair


def signer_address(key: Keypair) -> Address:
    return Address(bytes(key.pubkey()))


__all__ = [
    "build_message",
    "compile_message",
    "load_keypair",
    "lower_instructions",
    "required_signers",
    "sign_transaction",
    "signer_address",
    "to_pubkey",
    "transaction_id",
]
