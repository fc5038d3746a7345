"""Marketplace operations over a LedgerClient.

Ties the pure pieces together for callers that want one object: look up a
model, trace and price its lineage, prepare registration, subscription and
settlement transactions, and sign and submit them. Nothing here holds state
between calls beyond the client and the fixed parameters given at
construction.
"""

from __future__ import annotations

import time
from typing import Any, Iterable

import bittensor as bt
from pydantic import BaseModel, ConfigDict
from solders.keypair import Keypair

from .address import Address
from .assembler import SigningMode, TransactionAssembler
from .codec import decode_model_account
from .errors import LineageRejectedError, ModelNotFoundError, SettlementError, SubscriptionExistsError
from .lineage import DEFAULT_MAX_DEPTH, trace_lineage
from .message import sign_transaction
from .models import AssembledTransaction, LineageTrace, ModelRecord, RoyaltyDistribution
from .royalty import (
    DEFAULT_MIN_SHARE_AMOUNT,
    DEFAULT_PER_ANCESTOR_BPS,
    DEFAULT_PLATFORM_FEE_BPS,
    distribute_royalties,
)
from .store.interface import LedgerClient

SYSTEM_PROGRAM_NAME = "system"
MIN_PAYMENT_AMOUNT = 1_000_000
# Older payments are still settled, with a warning
MAX_PAYMENT_AGE_SECONDS = 300


class PreparedPurchase(BaseModel):
    """A subscription purchase ready for signing, with the split it pays out."""

    model_config = ConfigDict(frozen=True)

    transaction: AssembledTransaction
    distribution: RoyaltyDistribution
    trace: LineageTrace


class SubscriptionStatus(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_address: Address
    user: Address
    receipt_address: Address
    subscribed: bool


class Settlement(BaseModel):
    """A confirmed payment priced across its model's lineage, with the payout that settles it."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    payment_signature: str
    model_address: Address
    total_amount: int
    trace: LineageTrace
    distribution: RoyaltyDistribution
    transaction: AssembledTransaction


def _parsed_instructions(payment: dict[str, Any]) -> list[dict[str, Any]]:
    message = (payment.get("transaction") or {}).get("message") or {}
    instructions = list(message.get("instructions") or [])
    for inner in (payment.get("meta") or {}).get("innerInstructions") or []:
        instructions.extend(inner.get("instructions") or [])
    return instructions


def transferred_amount(payment: dict[str, Any], recipient: Address | None = None) -> int:
    """Sum of system transfers in a jsonParsed transaction, inner instructions included.

    With ``recipient`` only transfers into that address count.
    """
    total = 0
    for ix in _parsed_instructions(payment):
        parsed = ix.get("parsed")
        if ix.get("program") != SYSTEM_PROGRAM_NAME or not isinstance(parsed, dict):
            continue
        if parsed.get("type") != "transfer":
            continue
        info = parsed.get("info") or {}
        if recipient is not None and info.get("destination") != str(recipient):
            continue
        total += int(info.get("lamports", 0))
    return total


class MarketplaceService:
    """Model lookup, royalty pricing and transaction preparation."""

    def __init__(
        self,
        client: LedgerClient,
        program_id: Address,
        platform_wallet: Address | None = None,
        platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
        min_share_amount: int = DEFAULT_MIN_SHARE_AMOUNT,
        per_ancestor_bps: int = DEFAULT_PER_ANCESTOR_BPS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        signing_mode: SigningMode = SigningMode.CREATOR,
        min_payment_amount: int = MIN_PAYMENT_AMOUNT,
    ):
        self.client = client
        self.program_id = program_id
        self.platform_wallet = platform_wallet
        self.platform_fee_bps = platform_fee_bps
        self.min_share_amount = min_share_amount
        self.per_ancestor_bps = per_ancestor_bps
        self.max_depth = max_depth
        self.min_payment_amount = min_payment_amount
        self.assembler = TransactionAssembler(program_id, signing_mode)

    # -- Addresses --

    def model_address(self, creator: Address, model_name: str) -> Address:
        return self.assembler.model_address(creator, model_name)

    def receipt_address(self, model_address: Address, user: Address) -> Address:
        return self.assembler.receipt_address(model_address, user)

    # -- Reads --

    async def get_model(self, model_address: Address) -> ModelRecord:
        """Fetch and decode one model account.

        Raises:
            ModelNotFoundError: no account at ``model_address``.
            MalformedAccountError: the account does not decode as a model.
        """
        data = await self.client.fetch_account_bytes(model_address)
        if data is None:
            raise ModelNotFoundError(f"model not found: {model_address}")
        return decode_model_account(data).model_copy(update={"address": model_address})

    async def trace_lineage(self, model_address: Address) -> LineageTrace:
        return await trace_lineage(model_address, self.client.fetch_account_bytes, self.max_depth)

    async def calculate_lineage_royalty(
        self,
        model_address: Address,
        total_amount: int,
    ) -> tuple[LineageTrace, RoyaltyDistribution]:
        """Trace the lineage and split ``total_amount`` across it.

        Raises:
            LineageRejectedError: the trace carries any violation.
        """
        trace = await self.trace_lineage(model_address)
        if not trace.is_valid:
            raise LineageRejectedError(
                f"lineage of {model_address} is not settleable",
                violations=[v.value for v in trace.violations],
            )

        distribution = distribute_royalties(
            total_amount,
            trace,
            platform_fee_bps=self.platform_fee_bps,
            min_share_amount=self.min_share_amount,
            per_ancestor_bps=self.per_ancestor_bps,
        )
        bt.logging.info({
            "marketplace_royalty": {
                "model": str(model_address)[:12],
                "total": total_amount,
                "platform": distribution.platform_amount,
                "ancestors": len(distribution.ancestor_shares),
                "developer": distribution.developer_amount,
            }
        })
        return trace, distribution

    async def subscription_status(self, model_address: Address, user: Address) -> SubscriptionStatus:
        receipt = self.receipt_address(model_address, user)
        data = await self.client.fetch_account_bytes(receipt)
        return SubscriptionStatus(
            model_address=model_address,
            user=user,
            receipt_address=receipt,
            subscribed=data is not None,
        )

    # -- Transaction preparation --

    async def prepare_register_model(
        self,
        creator: Address,
        treasury: Address,
        model_name: str,
        metadata_json: str = "",
        cid_root: str = "",
        parent_address: Address | None = None,
    ) -> AssembledTransaction:
        """Build a create_model transaction paid for by ``treasury``.

        Raises:
            ModelNotFoundError: ``parent_address`` names no existing account.
        """
        if parent_address is not None and await self.client.fetch_account_bytes(parent_address) is None:
            raise ModelNotFoundError(f"parent model not found: {parent_address}")

        checkpoint = await self.client.current_network_checkpoint()
        tx = self.assembler.register_model(
            creator=creator,
            treasury=treasury,
            model_name=model_name,
            metadata_json=metadata_json,
            cid_root=cid_root,
            recent_checkpoint=checkpoint,
            parent_address=parent_address,
        )
        bt.logging.info({
            "marketplace_register": {
                "model": str(self.model_address(creator, model_name))[:12],
                "name": model_name,
                "has_parent": parent_address is not None,
                "signing_mode": self.assembler.signing_mode.value,
            }
        })
        return tx

    async def prepare_purchase_subscription(
        self,
        user: Address,
        model_address: Address,
        total_amount: int,
    ) -> PreparedPurchase:
        """Build a purchase paying platform, lineage and developer in one transaction.

        Raises:
            ValueError: no platform wallet is configured.
            SubscriptionExistsError: ``user`` already holds a receipt for the model.
            LineageRejectedError: the model's lineage has violations.
        """
        if self.platform_wallet is None:
            raise ValueError("platform_wallet is required to prepare a purchase")

        status = await self.subscription_status(model_address, user)
        if status.subscribed:
            raise SubscriptionExistsError(
                f"subscription already exists: {status.receipt_address}"
            )

        trace, distribution = await self.calculate_lineage_royalty(model_address, total_amount)
        checkpoint = await self.client.current_network_checkpoint()
        tx = self.assembler.purchase_subscription(
            user=user,
            model_address=model_address,
            distribution=distribution,
            platform_wallet=self.platform_wallet,
            recent_checkpoint=checkpoint,
        )
        return PreparedPurchase(transaction=tx, distribution=distribution, trace=trace)

    async def prepare_settlement(
        self,
        payment_signature: str,
        model_address: Address,
        treasury: Address,
    ) -> Settlement:
        """Price a confirmed payment into ``treasury`` and build the payout from it.

        The paid amount is what the payment transferred into ``treasury``. The
        payout sends the platform fee, each accepted lineage share and the
        developer remainder from ``treasury`` in one transaction.

        Raises:
            ValueError: no platform wallet is configured.
            SettlementError: the payment is unknown, failed, moved nothing into
                the treasury, or moved less than ``min_payment_amount``.
            LineageRejectedError: the model's lineage has violations.
        """
        if self.platform_wallet is None:
            raise ValueError("platform_wallet is required to settle a payment")

        payment = await self.client.fetch_transaction(payment_signature)
        if payment is None:
            raise SettlementError(f"payment transaction not found: {payment_signature}")
        err = (payment.get("meta") or {}).get("err")
        if err is not None:
            raise SettlementError(f"payment transaction failed on the ledger: {err}")

        block_time = payment.get("blockTime")
        if block_time is not None and time.time() - block_time > MAX_PAYMENT_AGE_SECONDS:
            bt.logging.warning({
                "marketplace_settlement": {
                    "signature": payment_signature[:12],
                    "age_seconds": int(time.time() - block_time),
                    "max_age_seconds": MAX_PAYMENT_AGE_SECONDS,
                }
            })

        total = transferred_amount(payment, recipient=treasury)
        if total == 0:
            raise SettlementError(f"payment {payment_signature} moved nothing into {treasury}")
        if total < self.min_payment_amount:
            raise SettlementError(
                f"payment of {total} is below the minimum of {self.min_payment_amount}"
            )

        trace, distribution = await self.calculate_lineage_royalty(model_address, total)
        checkpoint = await self.client.current_network_checkpoint()
        tx = self.assembler.royalty_payout(treasury, distribution, self.platform_wallet, checkpoint)
        bt.logging.info({
            "marketplace_settlement": {
                "signature": payment_signature[:12],
                "model": str(model_address)[:12],
                "total": total,
                "transfers": len(tx.transfers),
            }
        })
        return Settlement(
            payment_signature=payment_signature,
            model_address=model_address,
            total_amount=total,
            trace=trace,
            distribution=distribution,
            transaction=tx,
        )

    # -- Submission --

    async def submit(self, tx: AssembledTransaction, signing_keys: Iterable[Keypair]) -> str:
        """Sign with every required key and hand the bytes to the client."""
        raw = sign_transaction(tx, signing_keys)
        tx_id = await self.client.submit_transaction(raw)
        bt.logging.info({"marketplace_submit": {"id": tx_id, "transfers": len(tx.transfers)}})
        return tx_id


__all__ = [
    "MarketplaceService",
    "PreparedPurchase",
    "Settlement",
    "SubscriptionStatus",
    "transferred_amount",
]
