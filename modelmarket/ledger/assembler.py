"""Transaction assembly for marketplace operations.

Combines program instructions and value transfers into one transaction so
the ledger applies all of them or none: a subscription purchase either pays
the platform, every accepted lineage share and the developer, or pays no one.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from .address import SYSTEM_PROGRAM_ID, Address, derive_model_address, derive_receipt_address
from .codec import encode_create_model, encode_purchase_subscription
from .models import (
    AccountMeta,
    AssembledTransaction,
    Instruction,
    RoyaltyDistribution,
    TransferDirective,
)


class SigningMode(str, Enum):
    """Who authorises model registration.

    CREATOR: the creator signs alongside the treasury fee payer.
    TREASURY: the platform treasury registers on the creator's behalf;
    the creator is passed as a plain key.
    """

    CREATOR = "creator"
    TREASURY = "treasury"


class TransactionAssembler:
    """Builds atomic transactions for the marketplace program."""

    def __init__(self, program_id: Address, signing_mode: SigningMode = SigningMode.CREATOR):
        self.program_id = program_id
        self.signing_mode = SigningMode(signing_mode)

    def assemble(
        self,
        fee_payer: Address,
        recent_checkpoint: str,
        instructions: Iterable[Instruction] = (),
        transfers: Iterable[TransferDirective] = (),
    ) -> AssembledTransaction:
        """One atomic transaction; zero-amount transfers are dropped."""
        instructions = list(instructions)
        kept = [t for t in transfers if t.amount > 0]
        if not instructions and not kept:
            raise ValueError("transaction has no instructions and no non-zero transfers")

        return AssembledTransaction(
            fee_payer=fee_payer,
            recent_checkpoint=recent_checkpoint,
            instructions=instructions,
            transfers=kept,
        )

    def model_address(self, creator: Address, model_name: str) -> Address:
        return derive_model_address(self.program_id, creator, model_name)[0]

    def receipt_address(self, model_address: Address, user: Address) -> Address:
        return derive_receipt_address(self.program_id, model_address, user)[0]

    def register_model(
        self,
        creator: Address,
        treasury: Address,
        model_name: str,
        metadata_json: str,
        cid_root: str,
        recent_checkpoint: str,
        parent_address: Address | None = None,
    ) -> AssembledTransaction:
        """create_model with keys: model (w), creator, treasury (w, signer), [parent], system program."""
        keys = [
            AccountMeta(pubkey=self.model_address(creator, model_name), is_writable=True),
            AccountMeta(pubkey=creator, is_signer=self.signing_mode is SigningMode.CREATOR),
            AccountMeta(pubkey=treasury, is_signer=True, is_writable=True),
        ]
        if parent_address is not None:
            keys.append(AccountMeta(pubkey=parent_address))
        keys.append(AccountMeta(pubkey=SYSTEM_PROGRAM_ID))

        instruction = Instruction(
            program_id=self.program_id,
            keys=keys,
            data=encode_create_model(model_name, metadata_json, cid_root, parent_address),
        )
        return self.assemble(treasury, recent_checkpoint, [instruction])

    def purchase_subscription(
        self,
        user: Address,
        model_address: Address,
        distribution: RoyaltyDistribution,
        platform_wallet: Address,
        recent_checkpoint: str,
    ) -> AssembledTransaction:
        """purchase_subscription plus platform, lineage and developer transfers from ``user``."""
        instruction = Instruction(
            program_id=self.program_id,
            keys=[
                AccountMeta(pubkey=self.receipt_address(model_address, user), is_writable=True),
                AccountMeta(pubkey=user, is_signer=True, is_writable=True),
                AccountMeta(pubkey=model_address, is_writable=True),
                AccountMeta(pubkey=SYSTEM_PROGRAM_ID),
            ],
            data=encode_purchase_subscription(),
        )

        transfers = self._payout_transfers(user, distribution, platform_wallet)
        return self.assemble(user, recent_checkpoint, [instruction], transfers)

    def royalty_payout(
        self,
        treasury: Address,
        distribution: RoyaltyDistribution,
        platform_wallet: Address,
        recent_checkpoint: str,
    ) -> AssembledTransaction:
        """Pay out a settled payment from the treasury: platform, lineage, developer."""
        transfers = self._payout_transfers(treasury, distribution, platform_wallet)
        return self.assemble(treasury, recent_checkpoint, transfers=transfers)

    @staticmethod
    def _payout_transfers(
        source: Address,
        distribution: RoyaltyDistribution,
        platform_wallet: Address,
    ) -> list[TransferDirective]:
        transfers = [
            TransferDirective(source=source, destination=platform_wallet, amount=distribution.platform_amount),
        ]
        transfers.extend(
            TransferDirective(source=source, destination=share.recipient, amount=share.amount)
            for share in distribution.ancestor_shares
        )
        if distribution.developer_amount > 0:
            if distribution.developer is None:
                raise ValueError("distribution has a developer amount but no developer address")
            transfers.append(TransferDirective(
                source=source, destination=distribution.developer, amount=distribution.developer_amount,
            ))
        return transfers


__all__ = ["SigningMode", "TransactionAssembler"]
