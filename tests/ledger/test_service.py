"""Tests for MarketplaceService against a snapshot ledger."""

from __future__ import annotations

import pytest
from solders.keypair import Keypair

from modelmarket.ledger.address import Address, derive_model_address
from modelmarket.ledger.errors import (
    LineageRejectedError,
    ModelNotFoundError,
    SettlementError,
    SubscriptionExistsError,
)
from modelmarket.ledger.message import signer_address, transaction_id
from modelmarket.ledger.models import LineageViolation, ModelRecord
from modelmarket.ledger.service import MarketplaceService, transferred_amount
from modelmarket.ledger.store.snapshot import SnapshotLedgerClient

PROGRAM_ID = Address.from_base58("GUrLuMj8yCB2T4NKaJSVqrAWWCMPMf1qtBSnDR8ytYwB")
PLATFORM = Address(b"\x0f" * 32)
PAYER = Address(b"\x0a" * 32)


def _key(seed: int) -> Keypair:
    return Keypair.from_seed(bytes([seed]) * 32)


def _add_model(
    client: SnapshotLedgerClient,
    creator: Address,
    name: str,
    parent: Address | None = None,
) -> Address:
    address, _ = derive_model_address(PROGRAM_ID, creator, name)
    client.put_model(address, ModelRecord(creator_address=creator, model_name=name, parent_address=parent))
    return address


def _transfer(destination: Address, lamports: int) -> dict:
    return {
        "program": "system",
        "programId": "11111111111111111111111111111111",
        "parsed": {
            "type": "transfer",
            "info": {"source": str(PAYER), "destination": str(destination), "lamports": lamports},
        },
    }


def _payment(*instructions: dict, err=None, block_time=None, inner=()) -> dict:
    """A confirmed transaction as getTransaction returns it in jsonParsed form."""
    return {
        "slot": 100,
        "blockTime": block_time,
        "meta": {
            "err": err,
            "innerInstructions": [{"index": 0, "instructions": list(inner)}] if inner else [],
        },
        "transaction": {
            "signatures": ["5pay"],
            "message": {"instructions": list(instructions)},
        },
    }


@pytest.fixture
def ledger():
    """Snapshot with base <- fine-tune, each by a different creator."""
    client = SnapshotLedgerClient()
    base = _add_model(client, signer_address(_key(1)), "base")
    tuned = _add_model(client, signer_address(_key(2)), "tuned", parent=base)
    return client, base, tuned


@pytest.fixture
def service(ledger):
    client, _, _ = ledger
    return MarketplaceService(client, PROGRAM_ID, platform_wallet=PLATFORM)


class TestReads:

    @pytest.mark.asyncio
    async def test_get_model(self, ledger, service):
        _, base, tuned = ledger
        record = await service.get_model(tuned)
        assert record.model_name == "tuned"
        assert record.parent_address == base
        assert record.address == tuned

    @pytest.mark.asyncio
    async def test_get_missing_model(self, service):
        with pytest.raises(ModelNotFoundError):
            await service.get_model(Address(b"\x01" * 32))

    @pytest.mark.asyncio
    async def test_model_address_matches_derivation(self, ledger, service):
        _, _, tuned = ledger
        assert service.model_address(signer_address(_key(2)), "tuned") == tuned

    @pytest.mark.asyncio
    async def test_lineage_royalty(self, ledger, service):
        _, _, tuned = ledger
        trace, dist = await service.calculate_lineage_royalty(tuned, 1_000_000_000)
        assert len(trace.lineage) == 2
        assert dist.platform_amount == 50_000_000
        assert dist.total_ancestor_amount == 50_000_000
        assert dist.developer_amount == 900_000_000
        assert dist.developer == signer_address(_key(2))

    @pytest.mark.asyncio
    async def test_invalid_lineage_rejected(self, ledger, service):
        client, _, _ = ledger
        orphan = _add_model(client, signer_address(_key(3)), "orphan", parent=Address(b"\x0e" * 32))
        with pytest.raises(LineageRejectedError) as exc:
            await service.calculate_lineage_royalty(orphan, 1_000)
        assert exc.value.violations == [LineageViolation.NOT_FOUND.value]

    @pytest.mark.asyncio
    async def test_subscription_status(self, ledger, service):
        client, _, tuned = ledger
        user = Address(b"\x0a" * 32)
        status = await service.subscription_status(tuned, user)
        assert not status.subscribed
        client.put_account(status.receipt_address, b"\x00" * 8)
        assert (await service.subscription_status(tuned, user)).subscribed


class TestPrepare:

    @pytest.mark.asyncio
    async def test_register_requires_existing_parent(self, service):
        with pytest.raises(ModelNotFoundError):
            await service.prepare_register_model(
                Address(b"\x01" * 32), Address(b"\x02" * 32), "child",
                parent_address=Address(b"\x0c" * 32),
            )

    @pytest.mark.asyncio
    async def test_register_with_parent(self, ledger, service):
        _, base, _ = ledger
        creator, treasury = Address(b"\x01" * 32), Address(b"\x02" * 32)
        tx = await service.prepare_register_model(creator, treasury, "child", parent_address=base)
        assert tx.fee_payer == treasury
        assert tx.recent_checkpoint == "11111111111111111111111111111111"
        assert tx.instructions[0].keys[3].pubkey == base

    @pytest.mark.asyncio
    async def test_purchase(self, ledger, service):
        _, _, tuned = ledger
        user = Address(b"\x0a" * 32)
        prepared = await service.prepare_purchase_subscription(user, tuned, 1_000_000_000)
        tx = prepared.transaction
        assert tx.fee_payer == user
        assert tx.transfer_total == 1_000_000_000
        assert tx.transfers[0].destination == PLATFORM
        assert prepared.distribution.developer_amount == 900_000_000

    @pytest.mark.asyncio
    async def test_purchase_existing_receipt(self, ledger, service):
        client, _, tuned = ledger
        user = Address(b"\x0a" * 32)
        client.put_account(service.receipt_address(tuned, user), b"\x00" * 8)
        with pytest.raises(SubscriptionExistsError):
            await service.prepare_purchase_subscription(user, tuned, 1_000)

    @pytest.mark.asyncio
    async def test_purchase_requires_platform_wallet(self, ledger):
        client, _, tuned = ledger
        service = MarketplaceService(client, PROGRAM_ID)
        with pytest.raises(ValueError):
            await service.prepare_purchase_subscription(Address(b"\x0a" * 32), tuned, 1_000)


class TestTransferredAmount:

    def test_counts_system_transfers_only(self):
        memo = {"program": "spl-memo", "parsed": "subscription"}
        create = {"program": "system", "parsed": {"type": "createAccount", "info": {"lamports": 99}}}
        raw = {"programId": str(PROGRAM_ID), "accounts": [], "data": "3Bxs"}
        payment = _payment(memo, create, raw, _transfer(PLATFORM, 40), _transfer(PLATFORM, 2))
        assert transferred_amount(payment) == 42

    def test_filters_by_recipient_and_reads_inner_instructions(self):
        treasury = Address(b"\x0c" * 32)
        payment = _payment(_transfer(PLATFORM, 5), inner=[_transfer(treasury, 7), _transfer(treasury, 3)])
        assert transferred_amount(payment, recipient=treasury) == 10
        assert transferred_amount(payment) == 15

    def test_empty_transaction(self):
        assert transferred_amount({}) == 0


class TestSettlement:

    @pytest.fixture
    def treasury(self):
        return signer_address(_key(30))

    @pytest.mark.asyncio
    async def test_settles_into_lineage_payout(self, ledger, service, treasury):
        client, base, tuned = ledger
        client.put_transaction("5pay", _payment(_transfer(treasury, 1_000_000_000)))

        settlement = await service.prepare_settlement("5pay", tuned, treasury)
        assert settlement.total_amount == 1_000_000_000
        assert [r.address for r in settlement.trace.lineage] == [tuned, base]
        dist = settlement.distribution
        assert dist.platform_amount == 50_000_000
        assert dist.total_ancestor_amount == 50_000_000
        assert dist.developer_amount == 900_000_000

        tx = settlement.transaction
        assert tx.fee_payer == treasury
        assert tx.instructions == []
        assert all(t.source == treasury for t in tx.transfers)
        assert tx.transfers[0].destination == PLATFORM
        assert tx.transfer_total == 1_000_000_000

    @pytest.mark.asyncio
    async def test_minimum_payment_accepted(self, ledger, service, treasury):
        client, _, tuned = ledger
        client.put_transaction("5pay", _payment(_transfer(treasury, 1_000_000)))
        settlement = await service.prepare_settlement("5pay", tuned, treasury)
        assert settlement.total_amount == 1_000_000

    @pytest.mark.asyncio
    async def test_below_minimum(self, ledger, service, treasury):
        client, _, tuned = ledger
        client.put_transaction("5pay", _payment(_transfer(treasury, 999_999)))
        with pytest.raises(SettlementError, match="below the minimum"):
            await service.prepare_settlement("5pay", tuned, treasury)

    @pytest.mark.asyncio
    async def test_unknown_payment(self, ledger, service, treasury):
        _, _, tuned = ledger
        with pytest.raises(SettlementError, match="not found"):
            await service.prepare_settlement("5missing", tuned, treasury)

    @pytest.mark.asyncio
    async def test_failed_payment(self, ledger, service, treasury):
        client, _, tuned = ledger
        failed = _payment(_transfer(treasury, 5_000_000), err={"InstructionError": [0, {"Custom": 1}]})
        client.put_transaction("5pay", failed)
        with pytest.raises(SettlementError, match="failed"):
            await service.prepare_settlement("5pay", tuned, treasury)

    @pytest.mark.asyncio
    async def test_payment_to_someone_else(self, ledger, service, treasury):
        client, _, tuned = ledger
        client.put_transaction("5pay", _payment(_transfer(PLATFORM, 5_000_000)))
        with pytest.raises(SettlementError, match="moved nothing"):
            await service.prepare_settlement("5pay", tuned, treasury)

    @pytest.mark.asyncio
    async def test_old_payment_still_settles(self, ledger, service, treasury):
        client, _, tuned = ledger
        client.put_transaction("5pay", _payment(_transfer(treasury, 2_000_000), block_time=1_600_000_000))
        settlement = await service.prepare_settlement("5pay", tuned, treasury)
        assert settlement.total_amount == 2_000_000

    @pytest.mark.asyncio
    async def test_invalid_lineage_refused(self, ledger, service, treasury):
        client, _, _ = ledger
        orphan = _add_model(client, signer_address(_key(3)), "orphan", parent=Address(b"\x0e" * 32))
        client.put_transaction("5pay", _payment(_transfer(treasury, 5_000_000)))
        with pytest.raises(LineageRejectedError):
            await service.prepare_settlement("5pay", orphan, treasury)

    @pytest.mark.asyncio
    async def test_requires_platform_wallet(self, ledger, treasury):
        client, _, tuned = ledger
        with pytest.raises(ValueError):
            await MarketplaceService(client, PROGRAM_ID).prepare_settlement("5pay", tuned, treasury)

    @pytest.mark.asyncio
    async def test_payout_signed_by_treasury(self, ledger, service, treasury):
        client, _, tuned = ledger
        client.put_transaction("5pay", _payment(_transfer(treasury, 3_000_000)))
        settlement = await service.prepare_settlement("5pay", tuned, treasury)
        tx_id = await service.submit(settlement.transaction, [_key(30)])
        assert tx_id == transaction_id(client.submitted[-1])

@pytest.mark.integration
class TestRegisterAndPurchaseFlow:

    @pytest.mark.asyncio
    async def test_register_then_buy(self, ledger, service):
        client, _, tuned = ledger
        treasury_key, creator_key, user_key = _key(20), _key(21), _key(22)
        creator = signer_address(creator_key)

        tx = await service.prepare_register_model(
            creator, signer_address(treasury_key), "distilled", '{"params": "1b"}', "bafy", parent_address=tuned,
        )
        tx_id = await service.submit(tx, [treasury_key, creator_key])
        assert tx_id == transaction_id(client.submitted[-1])

        # The snapshot records rather than executes; apply the account by hand
        distilled = _add_model(client, creator, "distilled", parent=tuned)
        prepared = await service.prepare_purchase_subscription(signer_address(user_key), distilled, 2_000_000)
        assert [s.depth for s in prepared.distribution.ancestor_shares] == [2, 1, 0]

        await service.submit(prepared.transaction, [user_key])
        assert len(client.submitted) == 2
