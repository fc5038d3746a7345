"""Tests for the snapshot ledger client."""

import pytest
from solders.keypair import Keypair

from modelmarket.ledger.address import Address
from modelmarket.ledger.assembler import TransactionAssembler
from modelmarket.ledger.codec import decode_model_account
from modelmarket.ledger.errors import SubmissionError
from modelmarket.ledger.message import sign_transaction, signer_address, transaction_id
from modelmarket.ledger.models import ModelRecord
from modelmarket.ledger.store import LedgerClient, SnapshotLedgerClient
from modelmarket.ledger.store.snapshot import DEFAULT_CHECKPOINT


def _record(name: str = "vision") -> ModelRecord:
    return ModelRecord(creator_address=Address(b"\x01" * 32), model_name=name, created_at=1_700_000_000)


class TestSnapshotLedgerClient:

    def test_satisfies_protocol(self):
        assert isinstance(SnapshotLedgerClient(), LedgerClient)

    @pytest.mark.asyncio
    async def test_put_and_fetch_model(self):
        client = SnapshotLedgerClient()
        address = Address(b"\x02" * 32)
        client.put_model(address, _record())
        data = await client.fetch_account_bytes(address)
        assert decode_model_account(data) == _record()

    @pytest.mark.asyncio
    async def test_absent_account(self):
        assert await SnapshotLedgerClient().fetch_account_bytes(Address(b"\x03" * 32)) is None

    @pytest.mark.asyncio
    async def test_remove_account(self):
        address = Address(b"\x02" * 32)
        client = SnapshotLedgerClient({address: b"\x00"})
        client.remove_account(address)
        assert await client.fetch_account_bytes(address) is None

    @pytest.mark.asyncio
    async def test_default_checkpoint(self):
        assert await SnapshotLedgerClient().current_network_checkpoint() == DEFAULT_CHECKPOINT

    @pytest.mark.asyncio
    async def test_save_load_roundtrip(self, tmp_path):
        address = Address(b"\x04" * 32)
        client = SnapshotLedgerClient(checkpoint="EkSnNWid2cvwEVnVx9aBqawnmiCNiDgp3gUdkDPTKN1N")
        client.put_model(address, _record("saved"))
        path = tmp_path / "nested" / "snap.json.gz"
        client.save(path)

        loaded = SnapshotLedgerClient.load(path)
        assert loaded.accounts == client.accounts
        assert await loaded.current_network_checkpoint() == "EkSnNWid2cvwEVnVx9aBqawnmiCNiDgp3gUdkDPTKN1N"

    @pytest.mark.asyncio
    async def test_recorded_transactions_persist(self, tmp_path):
        payment = {"blockTime": 1_700_000_000, "meta": {"err": None}}
        client = SnapshotLedgerClient()
        client.put_transaction("5sig", payment)
        path = tmp_path / "snap.json.gz"
        client.save(path)

        loaded = SnapshotLedgerClient.load(path)
        assert await loaded.fetch_transaction("5sig") == payment
        assert await loaded.fetch_transaction("other") is None

    @pytest.mark.asyncio
    async def test_submit_records_transaction(self):
        key = Keypair.from_seed(b"\x07" * 32)
        creator = signer_address(key)
        tx = TransactionAssembler(Address(b"\x09" * 32)).register_model(
            creator, creator, "m", "", "", DEFAULT_CHECKPOINT,
        )
        raw = sign_transaction(tx, [key])
        client = SnapshotLedgerClient()
        assert await client.submit_transaction(raw) == transaction_id(raw)
        assert client.submitted == [raw]

    @pytest.mark.asyncio
    async def test_submit_rejects_garbage(self):
        client = SnapshotLedgerClient()
        with pytest.raises(SubmissionError):
            await client.submit_transaction(b"\x00")
        assert client.submitted == []
