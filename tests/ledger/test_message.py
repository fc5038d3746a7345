"""Tests for message compilation, signing and keypair loading."""

import json

import pytest
from solders.keypair import Keypair
from solders.message import Message
from solders.system_program import ID as SYSTEM_PROGRAM
from solders.system_program import decode_transfer
from solders.transaction import Transaction

from modelmarket.ledger.address import SYSTEM_PROGRAM_ID, Address
from modelmarket.ledger.assembler import SigningMode, TransactionAssembler
from modelmarket.ledger.message import (
    compile_message,
    load_keypair,
    lower_instructions,
    required_signers,
    sign_transaction,
    signer_address,
    to_pubkey,
    transaction_id,
)
from modelmarket.ledger.models import AccountMeta, AncestorShare, Instruction, RoyaltyDistribution, TransferDirective

PROGRAM_ID = Address.from_base58("GUrLuMj8yCB2T4NKaJSVqrAWWCMPMf1qtBSnDR8ytYwB")
CHECKPOINT = "11111111111111111111111111111111"


def _key(seed: int) -> Keypair:
    return Keypair.from_seed(bytes([seed]) * 32)


@pytest.fixture
def creator_key():
    return _key(1)


@pytest.fixture
def treasury_key():
    return _key(2)


def _register(creator_key, treasury_key, mode=SigningMode.CREATOR):
    return TransactionAssembler(PROGRAM_ID, mode).register_model(
        signer_address(creator_key), signer_address(treasury_key),
        "vision", "{}", "bafy", CHECKPOINT,
    )


class TestLowerInstructions:

    def test_instructions_before_transfers(self):
        user, dest = signer_address(_key(3)), Address(b"\x0a" * 32)
        ix = Instruction(program_id=PROGRAM_ID, keys=[AccountMeta(pubkey=user, is_signer=True)], data=b"\x01")
        tx = TransactionAssembler(PROGRAM_ID).assemble(
            user, CHECKPOINT, [ix],
            [TransferDirective(source=user, destination=dest, amount=7)],
        )
        program_ix, transfer_ix = lower_instructions(tx)
        assert program_ix.program_id == to_pubkey(PROGRAM_ID)
        assert program_ix.data == b"\x01"
        assert program_ix.accounts[0].pubkey == to_pubkey(user)
        assert program_ix.accounts[0].is_signer
        assert not program_ix.accounts[0].is_writable

        assert transfer_ix.program_id == SYSTEM_PROGRAM
        params = decode_transfer(transfer_ix)
        assert params["from_pubkey"] == to_pubkey(user)
        assert params["to_pubkey"] == to_pubkey(dest)
        assert params["lamports"] == 7

    def test_system_program_ids_agree(self):
        assert to_pubkey(SYSTEM_PROGRAM_ID) == SYSTEM_PROGRAM


class TestCompileMessage:

    def test_header_and_key_order(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key)
        message = Message.from_bytes(compile_message(tx))
        # 2 signers, creator is a read-only signer, system + program are read-only
        header = message.header
        assert (
            header.num_required_signatures,
            header.num_readonly_signed_accounts,
            header.num_readonly_unsigned_accounts,
        ) == (2, 1, 2)
        keys = message.account_keys
        assert len(keys) == 5
        assert keys[0] == treasury_key.pubkey()
        assert keys[1] == creator_key.pubkey()
        assert set(keys[3:]) == {SYSTEM_PROGRAM, to_pubkey(PROGRAM_ID)}
        assert bytes(message.recent_blockhash) == bytes(32)

    def test_required_signers_fee_payer_first(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key)
        assert required_signers(tx) == [signer_address(treasury_key), signer_address(creator_key)]

    def test_treasury_mode_needs_one_signer(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key, SigningMode.TREASURY)
        assert required_signers(tx) == [signer_address(treasury_key)]

    def test_keys_deduplicated(self):
        user_key = _key(3)
        user = signer_address(user_key)
        dist = RoyaltyDistribution(
            total_amount=1_000, platform_amount=50,
            ancestor_shares=[AncestorShare(address=None, recipient=user, depth=0, amount=25)],
            total_ancestor_amount=25, developer_amount=925, developer=user,
        )
        tx = TransactionAssembler(PROGRAM_ID).purchase_subscription(
            user, Address(b"\x07" * 32), dist, Address(b"\x08" * 32), CHECKPOINT,
        )
        keys = Message.from_bytes(compile_message(tx)).account_keys
        assert len(keys) == len(set(keys))
        assert required_signers(tx) == [user]

    def test_bad_checkpoint(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key).model_copy(update={"recent_checkpoint": "abc"})
        with pytest.raises(ValueError):
            compile_message(tx)


class TestSignTransaction:

    def test_signatures_verify(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key)
        signed = Transaction.from_bytes(sign_transaction(tx, [creator_key, treasury_key]))
        assert bytes(signed.message) == compile_message(tx)
        assert signed.verify_with_results() == [True, True]
        treasury_sig, creator_sig = signed.signatures
        assert treasury_sig.verify(treasury_key.pubkey(), compile_message(tx))
        assert creator_sig.verify(creator_key.pubkey(), compile_message(tx))

    def test_key_order_does_not_matter(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key)
        assert sign_transaction(tx, [creator_key, treasury_key]) == sign_transaction(tx, [treasury_key, creator_key])

    def test_unneeded_keys_ignored(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key, SigningMode.TREASURY)
        raw = sign_transaction(tx, [creator_key, treasury_key])
        assert len(Transaction.from_bytes(raw).signatures) == 1

    def test_missing_signer(self, creator_key, treasury_key):
        tx = _register(creator_key, treasury_key)
        with pytest.raises(ValueError, match="missing signing keys"):
            sign_transaction(tx, [treasury_key])

    def test_transaction_id_is_first_signature(self, creator_key, treasury_key):
        raw = sign_transaction(_register(creator_key, treasury_key), [creator_key, treasury_key])
        assert transaction_id(raw) == str(Transaction.from_bytes(raw).signatures[0])

    def test_transaction_id_requires_transaction_bytes(self):
        with pytest.raises(ValueError):
            transaction_id(b"\x00")


class TestLoadKeypair:

    def test_roundtrip(self, tmp_path):
        key = _key(9)
        path = tmp_path / "id.json"
        path.write_text(json.dumps(list(bytes(key))))
        loaded = load_keypair(path)
        assert signer_address(loaded) == signer_address(key)

    def test_wrong_length(self, tmp_path):
        path = tmp_path / "short.json"
        path.write_text(json.dumps([1] * 32))
        with pytest.raises(ValueError):
            load_keypair(path)

    def test_mismatched_public_key(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([1] * 32 + [2] * 32))
        with pytest.raises(ValueError):
            load_keypair(path)
