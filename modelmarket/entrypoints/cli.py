"""Marketplace command line.

Operations against the ledger (JSON-RPC endpoint) or a snapshot file:
derive addresses, trace a model's lineage, price a purchase, check a
subscription, register a model, buy a subscription, settle a payment. Every
command prints one JSON document to stdout. Against a snapshot, submitted
transactions are recorded, not applied. ``balance`` and ``tx-status`` need
a live endpoint.

    modelmarket-cli trace <model> [--snapshot demo.json.gz]
    modelmarket-cli royalty <model> --amount 1000000000
    modelmarket-cli settle <payment signature> --model <model>
"""

import argparse
import asyncio
import json
import sys
from typing import Any

import bittensor as bt

from modelmarket.base.config import MarketplaceSettings, add_args, apply_args, load_settings
from modelmarket.ledger.address import Address
from modelmarket.ledger.assembler import TransactionAssembler
from modelmarket.ledger.errors import MarketplaceError
from modelmarket.ledger.message import load_keypair, signer_address
from modelmarket.ledger.resolver import ModelIdentifierResolver
from modelmarket.ledger.service import MarketplaceService
from modelmarket.ledger.store import SnapshotLedgerClient, SolanaRPCClient

RPC_ONLY_COMMANDS = {"balance", "tx-status"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modelmarket-cli", description="Model marketplace ledger tools")
    bt.logging.add_args(parser)
    add_args(parser)
    parser.add_argument("--snapshot", type=str, default=None, help="Read accounts from a snapshot file instead of RPC.")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("derive-model", help="Derive a model account address.")
    p.add_argument("--creator", required=True)
    p.add_argument("--name", required=True)

    p = sub.add_parser("derive-receipt", help="Derive a subscription receipt address.")
    p.add_argument("--model", required=True)
    p.add_argument("--user", required=True)

    p = sub.add_parser("trace", help="Trace a model's lineage to its root.")
    p.add_argument("model", help="Model address or name.")
    p.add_argument("--max-depth", type=int, default=None)

    p = sub.add_parser("royalty", help="Split a payment across a model's lineage.")
    p.add_argument("model", help="Model address or name.")
    p.add_argument("--amount", type=int, required=True, help="Gross payment in minor units.")

    p = sub.add_parser("status", help="Check whether a user holds a subscription.")
    p.add_argument("model", help="Model address or name.")
    p.add_argument("--user", required=True)

    p = sub.add_parser("register", help="Register a model, paid for by the treasury keypair.")
    p.add_argument("--name", required=True)
    p.add_argument("--metadata", default="", help="Opaque metadata JSON.")
    p.add_argument("--cid", default="", help="Content root id.")
    p.add_argument("--parent", default=None, help="Parent model address or name.")
    p.add_argument("--creator", default=None, help="Creator address, when no creator keypair is given.")
    p.add_argument("--creator-keypair", default=None, help="Creator keypair file; required in creator signing mode.")

    p = sub.add_parser("purchase", help="Buy a subscription, paying platform, lineage and developer at once.")
    p.add_argument("model", help="Model address or name.")
    p.add_argument("--amount", type=int, required=True, help="Gross payment in minor units.")
    p.add_argument("--user-keypair", required=True, help="Keypair file of the paying user.")

    p = sub.add_parser("settle", help="Distribute a confirmed payment into the treasury across a model's lineage.")
    p.add_argument("signature", help="Signature of the payment transaction.")
    p.add_argument("--model", required=True, help="Model address or name the payment was for.")

    p = sub.add_parser("balance", help="Balance of an account, in minor units.")
    p.add_argument("address")

    p = sub.add_parser("tx-status", help="Confirmation status of a transaction.")
    p.add_argument("signature")

    return parser


def _make_client(settings: MarketplaceSettings, snapshot: str | None) -> Any:
    if snapshot:
        return SnapshotLedgerClient.load(snapshot)
    ledger = settings.ledger
    return SolanaRPCClient(
        ledger.rpc_url,
        commitment=ledger.commitment,
        timeout=ledger.timeout,
        max_retries=ledger.max_retries,
        skip_preflight=ledger.skip_preflight,
    )


def _make_service(settings: MarketplaceSettings, client: Any) -> MarketplaceService:
    royalty = settings.royalty
    return MarketplaceService(
        client,
        program_id=settings.ledger.program_id,
        platform_wallet=royalty.platform_wallet,
        platform_fee_bps=royalty.platform_fee_bps,
        min_share_amount=royalty.min_share_amount,
        per_ancestor_bps=royalty.per_ancestor_bps,
        max_depth=royalty.max_lineage_depth,
        signing_mode=settings.ledger.signing_mode,
        min_payment_amount=royalty.min_payment_amount,
    )


def _treasury_keypair(settings: MarketplaceSettings, action: str):
    if not settings.ledger.treasury_keypair:
        raise ValueError(f"ledger.treasury_keypair is required to {action}")
    return load_keypair(settings.ledger.treasury_keypair)


async def _register(
    service: MarketplaceService,
    resolver: ModelIdentifierResolver,
    args: argparse.Namespace,
    settings: MarketplaceSettings,
) -> dict[str, Any]:
    treasury_key = _treasury_keypair(settings, "register a model")
    signing_keys = [treasury_key]

    if args.creator_keypair:
        creator_key = load_keypair(args.creator_keypair)
        signing_keys.append(creator_key)
        creator = signer_address(creator_key)
    elif args.creator:
        creator = Address.from_base58(args.creator)
    else:
        raise ValueError("register needs --creator-keypair or --creator")

    parent = await resolver.resolve(args.parent) if args.parent else None
    tx = await service.prepare_register_model(
        creator,
        signer_address(treasury_key),
        args.name,
        metadata_json=args.metadata,
        cid_root=args.cid,
        parent_address=parent,
    )
    tx_id = await service.submit(tx, signing_keys)
    return {
        "model_address": str(service.model_address(creator, args.name)),
        "transaction_id": tx_id,
    }


async def _purchase(
    service: MarketplaceService,
    model: Address,
    args: argparse.Namespace,
) -> dict[str, Any]:
    user_key = load_keypair(args.user_keypair)
    user = signer_address(user_key)
    prepared = await service.prepare_purchase_subscription(user, model, args.amount)
    tx_id = await service.submit(prepared.transaction, [user_key])
    return {
        "model_address": str(model),
        "receipt_address": str(service.receipt_address(model, user)),
        "distribution": prepared.distribution.model_dump(mode="json"),
        "transaction_id": tx_id,
    }


async def _settle(
    service: MarketplaceService,
    model: Address,
    args: argparse.Namespace,
    settings: MarketplaceSettings,
) -> dict[str, Any]:
    treasury_key = _treasury_keypair(settings, "settle a payment")
    settlement = await service.prepare_settlement(args.signature, model, signer_address(treasury_key))
    tx_id = await service.submit(settlement.transaction, [treasury_key])
    return {
        "payment_signature": settlement.payment_signature,
        "model_address": str(model),
        "total_amount": settlement.total_amount,
        "lineage_length": len(settlement.trace.lineage),
        "distribution": settlement.distribution.model_dump(mode="json"),
        "transaction_id": tx_id,
    }


async def _rpc_read(client: SolanaRPCClient, args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "balance":
        address = Address.from_base58(args.address)
        return {"address": str(address), "balance": await client.get_balance(address)}
    return {"signature": args.signature, "status": await client.get_signature_status(args.signature)}


async def run_command(args: argparse.Namespace, settings: MarketplaceSettings) -> dict[str, Any]:
    """Execute one subcommand and return its JSON-ready result."""
    assembler = TransactionAssembler(settings.ledger.program_id)

    # Pure derivations need no ledger access
    if args.command == "derive-model":
        creator = Address.from_base58(args.creator)
        return {"model_address": str(assembler.model_address(creator, args.name))}
    if args.command == "derive-receipt":
        model = Address.from_base58(args.model)
        user = Address.from_base58(args.user)
        return {"receipt_address": str(assembler.receipt_address(model, user))}

    if args.command in RPC_ONLY_COMMANDS and args.snapshot:
        raise ValueError(f"{args.command} reads live ledger state and cannot run against a snapshot")

    resolver = ModelIdentifierResolver(
        name_map=settings.resolver.model_name_map,
        remote_url=settings.resolver.remote_url,
    )
    client = _make_client(settings, args.snapshot)
    try:
        if args.command in RPC_ONLY_COMMANDS:
            return await _rpc_read(client, args)

        service = _make_service(settings, client)
        if args.command == "register":
            return await _register(service, resolver, args, settings)

        model = await resolver.resolve(args.model)
        if args.command == "trace":
            if args.max_depth is not None:
                service.max_depth = args.max_depth
            trace = await service.trace_lineage(model)
            return trace.model_dump(mode="json")
        if args.command == "royalty":
            trace, distribution = await service.calculate_lineage_royalty(model, args.amount)
            return {
                "model_address": str(model),
                "lineage_length": len(trace.lineage),
                "distribution": distribution.model_dump(mode="json"),
            }
        if args.command == "status":
            status = await service.subscription_status(model, Address.from_base58(args.user))
            return status.model_dump(mode="json")
        if args.command == "purchase":
            return await _purchase(service, model, args)
        if args.command == "settle":
            return await _settle(service, model, args, settings)
        raise ValueError(f"unknown command: {args.command}")
    finally:
        if isinstance(client, SolanaRPCClient):
            await client.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    loop = asyncio.new_event_loop()
    try:
        settings = apply_args(load_settings(), args)
        bt.logging.info({"cli": {"command": args.command, "snapshot": args.snapshot is not None}})
        result = loop.run_until_complete(run_command(args, settings))
    except (MarketplaceError, ValueError, OSError) as e:
        bt.logging.error({"cli": {"command": args.command, "error": str(e)}})
        print(json.dumps({"error": type(e).__name__, "message": str(e)}), file=sys.stderr)
        return 1
    finally:
        loop.close()

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
