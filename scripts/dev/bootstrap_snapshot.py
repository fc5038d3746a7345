"""Bootstrap a demo ledger snapshot for local CLI runs.

One-shot script that writes a snapshot holding a short lineage chain
(foundation -> fine-tune -> distilled) so the CLI has accounts to trace and
price without a live RPC endpoint.

Usage:
    python scripts/dev/bootstrap_snapshot.py [out_path]
    modelmarket-cli --snapshot data/demo_snapshot.json.gz royalty <address> --amount 1000000000
"""

import os
import sys

# Ensure project root on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

DEMO_CHAIN = [
    ("foundation-7b", '{"arch": "transformer", "params": "7b"}'),
    ("foundation-7b-chat", '{"base": "foundation-7b", "task": "chat"}'),
    ("foundation-7b-chat-distilled", '{"base": "foundation-7b-chat", "params": "1b"}'),
]


def main() -> None:
    import bittensor as bt
    from solders.keypair import Keypair

    from modelmarket.base.config import load_settings
    from modelmarket.ledger.address import derive_model_address
    from modelmarket.ledger.message import signer_address
    from modelmarket.ledger.models import ModelRecord
    from modelmarket.ledger.store.snapshot import SnapshotLedgerClient

    bt.logging.info({"bootstrap": "starting"})

    out_path = sys.argv[1] if len(sys.argv) > 1 else os.path.join(
        os.path.dirname(__file__), "..", "..", "data", "demo_snapshot.json.gz",
    )
    program_id = load_settings().ledger.program_id
    client = SnapshotLedgerClient()

    parent = None
    for depth, (name, metadata) in enumerate(DEMO_CHAIN):
        # Fixed seeds keep the demo addresses stable across runs
        creator = signer_address(Keypair.from_seed(bytes([depth + 1]) * 32))
        address, _ = derive_model_address(program_id, creator, name)
        client.put_model(address, ModelRecord(
            creator_address=creator,
            model_name=name,
            metadata_json=metadata,
            cid_root=f"bafy-demo-{depth}",
            parent_address=parent,
            lineage_depth=depth,
            created_at=1_700_000_000 + depth * 86_400,
        ))
        bt.logging.info({"bootstrap": "model_added", "name": name, "address": str(address), "depth": depth})
        parent = address

    client.save(out_path)
    bt.logging.info({"bootstrap": "done", "path": out_path, "leaf": str(parent)})
    print(parent)


if __name__ == "__main__":
    main()
