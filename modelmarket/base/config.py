# The MIT License (MIT)
# Copyright © 2023 Yuma Rao
# Copyright © 2023 Opentensor Foundation

# Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated
# documentation files (the “Software”), to deal in the Software without restriction, including without limitation
# the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

# The above copyright notice and this permission notice shall be included in all copies or substantial portions of
# the Software.

# THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO
# THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL
# THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
# DEALINGS IN THE SOFTWARE.

import json
import os
from typing import Any, Mapping

import bittensor as bt
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from modelmarket.ledger.address import Address
from modelmarket.ledger.assembler import SigningMode

ENV_PREFIX = "MODELMARKET_"
DEFAULT_PROGRAM_ID = "GUrLuMj8yCB2T4NKaJSVqrAWWCMPMf1qtBSnDR8ytYwB"
DEFAULT_RPC_URL = "https://api.devnet.solana.com"

# Fields whose env value is a JSON document rather than a scalar
_JSON_FIELDS = {"model_name_map"}


class LedgerSettings(BaseModel):
    """Where the program lives and how to talk to the ledger."""

    rpc_url: str = DEFAULT_RPC_URL
    program_id: Address = Field(default_factory=lambda: Address.from_base58(DEFAULT_PROGRAM_ID))
    commitment: str = Field(default="confirmed", pattern=r"^(processed|confirmed|finalized)$")
    timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    skip_preflight: bool = False
    treasury_keypair: str | None = None
    signing_mode: SigningMode = SigningMode.CREATOR


class RoyaltySettings(BaseModel):
    """Royalty split parameters. Passed explicitly into every computation."""

    platform_fee_bps: int = Field(default=500, ge=0, le=10_000)
    min_share_amount: int = Field(default=1_000, ge=0)
    per_ancestor_bps: int = Field(default=250, ge=0, le=10_000)
    max_lineage_depth: int = Field(default=32, ge=1)
    min_payment_amount: int = Field(default=1_000_000, ge=0)
    platform_wallet: Address | None = None


class ResolverSettings(BaseModel):
    """Model name -> address resolution sources."""

    model_config = ConfigDict(protected_namespaces=())

    model_name_map: dict[str, str] = Field(default_factory=dict)
    remote_url: str | None = None


class MarketplaceSettings(BaseModel):
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    royalty: RoyaltySettings = Field(default_factory=RoyaltySettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    """Collect MODELMARKET_<SECTION>__<FIELD> variables into nested overrides."""
    overrides: dict[str, dict[str, Any]] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        section, sep, field = key[len(ENV_PREFIX):].lower().partition("__")
        if not sep or section not in MarketplaceSettings.model_fields:
            continue
        if field in _JSON_FIELDS:
            try:
                value = json.loads(value)
            except ValueError:
                bt.logging.warning({"config": {"env": key, "error": "invalid_json"}})
                continue
        overrides.setdefault(section, {})[field] = value
    return overrides


def load_settings(environ: Mapping[str, str] | None = None) -> MarketplaceSettings:
    """Build settings from defaults, then .env, then process environment.

    Passing ``environ`` skips .env loading and reads only that mapping.
    """
    if environ is None:
        if os.environ.get("MODELMARKET_TEST_MODE", "").lower() not in ("true", "1"):
            load_dotenv()
        environ = os.environ
    return MarketplaceSettings(**_env_overrides(environ))


def add_args(parser):
    """
    Adds relevant arguments to the parser for operation.
    """

    parser.add_argument(
        "--ledger.rpc_url",
        type=str,
        help="JSON-RPC endpoint of the ledger.",
        default=None,
    )

    parser.add_argument(
        "--ledger.program_id",
        type=str,
        help="Marketplace program id (base58).",
        default=None,
    )

    parser.add_argument(
        "--ledger.commitment",
        type=str,
        choices=["processed", "confirmed", "finalized"],
        help="Commitment level for reads and preflight.",
        default=None,
    )

    parser.add_argument(
        "--ledger.treasury_keypair",
        type=str,
        help="Path to the treasury keypair JSON file.",
        default=None,
    )

    parser.add_argument(
        "--royalty.platform_fee_bps",
        type=int,
        help="Platform fee in basis points.",
        default=None,
    )

    parser.add_argument(
        "--royalty.min_share_amount",
        type=int,
        help="Smallest lineage share paid out; the cascade stops below it.",
        default=None,
    )

    parser.add_argument(
        "--royalty.per_ancestor_bps",
        type=int,
        help="Rate each lineage entry earns, in basis points.",
        default=None,
    )

    parser.add_argument(
        "--royalty.max_lineage_depth",
        type=int,
        help="Maximum number of parent links followed.",
        default=None,
    )

    parser.add_argument(
        "--royalty.min_payment_amount",
        type=int,
        help="Smallest payment a settlement accepts.",
        default=None,
    )

    parser.add_argument(
        "--royalty.platform_wallet",
        type=str,
        help="Wallet receiving the platform fee (base58).",
        default=None,
    )


def apply_args(settings: MarketplaceSettings, args: Any) -> MarketplaceSettings:
    """Return settings with any CLI flags that were given layered on top."""
    data = settings.model_dump()
    for section in MarketplaceSettings.model_fields:
        for field in data[section]:
            value = getattr(args, f"{section}.{field}", None)
            if value is not None:
                data[section][field] = value
    return MarketplaceSettings(**data)


__all__ = [
    "DEFAULT_PROGRAM_ID",
    "LedgerSettings",
    "MarketplaceSettings",
    "ResolverSettings",
    "RoyaltySettings",
    "add_args",
    "apply_args",
    "load_settings",
]
