"""JSON-RPC LedgerClient over HTTP.

Owns everything the core leaves to its collaborator: commitment level,
timeouts, and retrying transport failures with exponential backoff.
Submission rejections and unreachable endpoints are raised as SubmissionError,
with the RPC error message and data untouched.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
from typing import Any

import bittensor as bt
import httpx

from modelmarket.ledger.address import Address
from modelmarket.ledger.errors import LedgerRequestError, SubmissionError


class SolanaRPCClient:
    """LedgerClient backed by a JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        max_retries: int = 3,
        skip_preflight: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.skip_preflight = skip_preflight
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._max_retries = max(1, max_retries)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SolanaRPCClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Transport --

    async def _post(self, method: str, params: list[Any]) -> dict[str, Any]:
        """POST one JSON-RPC request with retry on transport errors."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        for attempt in range(self._max_retries):
            try:
                resp = await self._client.post(self.rpc_url, json=payload)
                if resp.status_code == 429 or resp.status_code >= 500:
                    raise httpx.TransportError(f"HTTP {resp.status_code}")
                resp.raise_for_status()
                return resp.json()
            except httpx.TransportError as e:
                if attempt == self._max_retries - 1:
                    raise LedgerRequestError(f"{method} failed after {self._max_retries} attempts: {e}") from e
                wait = 2 ** attempt
                bt.logging.warning({"rpc_client": {"method": method, "retry": attempt, "wait": wait, "error": str(e)}})
                await asyncio.sleep(wait)
            except (httpx.HTTPStatusError, ValueError) as e:
                raise LedgerRequestError(f"{method} failed: {e}") from e
        raise LedgerRequestError(f"{method}: max retries exceeded")

    async def _call(self, method: str, params: list[Any]) -> Any:
        body = await self._post(method, params)
        if "error" in body:
            err = body["error"] or {}
            raise LedgerRequestError(f"{method} rpc error {err.get('code')}: {err.get('message')}")
        return body.get("result")

    # -- LedgerClient interface --

    async def fetch_account_bytes(self, address: Address) -> bytes | None:
        result = await self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        data, encoding = value["data"]
        if encoding != "base64":
            raise LedgerRequestError(f"unexpected account encoding: {encoding}")
        return base64.b64decode(data)

    async def current_network_checkpoint(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    async def submit_transaction(self, raw: bytes) -> str:
        try:
            body = await self._post(
                "sendTransaction",
                [
                    base64.b64encode(raw).decode(),
                    {
                        "encoding": "base64",
                        "skipPreflight": self.skip_preflight,
                        "preflightCommitment": self.commitment,
                    },
                ],
            )
        except LedgerRequestError as e:
            bt.logging.warning({"rpc_client": {"method": "sendTransaction", "unreachable": str(e)}})
            raise SubmissionError(str(e)) from e
        if "error" in body:
            err = body["error"] or {}
            bt.logging.warning({"rpc_client": {"method": "sendTransaction", "rejected": err.get("message")}})
            raise SubmissionError(err.get("message", "transaction rejected"), data=err.get("data"))

        signature = body["result"]
        bt.logging.info({"rpc_client": {"method": "sendTransaction", "signature": signature}})
        return signature

    async def fetch_transaction(self, signature: str) -> dict[str, Any] | None:
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    # -- Extra reads --

    async def get_balance(self, address: Address) -> int:
        result = await self._call("getBalance", [str(address), {"commitment": self.commitment}])
        return int(result["value"])

    async def get_signature_status(self, signature: str) -> dict[str, Any] | None:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = (result or {}).get("value") or [None]
        return statuses[0]


__all__ = ["SolanaRPCClient"]
