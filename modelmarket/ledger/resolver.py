"""Resolve a model identifier (address or human name) to a model address.

Order: a literal base58 address, then the configured name map
(case-insensitive), then an optional remote resolver queried with ``?name=``.
"""

from __future__ import annotations

import bittensor as bt
import httpx

from .address import Address
from .errors import AddressDerivationError, ModelResolutionError


def _try_address(value: str) -> Address | None:
    try:
        return Address.from_base58(value)
    except AddressDerivationError:
        return None


class ModelIdentifierResolver:
    """Maps identifiers to model addresses."""

    def __init__(
        self,
        name_map: dict[str, str] | None = None,
        remote_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name_map = {k.lower(): v for k, v in (name_map or {}).items()}
        self.remote_url = remote_url
        self._timeout = timeout
        self._transport = transport

    def _from_map(self, name: str) -> Address | None:
        raw = self.name_map.get(name.lower())
        if raw is None:
            return None
        address = _try_address(raw)
        if address is None:
            bt.logging.warning({"model_resolver": {"source": "name_map", "name": name, "error": "invalid_address"}})
        return address

    async def _from_remote(self, name: str) -> Address | None:
        if not self.remote_url:
            return None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self.remote_url, params={"name": name})
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            bt.logging.warning({"model_resolver": {"source": "remote", "name": name, "error": str(e)}})
            return None

        if not isinstance(body, dict):
            return None
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        pubkey = body.get("pubkey") or data.get("pubkey")
        if not isinstance(pubkey, str):
            return None
        return _try_address(pubkey)

    async def resolve(self, identifier: str) -> Address:
        direct = _try_address(identifier)
        if direct is not None:
            return direct

        mapped = self._from_map(identifier)
        if mapped is not None:
            return mapped

        remote = await self._from_remote(identifier)
        if remote is not None:
            return remote

        raise ModelResolutionError(f"unable to resolve model identifier to an address: {identifier}")


__all__ = ["ModelIdentifierResolver"]
