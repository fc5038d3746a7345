"""Lineage resolution: walk a model's parent pointers up to the root.

The walk is iterative with an explicit depth counter, so the depth cap is a
loop bound and the cycle check is a distinct-count comparison. Each step
needs the parent decoded at the previous step, so a single walk is strictly
serial; independent walks can run concurrently.

Violations are collected on the returned trace rather than raised, so the
caller gets a partial trace and decides whether to proceed.
"""

from __future__ import annotations

from typing import Awaitable, Callable

import bittensor as bt

from .address import Address
from .codec import decode_model_account
from .errors import LedgerRequestError, MalformedAccountError
from .models import LineageTrace, LineageViolation, ModelRecord
from .store.interface import LedgerClient

DEFAULT_MAX_DEPTH = 32

FetchAccountBytes = Callable[[Address], Awaitable["bytes | None"]]


def _short(address: Address | None) -> str:
    """Truncate an address for log readability."""
    return str(address)[:12] if address is not None else "none"


async def trace_lineage(
    start: Address,
    fetch_bytes: FetchAccountBytes,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> LineageTrace:
    """Walk parent pointers from ``start`` until the root or ``max_depth`` steps.

    Steps:
    1. Fetch the current account; absent (or a failed read) -> NOT_FOUND, stop.
    2. Decode it; malformed -> DECODE_FAILURE, stop.
    3. Record it with its own address attached.
    4. Follow the parent if there is one, otherwise the root is reached.
    After the loop: MAX_DEPTH_EXCEEDED if the depth cap ended it,
    CIRCULAR_REFERENCE if any address was visited twice.
    """
    if max_depth < 1:
        raise ValueError(f"max_depth must be >= 1, got {max_depth}")

    visited: list[ModelRecord] = []
    violations: list[LineageViolation] = []
    current: Address | None = start
    depth = 0

    while current is not None and depth < max_depth:
        try:
            data = await fetch_bytes(current)
        except LedgerRequestError as e:
            bt.logging.warning({"lineage_trace": {"event": "fetch_failed", "address": _short(current), "depth": depth, "error": str(e)}})
            data = None

        if data is None:
            violations.append(LineageViolation.NOT_FOUND)
            break

        try:
            record = decode_model_account(data)
        except MalformedAccountError as e:
            bt.logging.warning({"lineage_trace": {"event": "decode_failed", "address": _short(current), "depth": depth, "error": str(e)}})
            violations.append(LineageViolation.DECODE_FAILURE)
            break

        visited.append(record.model_copy(update={"address": current}))

        if record.parent_address is None:
            current = None
        else:
            current = record.parent_address
            depth += 1

    if depth == max_depth:
        violations.append(LineageViolation.MAX_DEPTH_EXCEEDED)

    addresses = [r.address for r in visited]
    if len(set(addresses)) < len(addresses):
        violations.append(LineageViolation.CIRCULAR_REFERENCE)

    trace = LineageTrace(
        lineage=visited,
        total_depth=depth,
        is_valid=not violations,
        violations=violations,
    )

    log = bt.logging.info if trace.is_valid else bt.logging.warning
    log({
        "lineage_trace": {
            "start": _short(start),
            "length": len(visited),
            "total_depth": depth,
            "violations": [v.value for v in violations],
        }
    })
    return trace


class LineageResolver:
    """Binds lineage walks to a LedgerClient."""

    def __init__(self, client: LedgerClient, max_depth: int = DEFAULT_MAX_DEPTH):
        self.client = client
        self.max_depth = max_depth

    async def trace(self, address: Address, max_depth: int | None = None) -> LineageTrace:
        return await trace_lineage(
            address,
            self.client.fetch_account_bytes,
            max_depth=max_depth if max_depth is not None else self.max_depth,
        )


__all__ = ["DEFAULT_MAX_DEPTH", "FetchAccountBytes", "LineageResolver", "trace_lineage"]
