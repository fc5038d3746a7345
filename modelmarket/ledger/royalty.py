"""Deterministic cascading royalty distribution.

Given a gross payment and a lineage trace, split the payment between the
platform, the models in the lineage, and the developer of the queried model.
Integer minor units and floor division throughout; the developer receives
whatever is left, so the split always conserves the total exactly.

The same inputs must give the same split wherever it is computed (the
service preparing a purchase, the CLI, an auditor re-checking a settlement).
No floating point, no ambient configuration.
"""

from __future__ import annotations

from .models import U64_MAX, AncestorShare, LineageTrace, RoyaltyDistribution
from .errors import RoyaltyComputationError

BPS_DENOMINATOR = 10_000

DEFAULT_PLATFORM_FEE_BPS = 500
DEFAULT_MIN_SHARE_AMOUNT = 1_000
DEFAULT_PER_ANCESTOR_BPS = 250


def _check_bps(name: str, value: int) -> None:
    if not 0 <= value <= BPS_DENOMINATOR:
        raise RoyaltyComputationError(f"{name} must be within 0..{BPS_DENOMINATOR}, got {value}")


def distribute_royalties(
    total_amount: int,
    trace: LineageTrace,
    platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
    min_share_amount: int = DEFAULT_MIN_SHARE_AMOUNT,
    per_ancestor_bps: int = DEFAULT_PER_ANCESTOR_BPS,
) -> RoyaltyDistribution:
    """Split ``total_amount`` across platform, lineage and developer.

    Steps:
    1. platform = floor(total * platform_fee_bps / 10000)
    2. remaining = total - platform
    3. Walk the lineage root first (last element down to index 0, the queried
       model included). Each entry's share is floor(total * per_ancestor_bps / 10000).
       The first share below ``min_share_amount``, above ``remaining``, or zero
       stops the walk entirely; later (shallower) entries get nothing.
    4. developer = remaining after the walk.

    Args:
        total_amount: Gross payment in minor units.
        trace: Lineage trace; callers should only pass valid traces.
        platform_fee_bps: Platform cut in basis points.
        min_share_amount: Smallest share worth paying out.
        per_ancestor_bps: Rate each lineage entry earns, in basis points.

    Returns:
        RoyaltyDistribution with shares in payout order.
    """
    if total_amount < 0 or total_amount > U64_MAX:
        raise RoyaltyComputationError(f"total_amount out of range: {total_amount}")
    if min_share_amount < 0:
        raise RoyaltyComputationError(f"min_share_amount must be >= 0, got {min_share_amount}")
    _check_bps("platform_fee_bps", platform_fee_bps)
    _check_bps("per_ancestor_bps", per_ancestor_bps)

    platform_amount = total_amount * platform_fee_bps // BPS_DENOMINATOR
    remaining = total_amount - platform_amount

    shares: list[AncestorShare] = []
    total_ancestor_amount = 0
    share = total_amount * per_ancestor_bps // BPS_DENOMINATOR

    for depth in range(len(trace.lineage) - 1, -1, -1):
        if share <= 0 or share < min_share_amount or share > remaining:
            break
        record = trace.lineage[depth]
        shares.append(AncestorShare(
            address=record.address,
            recipient=record.creator_address,
            model_name=record.model_name,
            depth=depth,
            amount=share,
        ))
        remaining -= share
        total_ancestor_amount += share

    developer_amount = remaining

    if (
        developer_amount < 0
        or platform_amount + total_ancestor_amount + developer_amount != total_amount
    ):
        raise RoyaltyComputationError(
            f"split does not conserve total: platform={platform_amount} "
            f"ancestors={total_ancestor_amount} developer={developer_amount} total={total_amount}"
        )

    developer = trace.lineage[0].creator_address if trace.lineage else None

    return RoyaltyDistribution(
        total_amount=total_amount,
        platform_amount=platform_amount,
        ancestor_shares=shares,
        total_ancestor_amount=total_ancestor_amount,
        developer_amount=developer_amount,
        developer=developer,
    )


__all__ = [
    "BPS_DENOMINATOR",
    "DEFAULT_MIN_SHARE_AMOUNT",
    "DEFAULT_PER_ANCESTOR_BPS",
    "DEFAULT_PLATFORM_FEE_BPS",
    "distribute_royalties",
]
