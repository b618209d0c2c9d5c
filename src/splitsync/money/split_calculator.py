"""
Cent-exact split calculation for the three payment split modes.

All three modes work on the absolute target in integer cents, hand out the
cents that rounding leaves over one at a time, and re-apply the target's
sign at the end. That makes the post-conditions hold by construction:

  - sum of the splits == target, exactly in cents (positive, negative or zero)
  - in "equally" mode the largest and smallest split differ by at most 1 cent

They are still checked before returning; a violation raises
SplitVerificationError.

  equally     floor(|target| / N); leftover cents go to participants in
              ascending user id order
  unequally   floor of each prior amount's share of |target|; leftover cents
              go to the largest unrounded shares first
  percentage  half-up rounding of each percentage's share of |target|; the
              remaining difference (either direction) goes to the shares the
              rounding moved furthest, relative to their size
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import List, Optional, Sequence

from splitsync.errors import SplitVerificationError
from splitsync.models.sync import SyncStatus
from splitsync.money.amounts import as_decimal, from_cents, round_half_up, sign, to_cents

logger = logging.getLogger(__name__)


class SplitMode(str, Enum):
    EQUALLY = "equally"
    UNEQUALLY = "unequally"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class SplitShare:
    """One participant's share of a payment, independent of storage."""

    user_id: int
    amount: Decimal
    currency: str
    percentage: Optional[Decimal] = None
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING_SYNC


def calculate_splits(
    mode: SplitMode,
    target_amount: Decimal,
    target_currency: str,
    shares: Sequence[SplitShare],
    user_id: int,
    timestamp: datetime,
) -> List[SplitShare]:
    """
    Re-split `target_amount` across the participants of `shares`.

    Args:
        mode: Split mode of the payment.
        target_amount: New payment total (rounded half-up to cents first).
        target_currency: Currency stamped on every returned share.
        shares: Current shares; their amounts (unequally) or percentages
            (percentage) are the weights.
        user_id: Actor recorded as `updated_by`.
        timestamp: Recorded as `updated_at`.

    Returns:
        New shares in the same order as `shares`, all PENDING_SYNC.

    Raises:
        SplitVerificationError: the result does not add up (never expected).
    """
    mode = SplitMode(mode)
    target_cents = to_cents(target_amount)
    if not shares:
        cents: List[int] = []
    elif mode == SplitMode.PERCENTAGE:
        cents = _percentage_cents(shares, abs(target_cents))
    elif mode == SplitMode.UNEQUALLY:
        cents = _weighted_cents(shares, abs(target_cents))
    else:
        cents = _equal_cents(shares, abs(target_cents))

    direction = sign(target_cents)
    keep_percentage = mode == SplitMode.PERCENTAGE or any(s.percentage is not None for s in shares)
    result = [
        replace(
            share,
            amount=from_cents(direction * c),
            currency=target_currency,
            percentage=share.percentage if keep_percentage else None,
            updated_by=user_id,
            updated_at=timestamp,
            sync_status=SyncStatus.PENDING_SYNC,
        )
        for share, c in zip(shares, cents)
    ]

    ensure_valid(result, from_cents(target_cents), mode)
    return result


# ─── Per-mode distribution (absolute cents) ──────────────────────────────────

def _distribute(base: List[int], leftover: int, order: Sequence[int], step: int = 1) -> List[int]:
    out = list(base)
    for index in order[:leftover]:
        out[index] += step
    return out


def _by_user_id(shares: Sequence[SplitShare]) -> List[int]:
    return sorted(range(len(shares)), key=lambda i: (shares[i].user_id, i))


def _equal_cents(shares: Sequence[SplitShare], total: int) -> List[int]:
    per_share, leftover = divmod(total, len(shares))
    return _distribute([per_share] * len(shares), leftover, _by_user_id(shares))


def _weighted_cents(shares: Sequence[SplitShare], total: int) -> List[int]:
    weights = [abs(as_decimal(s.amount)) for s in shares]
    weight_sum = sum(weights)
    if weight_sum == 0:
        logger.warning("All prior split amounts are zero; splitting equally")
        return _equal_cents(shares, total)

    exact = [Fraction(w) / Fraction(weight_sum) * total for w in weights]
    base = [int(e) for e in exact]  # floor, all values are non-negative
    order = sorted(range(len(shares)), key=lambda i: (-exact[i], shares[i].user_id, i))
    return _distribute(base, total - sum(base), order)


def _percentage_cents(shares: Sequence[SplitShare], total: int) -> List[int]:
    percentages = [as_decimal(s.percentage or 0) for s in shares]
    percentage_sum = sum(percentages)
    if percentage_sum == 0:
        logger.warning("No split percentages set; splitting equally")
        return _equal_cents(shares, total)

    exact = [Fraction(p) / Fraction(percentage_sum) * total for p in percentages]
    base = [_round_half_up(e) for e in exact]
    difference = total - sum(base)
    if difference == 0:
        return base

    # Signed relative error: positive when rounding went down.
    def error(i: int) -> Fraction:
        return (exact[i] - base[i]) / exact[i] if exact[i] else Fraction(0)

    if difference > 0:
        order = sorted(range(len(shares)), key=lambda i: (-error(i), shares[i].user_id, i))
        return _distribute(base, difference, order)
    order = sorted(range(len(shares)), key=lambda i: (error(i), shares[i].user_id, i))
    return _distribute(base, -difference, order, step=-1)


def _round_half_up(value: Fraction) -> int:
    whole = int(value)
    return whole + 1 if value - whole >= Fraction(1, 2) else whole


# ─── Verification ────────────────────────────────────────────────────────────

def verify_splits(shares: Sequence[SplitShare], target_amount: Decimal) -> bool:
    """True when the shares add up to the target exactly in cents."""
    if not shares:
        return to_cents(target_amount) == 0
    return sum(to_cents(s.amount) for s in shares) == to_cents(target_amount)


def verify_equal_distribution(shares: Sequence[SplitShare]) -> bool:
    if not shares:
        return True
    cents = [to_cents(s.amount) for s in shares]
    return max(cents) - min(cents) <= 1


def ensure_valid(shares: Sequence[SplitShare], target_amount: Decimal, mode: SplitMode) -> None:
    if not verify_splits(shares, target_amount):
        total = sum((round_half_up(s.amount) for s in shares), Decimal("0.00"))
        raise SplitVerificationError(
            f"Splits sum to {total}, expected {round_half_up(target_amount)}"
        )
    if SplitMode(mode) == SplitMode.EQUALLY and not verify_equal_distribution(shares):
        raise SplitVerificationError("Equal splits differ by more than one cent")
