"""Reserve interest-rate math: utilization, borrow curve, compounding."""
from __future__ import annotations

from decimal import Decimal

from ..errors import LeverageLogicError
from ..models import BorrowRateCurve, ObligationBorrow, Reserve

SLOTS_PER_SECOND = 2
SLOTS_PER_YEAR = SLOTS_PER_SECOND * 60 * 60 * 24 * 365

ONE = Decimal(1)


def utilization(reserve: Reserve) -> Decimal:
    if reserve.total_supply <= 0:
        return Decimal(0)
    return reserve.total_borrowed / reserve.total_supply


def borrow_rate(current_utilization: Decimal, curve: BorrowRateCurve) -> Decimal:
    """Interpolate the annual borrow rate on a piecewise-linear curve.

    Utilization above 1 is clamped to 1. Raises ``LeverageLogicError`` for
    curves with fewer than two points or segments that do not increase.
    """
    points = curve.points
    if len(points) < 2:
        raise LeverageLogicError("Invalid borrow rate curve: fewer than two points")

    u = min(current_utilization, ONE)
    segment: tuple[Decimal, Decimal, Decimal, Decimal] | None = None
    for (x0, y0), (x1, y1) in zip(points, points[1:]):
        if x1 == u:
            return y1
        if u <= x1:
            segment = (x0, y0, x1, y1)
            break

    if segment is None:
        raise LeverageLogicError(f"Invalid borrow rate curve: no segment covers {u}")

    x0, y0, x1, y1 = segment
    if x0 >= x1 or y0 > y1:
        raise LeverageLogicError("Invalid borrow rate curve: not uniformly increasing")
    return y0 + (u - x0) * (y1 - y0) / (x1 - x0)


def approximate_compounded_interest(rate: Decimal, elapsed_slots: int) -> Decimal:
    """Per-slot compounding of an annual rate, third-order for long spans."""
    base = rate / SLOTS_PER_YEAR
    if elapsed_slots <= 0:
        return ONE
    if elapsed_slots <= 4:
        return (ONE + base) ** elapsed_slots

    n = Decimal(elapsed_slots)
    first = base * n
    second = base**2 * n * (n - 1) / 2
    third = base**3 * n * (n - 1) * (n - 2) / 6
    return ONE + first + second + third


def estimated_cumulative_borrow_rate(reserve: Reserve, slot: int) -> Decimal:
    if len(reserve.borrow_rate_curve.points) < 2:
        raise LeverageLogicError(
            f"Reserve {reserve.address} has no usable borrow rate curve"
        )
    rate = borrow_rate(utilization(reserve), reserve.borrow_rate_curve)
    elapsed = slot - reserve.last_update_slot
    compounded = approximate_compounded_interest(
        rate + reserve.host_fixed_interest_rate, elapsed
    )
    return reserve.cumulative_borrow_rate * compounded


def obligation_accrual_ratio(
    reserve: Reserve, borrow: ObligationBorrow | None, slot: int
) -> Decimal:
    """How much a borrow has grown since its cumulative rate was recorded."""
    if borrow is None or borrow.cumulative_borrow_rate <= 0:
        return ONE
    estimated = estimated_cumulative_borrow_rate(reserve, slot)
    if estimated > borrow.cumulative_borrow_rate:
        return estimated / borrow.cumulative_borrow_rate
    return ONE

