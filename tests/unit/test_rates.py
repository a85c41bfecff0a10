"""Unit tests for reserve interest-rate math."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from leverage_engine.errors import LeverageLogicError
from leverage_engine.models import BorrowRateCurve, ObligationBorrow, Reserve
from leverage_engine.snapshot.rates import (
    SLOTS_PER_YEAR,
    approximate_compounded_interest,
    borrow_rate,
    estimated_cumulative_borrow_rate,
    obligation_accrual_ratio,
    utilization,
)

D = Decimal

CURVE = BorrowRateCurve(
    points=((D(0), D(0)), (D("0.5"), D("0.1")), (D(1), D("0.5")))
)


class TestBorrowRate:
    @pytest.mark.parametrize(
        ("u", "expected"),
        [
            (D(0), D(0)),
            (D("0.25"), D("0.05")),
            (D("0.5"), D("0.1")),
            (D("0.75"), D("0.3")),
            (D(1), D("0.5")),
        ],
    )
    def test_interpolation(self, u: Decimal, expected: Decimal) -> None:
        assert borrow_rate(u, CURVE) == expected

    def test_clamps_above_full_utilization(self) -> None:
        assert borrow_rate(D("1.5"), CURVE) == D("0.5")

    def test_single_point_raises(self) -> None:
        with pytest.raises(LeverageLogicError, match="fewer than two"):
            borrow_rate(D("0.5"), BorrowRateCurve(points=((D(0), D(0)),)))

    def test_decreasing_segment_raises(self) -> None:
        curve = BorrowRateCurve(points=((D(0), D("0.2")), (D(1), D("0.1"))))
        with pytest.raises(LeverageLogicError, match="increasing"):
            borrow_rate(D("0.5"), curve)

    def test_curve_short_of_full_utilization_raises(self) -> None:
        curve = BorrowRateCurve(points=((D(0), D(0)), (D("0.5"), D("0.1"))))
        with pytest.raises(LeverageLogicError, match="no segment"):
            borrow_rate(D("0.9"), curve)


class TestCompounding:
    def test_no_elapsed_slots(self) -> None:
        assert approximate_compounded_interest(D("0.1"), 0) == 1

    def test_short_span_is_exact(self) -> None:
        base = D("0.1") / SLOTS_PER_YEAR
        assert approximate_compounded_interest(D("0.1"), 2) == (1 + base) ** 2

    def test_long_span_matches_exact_closely(self) -> None:
        base = D("0.1") / SLOTS_PER_YEAR
        exact = (1 + base) ** 1000
        approx = approximate_compounded_interest(D("0.1"), 1000)
        assert abs(approx - exact) < D("1e-20")
        assert approx > 1


class TestAccrual:
    def test_utilization(self, debt_reserve: Reserve) -> None:
        assert utilization(debt_reserve) == D("0.5")

    def test_utilization_without_supply(self, debt_reserve: Reserve) -> None:
        assert utilization(replace(debt_reserve, total_supply=D(0))) == 0

    def test_cumulative_rate_unchanged_at_update_slot(self, debt_reserve: Reserve) -> None:
        slot = debt_reserve.last_update_slot
        assert estimated_cumulative_borrow_rate(debt_reserve, slot) == 1

    def test_cumulative_rate_grows_with_slots(self, debt_reserve: Reserve) -> None:
        later = debt_reserve.last_update_slot + SLOTS_PER_YEAR // 12
        assert estimated_cumulative_borrow_rate(debt_reserve, later) > 1

    def test_ratio_without_borrow_is_one(self, debt_reserve: Reserve) -> None:
        assert obligation_accrual_ratio(debt_reserve, None, 10**9) == 1

    def test_ratio_for_stale_borrow(self, debt_reserve: Reserve) -> None:
        borrow = ObligationBorrow(D(100), cumulative_borrow_rate=D(1))
        later = debt_reserve.last_update_slot + 100_000
        ratio = obligation_accrual_ratio(debt_reserve, borrow, later)
        assert ratio == estimated_cumulative_borrow_rate(debt_reserve, later)
        assert ratio > 1

    def test_reserve_without_curve_is_named(self, debt_reserve: Reserve) -> None:
        bare = replace(debt_reserve, borrow_rate_curve=BorrowRateCurve())
        borrow = ObligationBorrow(D(10))
        with pytest.raises(LeverageLogicError, match="RESERVE_USDC"):
            obligation_accrual_ratio(bare, borrow, bare.last_update_slot + 10)
