"""Obligation valuation at oracle prices, under a chosen elevation group."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..models import ElevationGroup, Market, Obligation, Reserve

ZERO = Decimal(0)


@dataclass(frozen=True)
class ObligationValuation:
    total_collateral_value: Decimal
    borrow_limit_value: Decimal
    total_debt_value: Decimal
    adjusted_debt_value: Decimal

    @property
    def max_ltv(self) -> Decimal:
        if self.total_collateral_value <= 0:
            return ZERO
        return self.borrow_limit_value / self.total_collateral_value

    @property
    def actual_ltv(self) -> Decimal:
        if self.total_collateral_value <= 0:
            return ZERO
        return self.adjusted_debt_value / self.total_collateral_value


def _active_group(market: Market, group_id: int) -> ElevationGroup | None:
    if group_id <= 0:
        return None
    return market.elevation_groups.get(group_id)


def reserve_ltv(reserve: Reserve, group: ElevationGroup | None) -> Decimal:
    if group is not None and reserve.address in group.collateral_reserves:
        return group.max_ltv
    return reserve.loan_to_value


def reserve_borrow_factor(reserve: Reserve, group: ElevationGroup | None) -> Decimal:
    # Inside an elevation group debt counts at face value.
    if group is not None and reserve.address == group.debt_reserve:
        return Decimal(1)
    return reserve.borrow_factor


def value_obligation(
    market: Market, obligation: Obligation, group_id: int | None = None
) -> ObligationValuation:
    """Value deposits and borrows; ``group_id`` defaults to the obligation's own."""
    group = _active_group(
        market, obligation.elevation_group if group_id is None else group_id
    )

    collateral = limit = ZERO
    for address, amount in obligation.deposits.items():
        reserve = market.reserve_by_address(address)
        value = amount * reserve.oracle_price
        collateral += value
        limit += value * reserve_ltv(reserve, group)

    debt = adjusted = ZERO
    for address, borrow in obligation.borrows.items():
        reserve = market.reserve_by_address(address)
        value = borrow.amount * reserve.oracle_price
        debt += value
        adjusted += value * reserve_borrow_factor(reserve, group)

    return ObligationValuation(
        total_collateral_value=collateral,
        borrow_limit_value=limit,
        total_debt_value=debt,
        adjusted_debt_value=adjusted,
    )
