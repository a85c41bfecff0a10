"""Rejects projected obligations the protocol would refuse."""
from __future__ import annotations

import logging
from decimal import Decimal

from .errors import ElevationGroupIneligible, IneligibleCondition, LtvExceeded
from .models import Market, Obligation
from .snapshot.valuation import ObligationValuation, value_obligation

logger = logging.getLogger(__name__)


def check_elevation_group(market: Market, obligation: Obligation, group_id: int) -> None:
    """Raise ``ElevationGroupIneligible`` if ``obligation`` cannot sit in ``group_id``."""
    if group_id <= 0:
        return

    group = market.elevation_groups.get(group_id)
    if group is None:
        raise ElevationGroupIneligible(IneligibleCondition.UNKNOWN_GROUP, group_id)

    debt_reserves = tuple(obligation.borrows)
    if len(debt_reserves) > 1:
        raise ElevationGroupIneligible(
            IneligibleCondition.MULTIPLE_DEBT_RESERVES, group_id, debt_reserves
        )
    if debt_reserves and debt_reserves[0] != group.debt_reserve:
        raise ElevationGroupIneligible(
            IneligibleCondition.DEBT_RESERVE_MISMATCH, group_id, debt_reserves
        )

    outside = tuple(r for r in obligation.deposits if r not in group.collateral_reserves)
    if outside:
        raise ElevationGroupIneligible(
            IneligibleCondition.COLLATERAL_NOT_ELIGIBLE, group_id, outside
        )
    if len(obligation.deposits) > group.max_collateral_reserve_count:
        raise ElevationGroupIneligible(
            IneligibleCondition.COLLATERAL_COUNT_EXCEEDED,
            group_id,
            tuple(obligation.deposits),
        )


def check_ltv(valuation: ObligationValuation) -> None:
    if valuation.total_collateral_value <= 0:
        return
    if valuation.actual_ltv > valuation.max_ltv:
        raise LtvExceeded(valuation.actual_ltv, valuation.max_ltv)


def validate_projection(
    market: Market,
    obligation: Obligation,
    deposit_deltas: dict[str, Decimal],
    borrow_deltas: dict[str, Decimal],
    group_id: int,
) -> ObligationValuation:
    """Project the deltas onto ``obligation`` and check it under ``group_id``.

    Elevation-group eligibility is checked before any LTV figure is computed.
    Returns the projected valuation for display.
    """
    projected = obligation.projected(deposit_deltas, borrow_deltas, elevation_group=group_id)
    check_elevation_group(market, projected, group_id)
    valuation = value_obligation(market, projected, group_id)
    check_ltv(valuation)
    logger.debug(
        "Projected obligation %s: LTV %s / max %s",
        obligation.address,
        valuation.actual_ltv,
        valuation.max_ltv,
    )
    return valuation
