"""Exception hierarchy for the leverage engine."""
from __future__ import annotations

from decimal import Decimal
from enum import Enum


class LeverageError(Exception):
    """Base class for every error raised by the engine."""


class InputError(LeverageError):
    """Request rejected before any network call."""


class QuoteUnavailable(LeverageError):
    """The injected quote or swap provider could not deliver."""


class InsufficientSwapOutput(QuoteUnavailable):
    """Every candidate route delivers less than the required minimum output."""

    def __init__(self, required_lamports: int, best_lamports: int) -> None:
        self.required_lamports = required_lamports
        self.best_lamports = best_lamports
        super().__init__(
            f"Best route yields {best_lamports} lamports, "
            f"{required_lamports} required to repay the flash loan"
        )


class ProjectedInvariantViolation(LeverageError):
    """The projected obligation would breach a protocol constraint."""


class LtvExceeded(ProjectedInvariantViolation):
    def __init__(self, actual_ltv: Decimal, max_ltv: Decimal) -> None:
        self.actual_ltv = actual_ltv
        self.max_ltv = max_ltv
        super().__init__(
            f"Projected LTV {actual_ltv:.6f} exceeds max LTV {max_ltv:.6f}"
        )


class IneligibleCondition(str, Enum):
    UNKNOWN_GROUP = "unknown_group"
    MULTIPLE_DEBT_RESERVES = "multiple_debt_reserves"
    DEBT_RESERVE_MISMATCH = "debt_reserve_mismatch"
    COLLATERAL_NOT_ELIGIBLE = "collateral_not_eligible"
    COLLATERAL_COUNT_EXCEEDED = "collateral_count_exceeded"


class ElevationGroupIneligible(ProjectedInvariantViolation):
    def __init__(
        self,
        condition: IneligibleCondition,
        group_id: int,
        reserves: tuple[str, ...] = (),
    ) -> None:
        self.condition = condition
        self.group_id = group_id
        self.reserves = reserves
        detail = f" ({', '.join(reserves)})" if reserves else ""
        super().__init__(
            f"Obligation not eligible for elevation group {group_id}: "
            f"{condition.value}{detail}"
        )


class LeverageLogicError(LeverageError):
    """Programmer error: a state that validated input should never reach."""
