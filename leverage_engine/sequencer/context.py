"""Everything one leverage operation reads, resolved once up front."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..config import BudgetConfig, EngineConfig, NATIVE_MINT, WrapPolicyConfig
from ..models import LeverageOption, LeverageRequest, Market, Obligation, Reserve, Step, Wallet


@dataclass(frozen=True)
class EngineSettings:
    engine: EngineConfig = field(default_factory=EngineConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    wrap_policy: WrapPolicyConfig = field(default_factory=WrapPolicyConfig)
    native_mint: str = NATIVE_MINT


@dataclass(frozen=True)
class OperationContext:
    request: LeverageRequest
    market: Market
    obligation: Obligation
    wallet: Wallet
    coll_reserve: Reserve
    debt_reserve: Reserve
    slippage_pct: Decimal
    target_group: int
    accrual_ratio: Decimal = Decimal(1)
    settings: EngineSettings = field(default_factory=EngineSettings)
    budget_steps: tuple[Step, ...] | None = None

    @property
    def slot(self) -> int:
        return self.market.slot

    @property
    def withdraw_slot(self) -> int:
        return self.market.slot - self.settings.engine.withdraw_slot_offset

    @property
    def selected_is_collateral(self) -> bool:
        return self.request.selected_mint == self.request.collateral_mint

    @property
    def is_closing(self) -> bool:
        return self.request.is_closing or self.request.option is LeverageOption.CLOSE

    @property
    def changes_group(self) -> bool:
        return self.target_group != self.obligation.elevation_group
