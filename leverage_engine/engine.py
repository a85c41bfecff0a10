"""Engine façade — loads snapshots, resolves the request, runs the pipeline."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any

from .calcs import MultiplyEffects, calculate_multiply_effects
from .config import AppConfig
from .errors import InputError
from .interfaces import LeverageObserver, SnapshotProvider, SwapBuilder, SwapQuoter
from .models import (
    InstructionBundle,
    LeverageOption,
    LeverageRequest,
    Market,
    Obligation,
    ObligationKind,
    Step,
)
from .observers import LoggingObserver
from .sequencer import EngineSettings, LeveragePipeline, OperationContext, strategy_for
from .snapshot import FileSnapshotProvider, RpcSnapshotProvider
from .snapshot.rates import obligation_accrual_ratio
from .swap import AggregatorSwapClient

logger = logging.getLogger(__name__)

SUPPORTED_OBLIGATION_KINDS = (ObligationKind.MULTIPLY, ObligationKind.LEVERAGE)

# Snapshot provider factories keyed by ``snapshot.provider``.
_SNAPSHOT_FACTORIES: dict[str, Any] = {
    "rpc": lambda cfg: RpcSnapshotProvider(cfg),
    "file": lambda cfg: FileSnapshotProvider(cfg.path),
}


def check_request(request: LeverageRequest) -> None:
    """Reject malformed requests before any network call."""
    if request.collateral_mint == request.debt_mint:
        raise InputError("Collateral and debt mints must differ")
    if request.obligation_kind not in SUPPORTED_OBLIGATION_KINDS:
        raise InputError(
            f"Obligation kind {request.obligation_kind!r} is not a leverage kind"
        )
    option = request.option
    sized = option in (LeverageOption.DEPOSIT, LeverageOption.WITHDRAW)
    if sized and request.selected_mint not in (request.collateral_mint, request.debt_mint):
        raise InputError(
            f"Selected mint {request.selected_mint!r} is neither collateral nor debt"
        )
    if request.slippage_pct is not None and not 0 <= request.slippage_pct < 100:
        raise InputError(f"Slippage {request.slippage_pct}% out of range")

    if sized and not request.is_closing:
        if request.amount <= 0:
            raise InputError(f"Amount must be positive, got {request.amount}")
    if option is LeverageOption.DEPOSIT and request.target_leverage <= 1:
        raise InputError(f"Target leverage must exceed 1, got {request.target_leverage}")
    if option is LeverageOption.ADJUST and request.target_leverage < 1:
        raise InputError(f"Target leverage must be at least 1, got {request.target_leverage}")


def target_group(request: LeverageRequest, obligation: Obligation) -> int:
    """Requested elevation group; ``None`` or ``0`` keep the current one."""
    if request.elevation_group:
        return request.elevation_group
    return obligation.elevation_group


class LeverageEngine:
    """Builds instruction bundles for leverage requests."""

    def __init__(
        self,
        config: AppConfig,
        snapshots: SnapshotProvider | None = None,
        quoter: SwapQuoter | None = None,
        swap_builders: list[SwapBuilder] | None = None,
        observer: LeverageObserver | None = None,
    ) -> None:
        self._config = config
        if snapshots is None:
            factory = _SNAPSHOT_FACTORIES.get(config.snapshot.provider)
            if factory is None:
                raise ValueError(f"Unknown snapshot provider '{config.snapshot.provider}'")
            snapshots = factory(config.snapshot)
        self._snapshots = snapshots
        self._quoter = quoter
        self._swap_builders = swap_builders
        self._observer = observer or LoggingObserver()
        self._settings = EngineSettings(
            engine=config.engine,
            budget=config.budget,
            wrap_policy=config.wrap_policy,
            native_mint=config.tokens.native_mint,
        )

    def resolve_market(self, market: str) -> str:
        """Accept a configured market label or a raw address."""
        return self._config.markets.get(market, market)

    async def load_context(
        self,
        request: LeverageRequest,
        market: str,
        budget_steps: list[Step] | None = None,
    ) -> OperationContext:
        check_request(request)
        market_snapshot = await self._snapshots.load_market(self.resolve_market(market))
        coll = market_snapshot.reserve_by_mint(request.collateral_mint)
        debt = market_snapshot.reserve_by_mint(request.debt_mint)

        loaded, wallet = await asyncio.gather(
            self._snapshots.load_obligation(request.obligation_address),
            self._snapshots.load_wallet(request.owner),
        )
        obligation = self._resolve_obligation(request, market_snapshot, loaded)

        slippage = request.slippage_pct
        if slippage is None:
            slippage = self._config.engine.default_slippage_pct

        return OperationContext(
            request=request,
            market=market_snapshot,
            obligation=obligation,
            wallet=wallet,
            coll_reserve=coll,
            debt_reserve=debt,
            slippage_pct=slippage,
            target_group=target_group(request, obligation),
            accrual_ratio=obligation_accrual_ratio(
                debt, obligation.borrows.get(debt.address), market_snapshot.slot
            ),
            settings=self._settings,
            budget_steps=tuple(budget_steps) if budget_steps is not None else None,
        )

    def _resolve_obligation(
        self,
        request: LeverageRequest,
        market: Market,
        loaded: Obligation | None,
    ) -> Obligation:
        if loaded is None:
            if request.option is not LeverageOption.DEPOSIT:
                raise InputError(
                    f"Obligation {request.obligation_address} does not exist; "
                    f"cannot {request.option.value}"
                )
            return Obligation.empty(
                request.obligation_address, request.owner, request.obligation_kind
            )

        if loaded.kind not in SUPPORTED_OBLIGATION_KINDS:
            raise InputError(f"Obligation {loaded.address} has kind {loaded.kind!r}")
        if request.option is not LeverageOption.DEPOSIT:
            coll = market.reserve_by_mint(request.collateral_mint)
            if loaded.deposited(coll.address) <= 0:
                raise InputError(
                    f"Obligation {loaded.address} has no {coll.symbol or coll.mint} deposit"
                )
        return loaded

    async def build(
        self,
        request: LeverageRequest,
        market: str,
        budget_steps: list[Step] | None = None,
    ) -> list[InstructionBundle]:
        """Return one bundle per acceptable candidate route."""
        ctx = await self.load_context(request, market, budget_steps)
        logger.info(
            "%s on obligation %s (%s -> %s), target group %d",
            request.option.value,
            request.obligation_address,
            ctx.coll_reserve.symbol,
            ctx.debt_reserve.symbol,
            ctx.target_group,
        )

        quoter = self._quoter
        builders = self._swap_builders
        if quoter is None or builders is None:
            client = AggregatorSwapClient(self._config.swap, user=request.owner)
            quoter = quoter or client
            builders = builders or [client]

        pipeline = LeveragePipeline(
            strategy_for(request.collateral_kind),
            quoter,
            builders,
            self._observer,
        )
        return await pipeline.run(ctx)

    async def multiply_effects(
        self, request: LeverageRequest, market: str
    ) -> MultiplyEffects:
        """Display projection of ``request`` at oracle prices, no quote taken."""
        ctx = await self.load_context(request, market)
        coll, debt = ctx.coll_reserve, ctx.debt_reserve
        option = LeverageOption.CLOSE if ctx.is_closing else request.option
        return calculate_multiply_effects(
            option,
            deposited=ctx.obligation.deposited(coll.address),
            borrowed=ctx.obligation.borrowed(debt.address),
            price_coll_usd=coll.oracle_price,
            price_debt_usd=debt.oracle_price,
            target_leverage=request.target_leverage or Decimal(1),
            deposit_amount=request.amount if option is LeverageOption.DEPOSIT else Decimal(0),
            withdraw_amount=request.amount if option is LeverageOption.WITHDRAW else Decimal(0),
            selected_is_collateral=ctx.selected_is_collateral,
            flash_fee=coll.flash_loan_fee_rate,
            slippage_pct=ctx.slippage_pct,
            debt_borrow_factor=debt.borrow_factor,
        )
