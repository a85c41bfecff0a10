"""Probe → quote → commit → validate → build.

The amount to borrow depends on the swap price and the swap route depends on
the accounts the lending steps touch. The probe pass breaks the cycle: it
builds the lending side with an oracle-price estimate and a placeholder swap,
the quote is taken against the probed accounts, and the commit pass rebuilds
everything at the quoted price.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import ROUND_CEILING, Decimal

from ..calcs import from_lamports, to_lamports
from ..errors import InsufficientSwapOutput, LeverageLogicError, QuoteUnavailable
from ..interfaces import LeverageObserver, SwapBuilder, SwapQuoter
from ..models import (
    FlashLoanInfo,
    InstructionBundle,
    SimulationDetails,
    SwapInputs,
    SwapQuote,
    SwapSteps,
)
from ..observers import NullObserver
from ..snapshot.valuation import ObligationValuation
from ..validator import validate_projection
from .builder import StepSequence, dedupe, strip_budget_steps
from .context import OperationContext
from .steps import placeholder_swap
from .strategies import CollateralStrategy, LendingPlan

logger = logging.getLogger(__name__)

BPS = Decimal(10_000)


@dataclass(frozen=True)
class ProbeResult:
    """Lending-side plan at the estimated price and the accounts it touches."""

    plan: LendingPlan
    price_coll_to_debt: Decimal
    touched_accounts: list[str]


@dataclass(frozen=True)
class CommitResult:
    plan: LendingPlan
    quote: SwapQuote
    price_coll_to_debt: Decimal


def estimate_price(ctx: OperationContext) -> Decimal:
    """Oracle estimate of one collateral token in debt tokens."""
    if ctx.request.price_coll_to_debt is not None:
        return ctx.request.price_coll_to_debt
    return ctx.coll_reserve.oracle_price / ctx.debt_reserve.oracle_price


def price_from_quote(increases: bool, quote: SwapQuote) -> Decimal:
    """Convert the quoted output-per-input rate into a coll→debt price."""
    if quote.exchange_rate <= 0:
        raise QuoteUnavailable(f"Non-positive exchange rate {quote.exchange_rate}")
    if increases:
        # debt → collateral: the rate is collateral per debt token
        return Decimal(1) / quote.exchange_rate
    return quote.exchange_rate


def buffered_inputs(inputs: SwapInputs, buffer_bps: int) -> SwapInputs:
    """Inflate the quoted input so the committed amount stays inside the quote."""
    lamports = to_lamports(
        Decimal(inputs.input_lamports) * (1 + Decimal(buffer_bps) / BPS),
        0,
        ROUND_CEILING,
    )
    return replace(inputs, input_lamports=lamports)


def quoted_output_lamports(inputs: SwapInputs, quote: SwapQuote) -> int:
    """Output implied by the quoted rate, for routes that report none."""
    amount = from_lamports(inputs.input_lamports, inputs.input_decimals)
    return to_lamports(amount * quote.exchange_rate, inputs.output_decimals)


def flash_loan_info(plan: LendingPlan, seq: StepSequence) -> FlashLoanInfo:
    if len(seq.tickets) != 1:
        raise LeverageLogicError(f"Expected one flash borrow, found {len(seq.tickets)}")
    ticket = seq.tickets[0]
    return FlashLoanInfo(
        reserve=ticket.reserve,
        fee_rate=plan.flash_reserve.flash_loan_fee_rate,
        borrow_index=ticket.borrow_index,
        borrow_lamports=ticket.borrow_lamports,
        fee_lamports=ticket.fee_lamports,
        repay_lamports=ticket.repay_lamports,
    )


class LeveragePipeline:
    """Runs one operation against injected swap collaborators.

    Every phase is a separate method so it can be exercised on its own;
    ``run`` chains them and raises instead of returning a partial result.
    """

    def __init__(
        self,
        strategy: CollateralStrategy,
        quoter: SwapQuoter,
        swap_builders: list[SwapBuilder],
        observer: LeverageObserver | None = None,
    ) -> None:
        if not swap_builders:
            raise ValueError("At least one swap builder is required")
        self.strategy = strategy
        self.quoter = quoter
        self.swap_builders = swap_builders
        self.observer = observer or NullObserver()

    async def run(self, ctx: OperationContext) -> list[InstructionBundle]:
        probe = self.probe(ctx)
        quote = await self.quote(ctx, probe)
        commit = self.commit(ctx, probe, quote)
        valuation = self.validate(ctx, commit.plan)
        routes = await self.gather_routes(commit, probe.touched_accounts)
        return self.build(ctx, commit, routes, valuation)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def probe(self, ctx: OperationContext) -> ProbeResult:
        price = estimate_price(ctx)
        plan = self.strategy.plan(ctx, price)
        self.observer.on_calculation("probe", plan.calcs)
        seq = self.strategy.build_steps(ctx, plan, [placeholder_swap(plan.swap_inputs)])
        return ProbeResult(
            plan=plan,
            price_coll_to_debt=price,
            touched_accounts=seq.touched_accounts(),
        )

    async def quote(self, ctx: OperationContext, probe: ProbeResult) -> SwapQuote:
        inputs = buffered_inputs(
            probe.plan.swap_inputs, ctx.settings.engine.quote_buffer_bps
        )
        quote = await self.quoter.quote(inputs, probe.touched_accounts)
        self.observer.on_quote(inputs, quote)
        return quote

    def commit(
        self, ctx: OperationContext, probe: ProbeResult, quote: SwapQuote
    ) -> CommitResult:
        price = price_from_quote(probe.plan.increases, quote)
        plan = self.strategy.plan(ctx, price)
        if plan.increases != probe.plan.increases:
            raise LeverageLogicError(
                "Quoted price flipped the direction of the operation "
                f"(estimate {probe.price_coll_to_debt}, quoted {price})"
            )
        self.observer.on_calculation("commit", plan.calcs)
        logger.debug(
            "Committed at price %s (estimate %s)", price, probe.price_coll_to_debt
        )
        return CommitResult(plan=plan, quote=quote, price_coll_to_debt=price)

    def validate(self, ctx: OperationContext, plan: LendingPlan) -> ObligationValuation:
        return validate_projection(
            ctx.market,
            ctx.obligation,
            plan.deposit_deltas,
            plan.borrow_deltas,
            ctx.target_group,
        )

    async def gather_routes(
        self, commit: CommitResult, touched_accounts: list[str]
    ) -> list[SwapSteps]:
        results = await asyncio.gather(
            *(
                builder.build_swap_steps(
                    commit.plan.swap_inputs, touched_accounts, commit.quote
                )
                for builder in self.swap_builders
            )
        )
        routes = [route for batch in results for route in batch]
        if not routes:
            raise QuoteUnavailable("Swap providers returned no routes")
        return routes

    def build(
        self,
        ctx: OperationContext,
        commit: CommitResult,
        routes: list[SwapSteps],
        valuation: ObligationValuation,
    ) -> list[InstructionBundle]:
        plan = commit.plan
        required = plan.min_out_lamports
        bundles: list[InstructionBundle] = []
        best = 0

        for index, route in enumerate(routes):
            out = route.actual_output_lamports
            if out is None:
                out = quoted_output_lamports(plan.swap_inputs, route.quote)
            best = max(best, out)
            if out < required:
                self.observer.on_route_rejected(
                    f"output {out} below required {required}", index
                )
                continue

            seq = self.strategy.build_steps(ctx, plan, strip_budget_steps(route.steps))
            tables = dedupe(
                t for t in (ctx.market.lookup_table, *route.lookup_tables) if t
            )
            bundle = InstructionBundle(
                steps=seq.build(),
                lookup_tables=tuple(tables),
                flash_loan=flash_loan_info(plan, seq),
                swap_inputs=plan.swap_inputs,
                simulation=SimulationDetails(
                    flash_borrowed_lamports=plan.flash_borrow_lamports,
                    flash_repaid_lamports=plan.flash_repay_lamports,
                    swap_in_lamports=plan.swap_inputs.input_lamports,
                    swap_out_lamports=out,
                    projected_ltv=valuation.actual_ltv,
                    max_ltv=valuation.max_ltv,
                ),
                quote_payload=route.quote.payload,
            )
            self.observer.on_bundle(bundle)
            bundles.append(bundle)

        if not bundles:
            raise InsufficientSwapOutput(required, best)
        return bundles
