"""Collateral strategies — how amounts map onto flash loan, lending and swap.

The set is closed: ``DirectCollateral`` flash-borrows the collateral reserve
and swaps after the lending section; ``WrappedCollateral`` flash-borrows the
debt reserve and swaps first, because its collateral only exists once the
swap has produced it. Withdraw-side operations are the same for both.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from typing import ClassVar

from ..calcs import (
    AdjustCalcs,
    DepositCalcs,
    WithdrawCalcs,
    adjust_decrease_calcs,
    adjust_increase_calcs,
    calc_adjust_amounts,
    deposit_leverage_calcs,
    flash_loan_fee_lamports,
    from_lamports,
    to_lamports,
    with_borrow_fee,
    withdraw_leverage_calcs,
)
from ..errors import InputError
from ..models import (
    U64_MAX,
    ZERO,
    CollateralKind,
    LeverageOption,
    Reserve,
    Step,
    SwapInputs,
)
from . import steps
from .builder import Section, StepSequence, dedupe
from .context import OperationContext

NATIVE_DECIMALS = 9


@dataclass(frozen=True)
class LendingPlan:
    """Lamport-exact amounts for one pass, plus the projected deltas."""

    option: LeverageOption
    calcs: DepositCalcs | WithdrawCalcs | AdjustCalcs
    increases: bool
    flash_reserve: Reserve
    flash_borrow_lamports: int
    flash_fee_lamports: int
    swap_inputs: SwapInputs
    deposit_lamports: int = 0
    borrow_lamports: int = 0
    repay_lamports: int = 0
    withdraw_lamports: int = 0
    wrap_lamports: int = 0
    close_native_account: bool = False
    deposit_deltas: dict[str, Decimal] = field(default_factory=dict)
    borrow_deltas: dict[str, Decimal] = field(default_factory=dict)

    @property
    def flash_repay_lamports(self) -> int:
        return self.flash_borrow_lamports + self.flash_fee_lamports

    @property
    def min_out_lamports(self) -> int:
        return self.swap_inputs.min_out_lamports or 0


class CollateralStrategy:
    kind: ClassVar[CollateralKind]
    swap_before_lending: ClassVar[bool] = False

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, ctx: OperationContext, price_coll_to_debt: Decimal) -> LendingPlan:
        option = ctx.request.option
        if option is LeverageOption.DEPOSIT:
            return self.plan_deposit(ctx, price_coll_to_debt)
        if option is LeverageOption.ADJUST:
            return self.plan_adjust(ctx, price_coll_to_debt)
        return self.plan_withdraw(ctx, price_coll_to_debt)

    def plan_deposit(self, ctx: OperationContext, price_coll_to_debt: Decimal) -> LendingPlan:
        req = ctx.request
        calcs = deposit_leverage_calcs(
            amount=req.amount,
            selected_is_collateral=ctx.selected_is_collateral,
            target_leverage=req.target_leverage,
            price_coll_to_debt=price_coll_to_debt,
            flash_fee=self._increase_flash_reserve(ctx).flash_loan_fee_rate,
            slippage_pct=ctx.slippage_pct,
            flash_borrow_debt=self.swap_before_lending,
        )
        if ctx.selected_is_collateral:
            return self._plan_increase(ctx, calcs, user_coll=req.amount, user_debt=ZERO)
        return self._plan_increase(ctx, calcs, user_coll=ZERO, user_debt=req.amount)

    def plan_withdraw(self, ctx: OperationContext, price_coll_to_debt: Decimal) -> LendingPlan:
        req = ctx.request
        coll, debt = ctx.coll_reserve, ctx.debt_reserve
        calcs = withdraw_leverage_calcs(
            amount=req.amount,
            selected_is_collateral=ctx.selected_is_collateral,
            deposited=ctx.obligation.deposited(coll.address),
            borrowed=ctx.obligation.borrowed(debt.address),
            price_coll_to_debt=price_coll_to_debt,
            flash_fee=debt.flash_loan_fee_rate,
            slippage_pct=ctx.slippage_pct,
            accrual_ratio=ctx.accrual_ratio,
            debt_decimals=debt.decimals,
            is_closing=ctx.is_closing,
            interest_margin=ctx.settings.engine.interest_margin,
        )
        payout = req.amount if ctx.selected_is_collateral and not ctx.is_closing else ZERO
        return self._plan_decrease(
            ctx, calcs, price_coll_to_debt, payout_coll=payout, closing=ctx.is_closing
        )

    def plan_adjust(self, ctx: OperationContext, price_coll_to_debt: Decimal) -> LendingPlan:
        coll, debt = ctx.coll_reserve, ctx.debt_reserve
        increase_fee = self._increase_flash_reserve(ctx).flash_loan_fee_rate
        deltas = calc_adjust_amounts(
            deposit=ctx.obligation.deposited(coll.address),
            borrow=ctx.obligation.borrowed(debt.address),
            target_leverage=ctx.request.target_leverage,
            price_coll_to_debt=price_coll_to_debt,
            flash_fee=increase_fee,
        )
        if deltas.is_increase:
            calcs = adjust_increase_calcs(
                deltas,
                price_coll_to_debt,
                increase_fee,
                ctx.slippage_pct,
                flash_borrow_debt=self.swap_before_lending,
            )
            return self._plan_increase(ctx, calcs, user_coll=ZERO, user_debt=ZERO)

        calcs = adjust_decrease_calcs(
            deltas,
            price_coll_to_debt,
            debt.flash_loan_fee_rate,
            ctx.slippage_pct,
            ctx.accrual_ratio,
            debt.decimals,
            ctx.settings.engine.interest_margin,
        )
        return self._plan_decrease(
            ctx, calcs, price_coll_to_debt, payout_coll=ZERO, closing=False
        )

    def _increase_flash_reserve(self, ctx: OperationContext) -> Reserve:
        return ctx.debt_reserve if self.swap_before_lending else ctx.coll_reserve

    def _plan_increase(
        self,
        ctx: OperationContext,
        calcs: DepositCalcs | AdjustCalcs,
        user_coll: Decimal,
        user_debt: Decimal,
    ) -> LendingPlan:
        coll, debt = ctx.coll_reserve, ctx.debt_reserve
        user_coll_l = to_lamports(user_coll, coll.decimals)
        user_debt_l = to_lamports(user_debt, debt.decimals)
        swap_in_l = to_lamports(calcs.swap_in_amount, debt.decimals, ROUND_CEILING)

        if calcs.flash_borrow_is_debt:
            flash_reserve = debt
            flash_l = swap_in_l - user_debt_l
            fee_l = flash_loan_fee_lamports(flash_l, debt.flash_loan_fee_rate)
            borrow_l = flash_l + fee_l
            min_out_l = to_lamports(calcs.min_out_amount, coll.decimals)
            deposit_l = user_coll_l + min_out_l
        else:
            flash_reserve = coll
            flash_l = to_lamports(calcs.flash_borrow_amount, coll.decimals, ROUND_CEILING)
            fee_l = flash_loan_fee_lamports(flash_l, coll.flash_loan_fee_rate)
            borrow_l = swap_in_l - user_debt_l
            min_out_l = max(
                to_lamports(calcs.min_out_amount, coll.decimals, ROUND_CEILING),
                flash_l + fee_l,
            )
            deposit_l = user_coll_l + flash_l

        if flash_l <= 0 or borrow_l <= 0:
            raise InputError("Operation too small to require a flash loan and a borrow")

        wrap_l = 0
        if ctx.request.selected_mint == ctx.settings.native_mint:
            wrap_l = user_coll_l or user_debt_l

        return LendingPlan(
            option=ctx.request.option,
            calcs=calcs,
            increases=True,
            flash_reserve=flash_reserve,
            flash_borrow_lamports=flash_l,
            flash_fee_lamports=fee_l,
            swap_inputs=SwapInputs(
                input_lamports=swap_in_l,
                input_mint=debt.mint,
                output_mint=coll.mint,
                input_decimals=debt.decimals,
                output_decimals=coll.decimals,
                min_out_lamports=min_out_l,
            ),
            deposit_lamports=deposit_l,
            borrow_lamports=borrow_l,
            wrap_lamports=wrap_l,
            deposit_deltas={coll.address: from_lamports(deposit_l, coll.decimals)},
            borrow_deltas={
                debt.address: with_borrow_fee(
                    from_lamports(borrow_l, debt.decimals), debt.borrow_fee_rate
                )
            },
        )

    def _plan_decrease(
        self,
        ctx: OperationContext,
        calcs: WithdrawCalcs | AdjustCalcs,
        price_coll_to_debt: Decimal,
        payout_coll: Decimal,
        closing: bool,
    ) -> LendingPlan:
        coll, debt = ctx.coll_reserve, ctx.debt_reserve
        deposited = ctx.obligation.deposited(coll.address)

        flash_l = to_lamports(calcs.flash_borrow_amount, debt.decimals, ROUND_CEILING)
        fee_l = flash_loan_fee_lamports(flash_l, debt.flash_loan_fee_rate)
        deposited_l = to_lamports(deposited, coll.decimals)
        payout_l = to_lamports(payout_coll, coll.decimals)
        wanted_swap_in_l = to_lamports(calcs.swap_in_amount, coll.decimals, ROUND_CEILING)
        swap_in_l = min(wanted_swap_in_l, deposited_l - payout_l)
        if flash_l <= 0 or swap_in_l <= 0:
            raise InputError("Operation too small to require a flash loan and a swap")

        withdraw_l = payout_l + swap_in_l
        min_out_l = max(
            to_lamports(calcs.min_out_amount, debt.decimals, ROUND_CEILING),
            flash_l + fee_l,
        )
        if swap_in_l < wanted_swap_in_l:
            # Capped by the deposit: the remaining collateral must still
            # cover the flash repayment at this price.
            swap_value_l = to_lamports(
                from_lamports(swap_in_l, coll.decimals) * price_coll_to_debt,
                debt.decimals,
            )
            if swap_value_l < min_out_l:
                raise InputError(
                    f"Collateral left to swap ({swap_in_l} lamports, worth "
                    f"{swap_value_l}) cannot repay the flash loan ({min_out_l})"
                )

        native_debt = debt.mint == ctx.settings.native_mint
        wrap_l = 0
        if native_debt:
            policy = ctx.settings.wrap_policy
            wrap_amount = min(ctx.wallet.native_balance * policy.balance_fraction, policy.max_amount)
            wrap_l = to_lamports(wrap_amount, NATIVE_DECIMALS)

        if closing:
            deposit_delta = -deposited
            borrow_delta = -ctx.obligation.borrowed(debt.address)
        else:
            deposit_delta = -from_lamports(withdraw_l, coll.decimals)
            borrow_delta = -from_lamports(flash_l, debt.decimals)

        return LendingPlan(
            option=ctx.request.option,
            calcs=calcs,
            increases=False,
            flash_reserve=debt,
            flash_borrow_lamports=flash_l,
            flash_fee_lamports=fee_l,
            swap_inputs=SwapInputs(
                input_lamports=swap_in_l,
                input_mint=coll.mint,
                output_mint=debt.mint,
                input_decimals=coll.decimals,
                output_decimals=debt.decimals,
                min_out_lamports=min_out_l,
            ),
            repay_lamports=U64_MAX if closing else flash_l,
            withdraw_lamports=U64_MAX if closing else withdraw_l,
            wrap_lamports=wrap_l,
            close_native_account=native_debt,
            deposit_deltas={coll.address: deposit_delta},
            borrow_deltas={debt.address: borrow_delta},
        )

    # ------------------------------------------------------------------
    # Step assembly
    # ------------------------------------------------------------------

    def build_steps(
        self, ctx: OperationContext, plan: LendingPlan, swap_steps: list[Step]
    ) -> StepSequence:
        if plan.option is LeverageOption.DEPOSIT:
            return self.build_deposit_steps(ctx, plan, swap_steps)
        if plan.option is LeverageOption.ADJUST:
            return self.build_adjust_steps(ctx, plan, swap_steps)
        return self.build_withdraw_steps(ctx, plan, swap_steps)

    def build_deposit_steps(
        self, ctx: OperationContext, plan: LendingPlan, swap_steps: list[Step]
    ) -> StepSequence:
        return self._assemble(ctx, plan, self._increase_lending(ctx, plan), swap_steps)

    def build_withdraw_steps(
        self, ctx: OperationContext, plan: LendingPlan, swap_steps: list[Step]
    ) -> StepSequence:
        return self._assemble(ctx, plan, self._decrease_lending(ctx, plan), swap_steps)

    def build_adjust_steps(
        self, ctx: OperationContext, plan: LendingPlan, swap_steps: list[Step]
    ) -> StepSequence:
        if plan.increases:
            lending = self._increase_lending(ctx, plan)
        else:
            lending = self._decrease_lending(ctx, plan)
        return self._assemble(ctx, plan, lending, swap_steps)

    def _assemble(
        self,
        ctx: OperationContext,
        plan: LendingPlan,
        lending: list[Step],
        swap_steps: list[Step],
    ) -> StepSequence:
        market, owner = ctx.market, ctx.request.owner
        swap_first = plan.increases and self.swap_before_lending
        seq = StepSequence(swap_before_lending=swap_first)

        seq.add(Section.BUDGET, *self._budget_steps(ctx))
        seq.add(Section.SETUP, *self._setup_steps(ctx, plan))
        ticket = seq.flash_borrow(
            steps.flash_borrow(market, owner, plan.flash_reserve, plan.flash_borrow_lamports),
            plan.flash_reserve.address,
            plan.flash_borrow_lamports,
            plan.flash_fee_lamports,
        )
        if swap_first:
            seq.add(Section.SWAP, *swap_steps)
            seq.add(Section.LENDING, *lending)
        else:
            seq.add(Section.LENDING, *lending)
            seq.add(Section.SWAP, *swap_steps)
        seq.flash_repay(
            ticket,
            steps.flash_repay(market, owner, plan.flash_reserve, plan.flash_repay_lamports),
        )
        if plan.close_native_account:
            seq.add(
                Section.CLEANUP,
                steps.close_token_account(owner, ctx.settings.native_mint),
            )
        return seq

    def _budget_steps(self, ctx: OperationContext) -> list[Step]:
        if ctx.budget_steps is not None:
            return list(ctx.budget_steps)
        budget = ctx.settings.budget
        result = [steps.compute_unit_limit(budget.compute_unit_limit)]
        if budget.compute_unit_price > 0:
            result.append(steps.compute_unit_price(budget.compute_unit_price))
        return result

    def _setup_steps(self, ctx: OperationContext, plan: LendingPlan) -> list[Step]:
        owner = ctx.request.owner
        result: list[Step] = []
        for reserve in (ctx.coll_reserve, ctx.debt_reserve):
            if reserve.mint not in ctx.wallet.token_accounts:
                result.append(
                    steps.create_token_account(owner, reserve.mint, reserve.token_program)
                )
        if not ctx.obligation.exists:
            result.append(
                steps.init_obligation(
                    ctx.market,
                    ctx.obligation.address,
                    owner,
                    int(ctx.request.obligation_kind),
                )
            )
        if plan.wrap_lamports > 0:
            result.append(
                steps.wrap_native(owner, ctx.settings.native_mint, plan.wrap_lamports)
            )
        return result

    def _obligation_reserves(self, ctx: OperationContext) -> list[str]:
        return dedupe(
            [
                *ctx.obligation.deposits,
                ctx.coll_reserve.address,
                *ctx.obligation.borrows,
                ctx.debt_reserve.address,
            ]
        )

    def _refresh(self, ctx: OperationContext, slot: int) -> list[Step]:
        reserves = self._obligation_reserves(ctx)
        result = [
            steps.refresh_reserve(ctx.market, ctx.market.reserve_by_address(address), slot)
            for address in reserves
        ]
        result.append(
            steps.refresh_obligation(ctx.market, ctx.obligation.address, reserves, slot)
        )
        return result

    def _elevation_step(self, ctx: OperationContext) -> Step:
        return steps.request_elevation_group(
            ctx.market,
            ctx.obligation.address,
            ctx.request.owner,
            ctx.target_group,
            self._obligation_reserves(ctx),
        )

    def _increase_lending(self, ctx: OperationContext, plan: LendingPlan) -> list[Step]:
        market, owner, obligation = ctx.market, ctx.request.owner, ctx.obligation.address
        result = self._refresh(ctx, ctx.slot)
        result.append(
            steps.deposit(market, obligation, owner, ctx.coll_reserve, plan.deposit_lamports)
        )
        if ctx.changes_group:
            result.append(self._elevation_step(ctx))
        result.extend(self._refresh(ctx, ctx.slot))
        result.append(
            steps.borrow(market, obligation, owner, ctx.debt_reserve, plan.borrow_lamports)
        )
        return result

    def _decrease_lending(self, ctx: OperationContext, plan: LendingPlan) -> list[Step]:
        market, owner, obligation = ctx.market, ctx.request.owner, ctx.obligation.address
        result = self._refresh(ctx, ctx.slot)
        result.append(
            steps.repay(market, obligation, owner, ctx.debt_reserve, plan.repay_lamports)
        )
        result.extend(self._refresh(ctx, ctx.withdraw_slot))
        result.append(
            steps.withdraw(market, obligation, owner, ctx.coll_reserve, plan.withdraw_lamports)
        )
        if ctx.changes_group and not ctx.is_closing:
            result.append(self._elevation_step(ctx))
        return result


class DirectCollateral(CollateralStrategy):
    kind = CollateralKind.DIRECT
    swap_before_lending = False


class WrappedCollateral(CollateralStrategy):
    kind = CollateralKind.WRAPPED
    swap_before_lending = True


STRATEGIES: dict[CollateralKind, CollateralStrategy] = {
    CollateralKind.DIRECT: DirectCollateral(),
    CollateralKind.WRAPPED: WrappedCollateral(),
}


def strategy_for(kind: CollateralKind) -> CollateralStrategy:
    return STRATEGIES[kind]
