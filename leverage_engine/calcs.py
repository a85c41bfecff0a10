"""Position calculator — pure Decimal math for leverage operations.

Prices follow one convention throughout: ``price_coll_to_debt`` is the value
of one collateral token in debt tokens, ``price_debt_to_coll`` its inverse.
Slippage is a percentage (``0.5`` means 0.5 %), fees are ratios.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal

from .errors import InputError, LeverageLogicError
from .models import ZERO, LeverageOption


ONE = Decimal(1)
DEFAULT_INTEREST_MARGIN = Decimal("1.001")
CLOSING_TOLERANCE = Decimal("0.0001")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionDeltas:
    """Signed change of the (deposit, borrow) pair, in token units."""

    deposit: Decimal
    borrow: Decimal

    @property
    def is_increase(self) -> bool:
        return self.deposit >= 0 and self.borrow >= 0


@dataclass(frozen=True)
class DepositCalcs:
    collateral_to_deposit: Decimal
    debt_to_borrow: Decimal
    flash_borrow_amount: Decimal
    flash_borrow_is_debt: bool
    swap_in_amount: Decimal
    swap_out_amount: Decimal
    min_out_amount: Decimal


@dataclass(frozen=True)
class WithdrawCalcs:
    collateral_to_withdraw: Decimal
    repay_amount: Decimal
    flash_borrow_amount: Decimal
    swap_in_amount: Decimal
    swap_out_amount: Decimal
    min_out_amount: Decimal
    is_closing: bool = False


@dataclass(frozen=True)
class AdjustCalcs:
    deltas: PositionDeltas
    collateral_to_deposit: Decimal
    collateral_to_withdraw: Decimal
    debt_to_borrow: Decimal
    repay_amount: Decimal
    flash_borrow_amount: Decimal
    flash_borrow_is_debt: bool
    swap_in_amount: Decimal
    swap_out_amount: Decimal
    min_out_amount: Decimal

    @property
    def is_increase(self) -> bool:
        return self.deltas.is_increase


@dataclass(frozen=True)
class MultiplyEffects:
    total_deposited: Decimal
    total_borrowed: Decimal
    net_value: Decimal
    net_value_usd: Decimal
    ltv: Decimal
    is_closing: bool


# ---------------------------------------------------------------------------
# Unit helpers
# ---------------------------------------------------------------------------


def to_lamports(amount: Decimal, decimals: int, rounding: str = ROUND_DOWN) -> int:
    scaled = (amount * Decimal(10) ** decimals).quantize(ONE, rounding=rounding)
    return int(scaled)


def from_lamports(lamports: int, decimals: int) -> Decimal:
    return Decimal(lamports) / Decimal(10) ** decimals


def round_up(amount: Decimal, decimals: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_CEILING)


def flash_loan_fee_lamports(borrow_lamports: int, fee_rate: Decimal) -> int:
    """Exclusive flash-loan fee: rounded up, at least one base unit if charged."""
    if fee_rate <= 0 or borrow_lamports <= 0:
        return 0
    fee = int((Decimal(borrow_lamports) * fee_rate).to_integral_value(ROUND_CEILING))
    return max(fee, 1)


def with_borrow_fee(amount: Decimal, borrow_fee_rate: Decimal) -> Decimal:
    """Debt recorded on the obligation for a borrow, origination fee included."""
    return amount * (ONE + borrow_fee_rate)


def _slippage_factor(slippage_pct: Decimal) -> Decimal:
    return ONE + slippage_pct / 100


# ---------------------------------------------------------------------------
# Core relations
# ---------------------------------------------------------------------------


def net_position(deposit: Decimal, borrow: Decimal, price_coll_to_debt: Decimal) -> Decimal:
    """Equity of the position expressed in collateral tokens."""
    return deposit - borrow / price_coll_to_debt


def current_leverage(
    deposit: Decimal, borrow: Decimal, price_coll_to_debt: Decimal
) -> Decimal:
    net = net_position(deposit, borrow, price_coll_to_debt)
    if net <= 0:
        raise InputError(f"Position has no positive net value (net={net})")
    return deposit / net


def calc_borrow_amount(
    deposit: Decimal,
    target_leverage: Decimal,
    price_coll_to_debt: Decimal,
    flash_fee: Decimal,
) -> Decimal:
    """Debt tokens to borrow so that ``deposit`` ends at ``target_leverage``."""
    final_collateral = deposit * target_leverage
    debt_in_collateral = final_collateral - deposit
    return debt_in_collateral * price_coll_to_debt * (ONE + flash_fee)


def calc_adjust_amounts(
    deposit: Decimal,
    borrow: Decimal,
    target_leverage: Decimal,
    price_coll_to_debt: Decimal,
    flash_fee: Decimal,
) -> PositionDeltas:
    """Deltas moving the current pair to ``target_leverage`` at constant net."""
    net = net_position(deposit, borrow, price_coll_to_debt)
    target_deposit = net * target_leverage
    target_borrow = calc_borrow_amount(net, target_leverage, price_coll_to_debt, flash_fee)
    deltas = PositionDeltas(target_deposit - deposit, target_borrow - borrow)

    increasing = deltas.deposit >= 0 and deltas.borrow >= 0
    decreasing = deltas.deposit <= 0 and deltas.borrow <= 0
    if not (increasing or decreasing):
        raise LeverageLogicError(
            f"Adjust deltas have mixed signs: deposit {deltas.deposit}, "
            f"borrow {deltas.borrow}"
        )

    if deposit > 0 and net > 0:
        leverage = current_leverage(deposit, borrow, price_coll_to_debt)
        if target_leverage > leverage and not increasing:
            raise LeverageLogicError(
                f"Target leverage {target_leverage} above current {leverage} "
                "but deltas decrease the position"
            )
        if target_leverage < leverage and not decreasing:
            raise LeverageLogicError(
                f"Target leverage {target_leverage} below current {leverage} "
                "but deltas increase the position"
            )
    return deltas


def calc_withdraw_amounts(
    deposit: Decimal,
    borrow: Decimal,
    withdraw_amount: Decimal,
    price_coll_to_debt: Decimal,
    selected_is_collateral: bool,
) -> PositionDeltas:
    """Positive amounts to withdraw and repay, keeping leverage unchanged.

    A withdraw must leave some equity behind: amounts at or within
    ``CLOSING_TOLERANCE`` of the net position are rejected, since taking
    everything out is a close.
    """
    leverage = current_leverage(deposit, borrow, price_coll_to_debt)
    net = net_position(deposit, borrow, price_coll_to_debt)

    withdraw_in_collateral = (
        withdraw_amount if selected_is_collateral else withdraw_amount / price_coll_to_debt
    )
    if withdraw_in_collateral > net or _fuzzy_equal(withdraw_in_collateral, net):
        raise InputError(
            f"Withdraw of {withdraw_in_collateral} collateral reaches the net "
            f"position {net}; close the position instead"
        )
    remaining = net - withdraw_in_collateral
    target_deposit = remaining * leverage
    target_borrow = calc_borrow_amount(remaining, leverage, price_coll_to_debt, ZERO)
    return PositionDeltas(deposit - target_deposit, borrow - target_borrow)


def interest_accrual_ratio(old_cumulative: Decimal, new_cumulative: Decimal) -> Decimal:
    if old_cumulative <= 0 or new_cumulative <= old_cumulative:
        return ONE
    return new_cumulative / old_cumulative


def apply_interest_buffer(
    amount: Decimal,
    accrual_ratio: Decimal,
    margin: Decimal = DEFAULT_INTEREST_MARGIN,
    decimals: int = 9,
) -> Decimal:
    """Inflate a repay amount by accrued interest and a safety margin."""
    return round_up(amount * accrual_ratio * margin, decimals)


# ---------------------------------------------------------------------------
# Operation amounts
# ---------------------------------------------------------------------------


def deposit_leverage_calcs(
    amount: Decimal,
    selected_is_collateral: bool,
    target_leverage: Decimal,
    price_coll_to_debt: Decimal,
    flash_fee: Decimal,
    slippage_pct: Decimal,
    flash_borrow_debt: bool = False,
) -> DepositCalcs:
    """Amounts for opening or increasing a position with fresh funds.

    With ``flash_borrow_debt`` unset the collateral reserve is flash-borrowed
    and the swap (debt → collateral) must return enough to repay it. With it
    set the debt reserve is flash-borrowed, the swap runs first and the
    borrow repays the flash loan.
    """
    slip = _slippage_factor(slippage_pct)
    price_debt_to_coll = ONE / price_coll_to_debt
    net = amount if selected_is_collateral else amount * price_debt_to_coll
    target_deposit = net * target_leverage
    user_debt = ZERO if selected_is_collateral else amount

    if flash_borrow_debt:
        swap_out = target_deposit - net if selected_is_collateral else target_deposit
        swap_in = swap_out * price_coll_to_debt * slip
        flash = swap_in - user_debt
        return DepositCalcs(
            collateral_to_deposit=target_deposit,
            debt_to_borrow=flash * (ONE + flash_fee),
            flash_borrow_amount=flash,
            flash_borrow_is_debt=True,
            swap_in_amount=swap_in,
            swap_out_amount=swap_out,
            min_out_amount=swap_out,
        )

    flash = target_deposit - amount if selected_is_collateral else target_deposit
    repay = flash * (ONE + flash_fee)
    swap_in = repay * price_coll_to_debt * slip
    return DepositCalcs(
        collateral_to_deposit=target_deposit,
        debt_to_borrow=swap_in - user_debt,
        flash_borrow_amount=flash,
        flash_borrow_is_debt=False,
        swap_in_amount=swap_in,
        swap_out_amount=repay,
        min_out_amount=repay,
    )


def withdraw_leverage_calcs(
    amount: Decimal,
    selected_is_collateral: bool,
    deposited: Decimal,
    borrowed: Decimal,
    price_coll_to_debt: Decimal,
    flash_fee: Decimal,
    slippage_pct: Decimal,
    accrual_ratio: Decimal,
    debt_decimals: int,
    is_closing: bool = False,
    interest_margin: Decimal = DEFAULT_INTEREST_MARGIN,
) -> WithdrawCalcs:
    """Amounts for withdrawing ``amount`` at constant leverage, or closing.

    Closing takes the full deposited and borrowed amounts and never divides
    by the net position.
    """
    slip = _slippage_factor(slippage_pct)
    if is_closing:
        deltas = PositionDeltas(deposited, borrowed)
    else:
        deltas = calc_withdraw_amounts(
            deposited, borrowed, amount, price_coll_to_debt, selected_is_collateral
        )

    repay = apply_interest_buffer(deltas.borrow, accrual_ratio, interest_margin, debt_decimals)
    flash_repay = repay * (ONE + flash_fee)

    if selected_is_collateral:
        swap_in = flash_repay * slip / price_coll_to_debt
        if is_closing:
            withdrawn = deposited
        else:
            withdrawn = amount + swap_in
    else:
        swap_in = deltas.deposit if is_closing else deltas.deposit * (ONE + flash_fee)
        withdrawn = swap_in

    withdrawn = min(withdrawn, deposited)
    swap_in = min(swap_in, deposited)

    return WithdrawCalcs(
        collateral_to_withdraw=withdrawn,
        repay_amount=repay,
        flash_borrow_amount=repay,
        swap_in_amount=swap_in,
        swap_out_amount=swap_in * price_coll_to_debt / slip,
        min_out_amount=flash_repay,
        is_closing=is_closing,
    )


def adjust_increase_calcs(
    deltas: PositionDeltas,
    price_coll_to_debt: Decimal,
    flash_fee: Decimal,
    slippage_pct: Decimal,
    flash_borrow_debt: bool = False,
) -> AdjustCalcs:
    if not deltas.is_increase:
        raise LeverageLogicError("adjust_increase_calcs called with decreasing deltas")
    slip = _slippage_factor(slippage_pct)

    if flash_borrow_debt:
        swap_in = deltas.deposit * price_coll_to_debt * slip
        return AdjustCalcs(
            deltas=deltas,
            collateral_to_deposit=deltas.deposit,
            collateral_to_withdraw=ZERO,
            debt_to_borrow=swap_in * (ONE + flash_fee),
            repay_amount=ZERO,
            flash_borrow_amount=swap_in,
            flash_borrow_is_debt=True,
            swap_in_amount=swap_in,
            swap_out_amount=deltas.deposit,
            min_out_amount=deltas.deposit,
        )

    repay = deltas.deposit * (ONE + flash_fee)
    swap_in = repay * slip * price_coll_to_debt
    return AdjustCalcs(
        deltas=deltas,
        collateral_to_deposit=deltas.deposit,
        collateral_to_withdraw=ZERO,
        debt_to_borrow=swap_in,
        repay_amount=ZERO,
        flash_borrow_amount=deltas.deposit,
        flash_borrow_is_debt=False,
        swap_in_amount=swap_in,
        swap_out_amount=repay,
        min_out_amount=repay,
    )


def adjust_decrease_calcs(
    deltas: PositionDeltas,
    price_coll_to_debt: Decimal,
    flash_fee: Decimal,
    slippage_pct: Decimal,
    accrual_ratio: Decimal,
    debt_decimals: int,
    interest_margin: Decimal = DEFAULT_INTEREST_MARGIN,
) -> AdjustCalcs:
    if deltas.is_increase:
        raise LeverageLogicError("adjust_decrease_calcs called with increasing deltas")
    slip = _slippage_factor(slippage_pct)
    repay = apply_interest_buffer(abs(deltas.borrow), accrual_ratio, interest_margin, debt_decimals)
    swap_in = abs(deltas.deposit) * (ONE + flash_fee) * slip
    return AdjustCalcs(
        deltas=deltas,
        collateral_to_deposit=ZERO,
        collateral_to_withdraw=swap_in,
        debt_to_borrow=ZERO,
        repay_amount=repay,
        flash_borrow_amount=repay,
        flash_borrow_is_debt=True,
        swap_in_amount=swap_in,
        swap_out_amount=swap_in * price_coll_to_debt / slip,
        min_out_amount=repay * (ONE + flash_fee),
    )


# ---------------------------------------------------------------------------
# Display projection
# ---------------------------------------------------------------------------


def _fuzzy_equal(a: Decimal, b: Decimal, tolerance: Decimal = CLOSING_TOLERANCE) -> bool:
    return abs(a - b) <= tolerance


def calculate_multiply_effects(
    option: LeverageOption,
    *,
    deposited: Decimal,
    borrowed: Decimal,
    price_coll_usd: Decimal,
    price_debt_usd: Decimal,
    target_leverage: Decimal = ONE,
    deposit_amount: Decimal = ZERO,
    withdraw_amount: Decimal = ZERO,
    selected_is_collateral: bool = True,
    flash_fee: Decimal = ZERO,
    slippage_pct: Decimal = ZERO,
    debt_borrow_factor: Decimal = ONE,
) -> MultiplyEffects:
    """Projected totals, net value and LTV after the chosen operation."""
    price_coll_to_debt = price_coll_usd / price_debt_usd
    is_closing = False

    if option is LeverageOption.DEPOSIT:
        net = (
            deposit_amount
            if selected_is_collateral
            else deposit_amount / price_coll_to_debt
        )
        added_borrow = calc_borrow_amount(
            net, target_leverage, price_coll_to_debt, flash_fee
        ) * _slippage_factor(slippage_pct)
        total_deposited = deposited + net * target_leverage
        total_borrowed = borrowed + added_borrow
    elif option is LeverageOption.ADJUST:
        deltas = calc_adjust_amounts(
            deposited, borrowed, target_leverage, price_coll_to_debt, flash_fee
        )
        total_deposited = deposited + deltas.deposit
        total_borrowed = borrowed + deltas.borrow
    else:
        if option is LeverageOption.CLOSE:
            is_closing = True
        else:
            net = net_position(deposited, borrowed, price_coll_to_debt)
            withdraw_in_collateral = (
                withdraw_amount
                if selected_is_collateral
                else withdraw_amount / price_coll_to_debt
            )
            is_closing = withdraw_in_collateral > net or _fuzzy_equal(
                withdraw_in_collateral, net
            )
            if not is_closing:
                deltas = calc_withdraw_amounts(
                    deposited, borrowed, withdraw_amount, price_coll_to_debt,
                    selected_is_collateral,
                )
        if is_closing:
            total_deposited = total_borrowed = ZERO
        else:
            total_deposited = deposited - deltas.deposit
            total_borrowed = borrowed - deltas.borrow

    deposited_usd = total_deposited * price_coll_usd
    borrowed_usd = total_borrowed * price_debt_usd
    net_value_usd = deposited_usd - borrowed_usd
    ltv = borrowed_usd * debt_borrow_factor / deposited_usd if deposited_usd > 0 else ZERO
    return MultiplyEffects(
        total_deposited=total_deposited,
        total_borrowed=total_borrowed,
        net_value=net_value_usd / price_debt_usd,
        net_value_usd=net_value_usd,
        ltv=ltv,
        is_closing=is_closing,
    )
