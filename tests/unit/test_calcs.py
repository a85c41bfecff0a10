"""Unit tests for the position calculator."""
from __future__ import annotations

from decimal import Decimal

import pytest

from leverage_engine.calcs import (
    PositionDeltas,
    adjust_decrease_calcs,
    adjust_increase_calcs,
    apply_interest_buffer,
    calc_adjust_amounts,
    calc_borrow_amount,
    calc_withdraw_amounts,
    calculate_multiply_effects,
    current_leverage,
    deposit_leverage_calcs,
    flash_loan_fee_lamports,
    interest_accrual_ratio,
    to_lamports,
    withdraw_leverage_calcs,
)
from leverage_engine.errors import InputError, LeverageLogicError
from leverage_engine.models import LeverageOption

D = Decimal
FEE = D("0.001")


class TestUnitHelpers:
    def test_to_lamports_rounds_down_by_default(self) -> None:
        assert to_lamports(D("1.0000000019"), 9) == 1_000_000_001

    def test_flash_fee_rounds_up(self) -> None:
        assert flash_loan_fee_lamports(1500, FEE) == 2

    def test_flash_fee_minimum_one_unit(self) -> None:
        assert flash_loan_fee_lamports(1, FEE) == 1

    def test_flash_fee_zero_rate(self) -> None:
        assert flash_loan_fee_lamports(1_000_000, D(0)) == 0

    def test_flash_fee_exact(self) -> None:
        assert flash_loan_fee_lamports(2_000_000_000, FEE) == 2_000_000

    def test_interest_buffer(self) -> None:
        assert apply_interest_buffer(D(100), D("1.01"), D("1.001"), 6) == D("101.101000")

    def test_interest_buffer_rounds_up(self) -> None:
        assert apply_interest_buffer(D(1), D(1), D("1.001"), 2) == D("1.01")

    def test_accrual_ratio_never_below_one(self) -> None:
        assert interest_accrual_ratio(D("1.2"), D("1.1")) == 1
        assert interest_accrual_ratio(D("1.0"), D("1.05")) == D("1.05")


class TestCoreRelations:
    def test_borrow_amount_worked_example(self) -> None:
        # 100 collateral at 3x, price 1, fee 0.1 %
        assert calc_borrow_amount(D(100), D(3), D(1), FEE) == D("200.2")

    def test_current_leverage(self) -> None:
        assert current_leverage(D(3), D(300), D(150)) == D(3)

    def test_current_leverage_requires_positive_net(self) -> None:
        with pytest.raises(InputError):
            current_leverage(D(2), D(300), D(150))

    @pytest.mark.parametrize(
        ("deposit", "borrow"),
        [(D(200), D(100)), (D(500), D(300))],
    )
    def test_adjust_converges_from_any_state(self, deposit: Decimal, borrow: Decimal) -> None:
        deltas = calc_adjust_amounts(deposit, borrow, D(2), D(1), FEE)
        final_deposit = deposit + deltas.deposit
        final_borrow = borrow + deltas.borrow
        net = deposit - borrow
        assert final_deposit == net * 2
        assert final_borrow == calc_borrow_amount(net, D(2), D(1), FEE)

    def test_adjust_increase_has_positive_deltas(self) -> None:
        deltas = calc_adjust_amounts(D(200), D(100), D(3), D(1), FEE)
        assert deltas.is_increase
        assert deltas.deposit == D(100)

    def test_adjust_decrease_has_negative_deltas(self) -> None:
        deltas = calc_adjust_amounts(D(300), D(200), D(2), D(1), D(0))
        assert deltas == PositionDeltas(D(-100), D(-100))
        assert not deltas.is_increase

    def test_adjust_mixed_signs_raise(self) -> None:
        # Lower target but a fee large enough to grow the borrow.
        with pytest.raises(LeverageLogicError, match="mixed signs"):
            calc_adjust_amounts(D(100), D(50), D("1.99"), D(1), D("0.02"))

    def test_withdraw_keeps_leverage(self) -> None:
        deltas = calc_withdraw_amounts(D(300), D(200), D(10), D(1), True)
        assert deltas == PositionDeltas(D(30), D(20))

    def test_withdraw_in_debt_units(self) -> None:
        deltas = calc_withdraw_amounts(D(300), D(400), D(20), D(2), False)
        assert deltas == PositionDeltas(D(30), D(40))

    def test_withdraw_requires_positive_net(self) -> None:
        with pytest.raises(InputError):
            calc_withdraw_amounts(D(100), D(100), D(1), D(1), True)

    @pytest.mark.parametrize(
        ("amount", "selected_is_collateral"),
        [
            (D(1), True),
            (D("1.2"), True),
            (D("0.99995"), True),
            (D(150), False),
            (D(200), False),
        ],
    )
    def test_withdraw_reaching_net_is_rejected(
        self, amount: Decimal, selected_is_collateral: bool
    ) -> None:
        with pytest.raises(InputError, match="close the position instead"):
            calc_withdraw_amounts(D(3), D(300), amount, D(150), selected_is_collateral)

    def test_withdraw_just_under_net(self) -> None:
        deltas = calc_withdraw_amounts(D(3), D(300), D("0.999"), D(150), True)
        assert deltas.deposit == D("2.997")
        assert deltas.borrow == D("299.7")


# ---------------------------------------------------------------------------
# Operation amounts
# ---------------------------------------------------------------------------


class TestDepositCalcs:
    def test_collateral_selected_flash_on_collateral(self) -> None:
        calcs = deposit_leverage_calcs(D(100), True, D(3), D(1), FEE, D(0))
        assert calcs.collateral_to_deposit == D(300)
        assert calcs.flash_borrow_amount == D(200)
        assert not calcs.flash_borrow_is_debt
        assert calcs.swap_out_amount == D("200.2")
        assert calcs.swap_in_amount == D("200.2")
        assert calcs.debt_to_borrow == D("200.2")
        assert calcs.min_out_amount == calcs.flash_borrow_amount * (1 + FEE)

    def test_debt_selected(self) -> None:
        # 100 debt at 2 debt per collateral is 50 collateral of equity.
        calcs = deposit_leverage_calcs(D(100), False, D(3), D(2), FEE, D(0))
        assert calcs.collateral_to_deposit == D(150)
        assert calcs.flash_borrow_amount == D(150)
        assert calcs.swap_in_amount == D("300.3")
        assert calcs.debt_to_borrow == D("200.3")

    def test_slippage_inflates_swap_input(self) -> None:
        calcs = deposit_leverage_calcs(D(100), True, D(3), D(1), FEE, D(1))
        assert calcs.swap_in_amount == D("200.2") * D("1.01")
        assert calcs.min_out_amount == D("200.2")

    def test_flash_on_debt(self) -> None:
        calcs = deposit_leverage_calcs(
            D(100), True, D(3), D(1), FEE, D(0), flash_borrow_debt=True
        )
        assert calcs.flash_borrow_is_debt
        assert calcs.swap_out_amount == D(200)
        assert calcs.flash_borrow_amount == D(200)
        assert calcs.debt_to_borrow == D("200.2")
        assert calcs.collateral_to_deposit == D(300)


class TestWithdrawCalcs:
    def test_partial_withdraw_collateral_selected(self) -> None:
        calcs = withdraw_leverage_calcs(
            amount=D(10),
            selected_is_collateral=True,
            deposited=D(300),
            borrowed=D(200),
            price_coll_to_debt=D(1),
            flash_fee=D(0),
            slippage_pct=D(0),
            accrual_ratio=D(1),
            debt_decimals=6,
            interest_margin=D(1),
        )
        assert calcs.repay_amount == D(20)
        assert calcs.flash_borrow_amount == D(20)
        assert calcs.swap_in_amount == D(20)
        assert calcs.collateral_to_withdraw == D(30)
        assert not calcs.is_closing

    def test_closing_does_not_divide_by_net(self) -> None:
        # Net position is zero; closing must still work.
        calcs = withdraw_leverage_calcs(
            amount=D(0),
            selected_is_collateral=True,
            deposited=D(200),
            borrowed=D(200),
            price_coll_to_debt=D(1),
            flash_fee=FEE,
            slippage_pct=D(0),
            accrual_ratio=D(1),
            debt_decimals=6,
            is_closing=True,
        )
        assert calcs.is_closing
        assert calcs.repay_amount == D("200.2")
        assert calcs.collateral_to_withdraw == D(200)
        assert calcs.swap_in_amount <= D(200)

    def test_closing_debt_selected_swaps_everything(self) -> None:
        calcs = withdraw_leverage_calcs(
            amount=D(0),
            selected_is_collateral=False,
            deposited=D(3),
            borrowed=D(300),
            price_coll_to_debt=D(150),
            flash_fee=FEE,
            slippage_pct=D("0.5"),
            accrual_ratio=D(1),
            debt_decimals=6,
            is_closing=True,
        )
        assert calcs.swap_in_amount == D(3)
        assert calcs.collateral_to_withdraw == D(3)

    def test_interest_accrual_buffers_repay(self) -> None:
        calcs = withdraw_leverage_calcs(
            amount=D(0),
            selected_is_collateral=True,
            deposited=D(3),
            borrowed=D(300),
            price_coll_to_debt=D(150),
            flash_fee=FEE,
            slippage_pct=D(0),
            accrual_ratio=D("1.01"),
            debt_decimals=6,
            is_closing=True,
        )
        assert calcs.repay_amount == D("303.303")
        assert calcs.min_out_amount == calcs.repay_amount * (1 + FEE)


class TestAdjustCalcs:
    def test_increase_flash_on_collateral(self) -> None:
        calcs = adjust_increase_calcs(PositionDeltas(D(100), D("100.1")), D(1), FEE, D(0))
        assert calcs.flash_borrow_amount == D(100)
        assert calcs.min_out_amount == D("100.1")
        assert calcs.debt_to_borrow == calcs.swap_in_amount

    def test_increase_flash_on_debt(self) -> None:
        calcs = adjust_increase_calcs(
            PositionDeltas(D(100), D("100.1")), D(1), FEE, D(0), flash_borrow_debt=True
        )
        assert calcs.flash_borrow_is_debt
        assert calcs.flash_borrow_amount == D(100)
        assert calcs.debt_to_borrow == D("100.1")
        assert calcs.min_out_amount == D(100)

    def test_decrease(self) -> None:
        calcs = adjust_decrease_calcs(
            PositionDeltas(D(-100), D(-100)), D(1), D(0), D(0), D(1), 6, D(1)
        )
        assert calcs.repay_amount == D(100)
        assert calcs.collateral_to_withdraw == D(100)
        assert calcs.flash_borrow_is_debt

    def test_wrong_direction_raises(self) -> None:
        with pytest.raises(LeverageLogicError):
            adjust_increase_calcs(PositionDeltas(D(-1), D(-1)), D(1), FEE, D(0))
        with pytest.raises(LeverageLogicError):
            adjust_decrease_calcs(PositionDeltas(D(1), D(1)), D(1), FEE, D(0), D(1), 6)


class TestMultiplyEffects:
    def test_deposit(self) -> None:
        effects = calculate_multiply_effects(
            LeverageOption.DEPOSIT,
            deposited=D(0),
            borrowed=D(0),
            price_coll_usd=D(1),
            price_debt_usd=D(1),
            target_leverage=D(3),
            deposit_amount=D(100),
        )
        assert effects.total_deposited == D(300)
        assert effects.total_borrowed == D(200)
        assert effects.ltv == D(200) / D(300)
        assert not effects.is_closing

    def test_close(self) -> None:
        effects = calculate_multiply_effects(
            LeverageOption.CLOSE,
            deposited=D(3),
            borrowed=D(300),
            price_coll_usd=D(150),
            price_debt_usd=D(1),
        )
        assert effects.is_closing
        assert effects.total_deposited == 0
        assert effects.ltv == 0

    def test_withdraw_everything_is_closing(self) -> None:
        effects = calculate_multiply_effects(
            LeverageOption.WITHDRAW,
            deposited=D(3),
            borrowed=D(300),
            price_coll_usd=D(150),
            price_debt_usd=D(1),
            withdraw_amount=D(1),
        )
        assert effects.is_closing

    def test_withdraw_above_net_is_closing(self) -> None:
        effects = calculate_multiply_effects(
            LeverageOption.WITHDRAW,
            deposited=D(3),
            borrowed=D(300),
            price_coll_usd=D(150),
            price_debt_usd=D(1),
            withdraw_amount=D(200),
            selected_is_collateral=False,
        )
        assert effects.is_closing
        assert effects.total_deposited == 0

    def test_partial_withdraw(self) -> None:
        effects = calculate_multiply_effects(
            LeverageOption.WITHDRAW,
            deposited=D(300),
            borrowed=D(200),
            price_coll_usd=D(1),
            price_debt_usd=D(1),
            withdraw_amount=D(10),
        )
        assert not effects.is_closing
        assert effects.total_deposited == D(270)
        assert effects.total_borrowed == D(180)
        assert effects.net_value_usd == D(90)

    def test_borrow_factor_scales_ltv(self) -> None:
        effects = calculate_multiply_effects(
            LeverageOption.ADJUST,
            deposited=D(300),
            borrowed=D(200),
            price_coll_usd=D(1),
            price_debt_usd=D(1),
            target_leverage=D(3),
            debt_borrow_factor=D(2),
        )
        assert effects.ltv == D(400) / D(300)
