"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any

from .errors import InputError, LeverageLogicError

U64_MAX = 2**64 - 1
ZERO = Decimal(0)


class LeverageOption(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    ADJUST = "adjust"
    CLOSE = "close"


class CollateralKind(str, Enum):
    """How collateral reaches the lending reserve from the swap output."""

    DIRECT = "direct"
    WRAPPED = "wrapped"


class ObligationKind(IntEnum):
    VANILLA = 0
    MULTIPLY = 1
    LENDING = 2
    LEVERAGE = 3


# ---------------------------------------------------------------------------
# Market snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BorrowRateCurve:
    """Piecewise-linear (utilization, annual rate) points, both as ratios."""

    points: tuple[tuple[Decimal, Decimal], ...] = ()


@dataclass(frozen=True)
class Reserve:
    address: str
    mint: str
    symbol: str
    decimals: int
    oracle_price: Decimal
    borrow_fee_rate: Decimal = ZERO
    flash_loan_fee_rate: Decimal = ZERO
    borrow_rate_curve: BorrowRateCurve = field(default_factory=BorrowRateCurve)
    collateral_exchange_rate: Decimal = Decimal(1)
    cumulative_borrow_rate: Decimal = Decimal(1)
    last_update_slot: int = 0
    total_borrowed: Decimal = ZERO
    total_supply: Decimal = ZERO
    loan_to_value: Decimal = ZERO
    liquidation_threshold: Decimal = ZERO
    borrow_factor: Decimal = Decimal(1)
    elevation_groups: tuple[int, ...] = ()
    host_fixed_interest_rate: Decimal = ZERO
    token_program: str = ""
    collateral_mint: str = ""
    supply_vault: str = ""
    fee_vault: str = ""

    @property
    def mint_factor(self) -> Decimal:
        return Decimal(10) ** self.decimals


@dataclass(frozen=True)
class ElevationGroup:
    """Risk bucket; its LTVs override the reserve LTVs of member reserves."""

    id: int
    max_ltv: Decimal
    liquidation_ltv: Decimal
    max_collateral_reserve_count: int
    collateral_reserves: frozenset[str]
    debt_reserve: str


@dataclass(frozen=True)
class Market:
    address: str
    program_id: str
    authority: str
    slot: int
    reserves: dict[str, Reserve] = field(default_factory=dict)
    elevation_groups: dict[int, ElevationGroup] = field(default_factory=dict)
    lookup_table: str = ""

    def reserve_by_mint(self, mint: str) -> Reserve:
        for reserve in self.reserves.values():
            if reserve.mint == mint:
                return reserve
        raise InputError(f"No reserve for mint {mint} in market {self.address}")

    def reserve_by_address(self, address: str) -> Reserve:
        """Resolve a reserve referenced by already-loaded state."""
        reserve = self.reserves.get(address)
        if reserve is None:
            raise LeverageLogicError(
                f"Reserve {address} referenced but missing from market {self.address}"
            )
        return reserve


# ---------------------------------------------------------------------------
# Obligation / wallet snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ObligationBorrow:
    amount: Decimal
    cumulative_borrow_rate: Decimal = Decimal(1)


@dataclass(frozen=True)
class Obligation:
    address: str
    owner: str
    deposits: dict[str, Decimal] = field(default_factory=dict)
    borrows: dict[str, ObligationBorrow] = field(default_factory=dict)
    elevation_group: int = 0
    kind: ObligationKind = ObligationKind.MULTIPLY
    exists: bool = True

    @classmethod
    def empty(cls, address: str, owner: str, kind: ObligationKind) -> Obligation:
        """Placeholder for an obligation that has not been initialized yet."""
        return cls(address=address, owner=owner, kind=kind, exists=False)

    def deposited(self, reserve: str) -> Decimal:
        return self.deposits.get(reserve, ZERO)

    def borrowed(self, reserve: str) -> Decimal:
        borrow = self.borrows.get(reserve)
        return borrow.amount if borrow else ZERO

    def projected(
        self,
        deposit_deltas: dict[str, Decimal],
        borrow_deltas: dict[str, Decimal],
        elevation_group: int | None = None,
    ) -> Obligation:
        """Return a copy with the deltas applied; empty positions are dropped."""
        deposits = dict(self.deposits)
        for reserve, delta in deposit_deltas.items():
            amount = max(deposits.get(reserve, ZERO) + delta, ZERO)
            if amount > 0:
                deposits[reserve] = amount
            else:
                deposits.pop(reserve, None)

        borrows = dict(self.borrows)
        for reserve, delta in borrow_deltas.items():
            current = borrows.get(reserve)
            amount = max((current.amount if current else ZERO) + delta, ZERO)
            if amount > 0:
                rate = current.cumulative_borrow_rate if current else Decimal(1)
                borrows[reserve] = ObligationBorrow(amount, rate)
            else:
                borrows.pop(reserve, None)

        return replace(
            self,
            deposits=deposits,
            borrows=borrows,
            elevation_group=(
                self.elevation_group if elevation_group is None else elevation_group
            ),
        )


@dataclass(frozen=True)
class Wallet:
    owner: str
    native_balance: Decimal = ZERO
    token_accounts: frozenset[str] = frozenset()


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeverageRequest:
    """One leverage operation against one obligation.

    ``amount`` is denominated in ``selected_mint`` (deposit and withdraw);
    ``target_leverage`` drives deposit and adjust. An ``elevation_group`` of
    ``None`` or ``0`` keeps the obligation's current group.
    ``price_coll_to_debt`` overrides the oracle-derived estimate used for the
    probe pass.
    """

    option: LeverageOption
    owner: str
    obligation_address: str
    collateral_mint: str
    debt_mint: str
    selected_mint: str = ""
    amount: Decimal = ZERO
    target_leverage: Decimal = ZERO
    slippage_pct: Decimal | None = None
    is_closing: bool = False
    elevation_group: int | None = None
    collateral_kind: CollateralKind = CollateralKind.DIRECT
    obligation_kind: ObligationKind = ObligationKind.MULTIPLY
    price_coll_to_debt: Decimal | None = None


# ---------------------------------------------------------------------------
# Swap
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwapInputs:
    input_lamports: int
    input_mint: str
    output_mint: str
    input_decimals: int
    output_decimals: int
    min_out_lamports: int | None = None


@dataclass(frozen=True)
class SwapQuote:
    """Price of one input token in output tokens, plus provider state."""

    exchange_rate: Decimal
    payload: Any = None


# ---------------------------------------------------------------------------
# Steps & bundle
# ---------------------------------------------------------------------------


class StepKind(str, Enum):
    COMPUTE_BUDGET = "compute_budget"
    CREATE_TOKEN_ACCOUNT = "create_token_account"
    INIT_OBLIGATION = "init_obligation"
    WRAP_NATIVE = "wrap_native"
    FLASH_BORROW = "flash_borrow"
    REFRESH_RESERVE = "refresh_reserve"
    REFRESH_OBLIGATION = "refresh_obligation"
    REQUEST_ELEVATION_GROUP = "request_elevation_group"
    DEPOSIT = "deposit"
    BORROW = "borrow"
    REPAY = "repay"
    WITHDRAW = "withdraw"
    SWAP = "swap"
    FLASH_REPAY = "flash_repay"
    CLOSE_TOKEN_ACCOUNT = "close_token_account"


@dataclass(frozen=True)
class Step:
    kind: StepKind
    program: str
    accounts: tuple[str, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SwapSteps:
    """One candidate route realized as concrete steps."""

    steps: tuple[Step, ...]
    quote: SwapQuote
    lookup_tables: tuple[str, ...] = ()
    actual_output_lamports: int | None = None


@dataclass(frozen=True)
class FlashLoanInfo:
    reserve: str
    fee_rate: Decimal
    borrow_index: int
    borrow_lamports: int
    fee_lamports: int
    repay_lamports: int


@dataclass(frozen=True)
class SimulationDetails:
    """Display-only projection of what the bundle does."""

    flash_borrowed_lamports: int
    flash_repaid_lamports: int
    swap_in_lamports: int
    swap_out_lamports: int
    projected_ltv: Decimal
    max_ltv: Decimal


@dataclass(frozen=True)
class InstructionBundle:
    steps: tuple[Step, ...]
    lookup_tables: tuple[str, ...]
    flash_loan: FlashLoanInfo
    swap_inputs: SwapInputs
    simulation: SimulationDetails
    quote_payload: Any = None
