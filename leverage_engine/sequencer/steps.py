"""Step factories, one function per protocol action.

Steps are descriptive: program id, the accounts the action touches and the
parameters it needs. Binary encoding happens outside the engine.
"""
from __future__ import annotations

from ..models import Market, Reserve, Step, StepKind, SwapInputs

COMPUTE_BUDGET_PROGRAM_ID = "ComputeBudget111111111111111111111111111111"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def _accounts(*items: str) -> tuple[str, ...]:
    return tuple(item for item in items if item)


# ---------------------------------------------------------------------------
# Budget / setup / cleanup
# ---------------------------------------------------------------------------


def compute_unit_limit(units: int) -> Step:
    return Step(StepKind.COMPUTE_BUDGET, COMPUTE_BUDGET_PROGRAM_ID, data={"units": units})


def compute_unit_price(micro_lamports: int) -> Step:
    return Step(
        StepKind.COMPUTE_BUDGET,
        COMPUTE_BUDGET_PROGRAM_ID,
        data={"micro_lamports": micro_lamports},
    )


def create_token_account(owner: str, mint: str, token_program: str = "") -> Step:
    """Idempotent creation of the owner's associated token account."""
    return Step(
        StepKind.CREATE_TOKEN_ACCOUNT,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        _accounts(owner, mint, token_program or TOKEN_PROGRAM_ID, SYSTEM_PROGRAM_ID),
        {"mint": mint},
    )


def init_obligation(market: Market, obligation: str, owner: str, kind: int) -> Step:
    return Step(
        StepKind.INIT_OBLIGATION,
        market.program_id,
        _accounts(owner, obligation, market.address, SYSTEM_PROGRAM_ID),
        {"kind": kind},
    )


def wrap_native(owner: str, native_mint: str, lamports: int) -> Step:
    return Step(
        StepKind.WRAP_NATIVE,
        TOKEN_PROGRAM_ID,
        _accounts(owner, native_mint, SYSTEM_PROGRAM_ID),
        {"lamports": lamports},
    )


def close_token_account(owner: str, mint: str, token_program: str = "") -> Step:
    return Step(
        StepKind.CLOSE_TOKEN_ACCOUNT,
        token_program or TOKEN_PROGRAM_ID,
        _accounts(owner, mint),
        {"mint": mint},
    )


# ---------------------------------------------------------------------------
# Flash loan
# ---------------------------------------------------------------------------


def flash_borrow(market: Market, owner: str, reserve: Reserve, lamports: int) -> Step:
    return Step(
        StepKind.FLASH_BORROW,
        market.program_id,
        _accounts(
            owner,
            market.address,
            market.authority,
            reserve.address,
            reserve.mint,
            reserve.supply_vault,
            reserve.token_program,
        ),
        {"lamports": lamports},
    )


def flash_repay(market: Market, owner: str, reserve: Reserve, lamports: int) -> Step:
    """Repay step; the sequence builder stamps the matching borrow index."""
    return Step(
        StepKind.FLASH_REPAY,
        market.program_id,
        _accounts(
            owner,
            market.address,
            market.authority,
            reserve.address,
            reserve.mint,
            reserve.supply_vault,
            reserve.fee_vault,
            reserve.token_program,
        ),
        {"lamports": lamports},
    )


# ---------------------------------------------------------------------------
# Lending
# ---------------------------------------------------------------------------


def refresh_reserve(market: Market, reserve: Reserve, slot: int) -> Step:
    return Step(
        StepKind.REFRESH_RESERVE,
        market.program_id,
        _accounts(reserve.address, market.address),
        {"slot": slot},
    )


def refresh_obligation(
    market: Market, obligation: str, reserves: list[str], slot: int
) -> Step:
    return Step(
        StepKind.REFRESH_OBLIGATION,
        market.program_id,
        _accounts(market.address, obligation, *reserves),
        {"slot": slot},
    )


def request_elevation_group(
    market: Market, obligation: str, owner: str, group_id: int, reserves: list[str]
) -> Step:
    return Step(
        StepKind.REQUEST_ELEVATION_GROUP,
        market.program_id,
        _accounts(owner, obligation, market.address, *reserves),
        {"elevation_group": group_id},
    )


def _lending_action(
    kind: StepKind,
    market: Market,
    obligation: str,
    owner: str,
    reserve: Reserve,
    lamports: int,
) -> Step:
    return Step(
        kind,
        market.program_id,
        _accounts(
            owner,
            obligation,
            market.address,
            market.authority,
            reserve.address,
            reserve.mint,
            reserve.supply_vault,
            reserve.collateral_mint,
            reserve.fee_vault if kind is StepKind.BORROW else "",
            reserve.token_program,
        ),
        {"lamports": lamports},
    )


def deposit(market: Market, obligation: str, owner: str, reserve: Reserve, lamports: int) -> Step:
    return _lending_action(StepKind.DEPOSIT, market, obligation, owner, reserve, lamports)


def borrow(market: Market, obligation: str, owner: str, reserve: Reserve, lamports: int) -> Step:
    return _lending_action(StepKind.BORROW, market, obligation, owner, reserve, lamports)


def repay(market: Market, obligation: str, owner: str, reserve: Reserve, lamports: int) -> Step:
    return _lending_action(StepKind.REPAY, market, obligation, owner, reserve, lamports)


def withdraw(market: Market, obligation: str, owner: str, reserve: Reserve, lamports: int) -> Step:
    return _lending_action(StepKind.WITHDRAW, market, obligation, owner, reserve, lamports)


# ---------------------------------------------------------------------------
# Swap
# ---------------------------------------------------------------------------


def placeholder_swap(inputs: SwapInputs) -> Step:
    """One-unit stand-in used before the real route is known."""
    return Step(
        StepKind.SWAP,
        "",
        _accounts(inputs.input_mint, inputs.output_mint),
        {"input_lamports": 1, "placeholder": True},
    )
