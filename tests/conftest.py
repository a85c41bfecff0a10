"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest

from leverage_engine.config import NATIVE_MINT, AppConfig, SnapshotConfig
from leverage_engine.models import (
    BorrowRateCurve,
    ElevationGroup,
    LeverageOption,
    LeverageRequest,
    Market,
    Obligation,
    ObligationBorrow,
    Reserve,
    Wallet,
)
from leverage_engine.sequencer import EngineSettings, OperationContext

SLOT = 1000
OWNER = "OWNER_WALLET"
OBLIGATION = "OBLIGATION_1"
MARKET = "MARKET_MAIN"

COLL_MINT = "MINT_JITOSOL"
DEBT_MINT = "MINT_USDC"


# ---------------------------------------------------------------------------
# Market fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def coll_reserve() -> Reserve:
    return Reserve(
        address="RESERVE_JITOSOL",
        mint=COLL_MINT,
        symbol="JITOSOL",
        decimals=9,
        oracle_price=Decimal("150"),
        flash_loan_fee_rate=Decimal("0.001"),
        loan_to_value=Decimal("0.75"),
        liquidation_threshold=Decimal("0.8"),
        elevation_groups=(1, 2),
        last_update_slot=SLOT,
        supply_vault="VAULT_JITOSOL",
        fee_vault="FEES_JITOSOL",
        collateral_mint="CMINT_JITOSOL",
    )


@pytest.fixture()
def debt_reserve() -> Reserve:
    return Reserve(
        address="RESERVE_USDC",
        mint=DEBT_MINT,
        symbol="USDC",
        decimals=6,
        oracle_price=Decimal("1"),
        flash_loan_fee_rate=Decimal("0.001"),
        borrow_rate_curve=BorrowRateCurve(
            points=(
                (Decimal("0"), Decimal("0")),
                (Decimal("0.8"), Decimal("0.1")),
                (Decimal("1"), Decimal("1")),
            )
        ),
        total_borrowed=Decimal("500"),
        total_supply=Decimal("1000"),
        loan_to_value=Decimal("0.8"),
        liquidation_threshold=Decimal("0.85"),
        elevation_groups=(2,),
        last_update_slot=SLOT,
        supply_vault="VAULT_USDC",
        fee_vault="FEES_USDC",
        collateral_mint="CMINT_USDC",
    )


@pytest.fixture()
def sol_reserve() -> Reserve:
    return Reserve(
        address="RESERVE_SOL",
        mint=NATIVE_MINT,
        symbol="SOL",
        decimals=9,
        oracle_price=Decimal("140"),
        flash_loan_fee_rate=Decimal("0.001"),
        loan_to_value=Decimal("0.75"),
        liquidation_threshold=Decimal("0.8"),
        elevation_groups=(1,),
        last_update_slot=SLOT,
    )


@pytest.fixture()
def market(coll_reserve: Reserve, debt_reserve: Reserve, sol_reserve: Reserve) -> Market:
    return Market(
        address=MARKET,
        program_id="LENDING_PROGRAM",
        authority="MARKET_AUTHORITY",
        slot=SLOT,
        reserves={
            r.address: r for r in (coll_reserve, debt_reserve, sol_reserve)
        },
        elevation_groups={
            1: ElevationGroup(
                id=1,
                max_ltv=Decimal("0.9"),
                liquidation_ltv=Decimal("0.95"),
                max_collateral_reserve_count=1,
                collateral_reserves=frozenset({"RESERVE_JITOSOL"}),
                debt_reserve="RESERVE_SOL",
            ),
            2: ElevationGroup(
                id=2,
                max_ltv=Decimal("0.85"),
                liquidation_ltv=Decimal("0.9"),
                max_collateral_reserve_count=2,
                collateral_reserves=frozenset({"RESERVE_JITOSOL", "RESERVE_USDC"}),
                debt_reserve="RESERVE_USDC",
            ),
        },
        lookup_table="MARKET_LUT",
    )


# ---------------------------------------------------------------------------
# Position fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def open_obligation() -> Obligation:
    """3 JITOSOL deposited against 300 USDC at 150 USDC per JITOSOL."""
    return Obligation(
        address=OBLIGATION,
        owner=OWNER,
        deposits={"RESERVE_JITOSOL": Decimal("3")},
        borrows={"RESERVE_USDC": ObligationBorrow(Decimal("300"))},
    )


@pytest.fixture()
def wallet() -> Wallet:
    return Wallet(
        owner=OWNER,
        native_balance=Decimal("2"),
        token_accounts=frozenset({COLL_MINT, DEBT_MINT}),
    )


@pytest.fixture()
def settings() -> EngineSettings:
    return EngineSettings()


def make_request(option: LeverageOption = LeverageOption.DEPOSIT, **overrides) -> LeverageRequest:
    fields = {
        "option": option,
        "owner": OWNER,
        "obligation_address": OBLIGATION,
        "collateral_mint": COLL_MINT,
        "debt_mint": DEBT_MINT,
        "selected_mint": COLL_MINT,
        "amount": Decimal("1"),
        "target_leverage": Decimal("3"),
        "slippage_pct": Decimal("0.5"),
    }
    fields.update(overrides)
    return LeverageRequest(**fields)


def make_context(
    market: Market,
    request: LeverageRequest,
    obligation: Obligation | None = None,
    wallet: Wallet | None = None,
    settings: EngineSettings | None = None,
    target_group: int | None = None,
    **overrides,
) -> OperationContext:
    if obligation is None:
        obligation = Obligation.empty(OBLIGATION, OWNER, request.obligation_kind)
    if wallet is None:
        wallet = Wallet(owner=OWNER, token_accounts=frozenset({COLL_MINT, DEBT_MINT}))
    return OperationContext(
        request=request,
        market=market,
        obligation=obligation,
        wallet=wallet,
        coll_reserve=market.reserve_by_mint(request.collateral_mint),
        debt_reserve=market.reserve_by_mint(request.debt_mint),
        slippage_pct=request.slippage_pct if request.slippage_pct is not None else Decimal("0.5"),
        target_group=obligation.elevation_group if target_group is None else target_group,
        settings=settings or EngineSettings(),
        **overrides,
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    engine:
      quote_buffer_bps: 25
      default_slippage_pct: 0.3
      interest_margin: 1.002
      withdraw_slot_offset: 100
    budget:
      compute_unit_limit: 1000000
      compute_unit_price: 5000
    wrap_policy:
      balance_fraction: 0.25
      max_amount: 0.05
    snapshot:
      provider: rpc
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    swap:
      base_url: "https://swap.example.com/v6/"
      timeout: 5
      max_accounts: 60
      max_accounts_buffer: 3
      slippage_bps: 30
    markets:
      main: "MARKET_MAIN"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Snapshot YAML fixture
# ---------------------------------------------------------------------------

SNAPSHOT_YAML = textwrap.dedent("""\
    slot: 1000
    markets:
      - address: MARKET_MAIN
        program_id: LENDING_PROGRAM
        authority: MARKET_AUTHORITY
        lookup_table: MARKET_LUT
        reserves:
          - address: RESERVE_JITOSOL
            mint: MINT_JITOSOL
            symbol: jitosol
            decimals: 9
            oracle_price: "150"
            flash_loan_fee_rate: "0.001"
            loan_to_value_pct: 75
            liquidation_threshold_pct: 80
            elevation_groups: [0, 2]
            last_update_slot: 1000
          - address: RESERVE_USDC
            mint: MINT_USDC
            symbol: usdc
            decimals: 6
            oracle_price: "1"
            flash_loan_fee_rate: "0.001"
            loan_to_value_pct: 80
            liquidation_threshold_pct: 85
            borrow_factor_pct: 100
            borrow_rate_curve: [[0, 0], [0.8, 0.1], [1, 1], [1, 1]]
            total_borrowed: "500"
            total_supply: "1000"
            last_update_slot: 1000
        elevation_groups:
          - id: 0
          - id: 2
            max_ltv_pct: 85
            liquidation_ltv_pct: 90
            max_collateral_reserve_count: 2
            collateral_reserves: [RESERVE_JITOSOL]
            debt_reserve: RESERVE_USDC
    obligations:
      - address: OBLIGATION_1
        market: MARKET_MAIN
        owner: OWNER_WALLET
        kind: 1
        deposits:
          - reserve: RESERVE_JITOSOL
            collateral_lamports: 3000000000
        borrows:
          - reserve: RESERVE_USDC
            borrowed_lamports: 300000000
            cumulative_borrow_rate: "1"
      - address: OBLIGATION_VANILLA
        market: MARKET_MAIN
        owner: OWNER_WALLET
        kind: 0
        deposits:
          - reserve: RESERVE_JITOSOL
            amount: "1"
    wallets:
      - owner: OWNER_WALLET
        native_lamports: 2000000000
        token_accounts: [MINT_JITOSOL, MINT_USDC]
""")


@pytest.fixture()
def snapshot_path(tmp_path: Path) -> Path:
    path = tmp_path / "snapshot.yaml"
    path.write_text(SNAPSHOT_YAML)
    return path


@pytest.fixture()
def file_config(snapshot_path: Path) -> AppConfig:
    return AppConfig(
        snapshot=SnapshotConfig(provider="file", path=str(snapshot_path)),
        markets={"main": MARKET},
    )
