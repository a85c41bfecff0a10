"""Pure parsing functions for lending-market snapshot documents — no I/O.

Documents are the decoded JSON shape served by the snapshot RPC or stored as
YAML fixtures. LTV-style parameters are percentages, fees and curve points
are ratios, on-chain amounts are base units.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from ..models import (
    BorrowRateCurve,
    ElevationGroup,
    Market,
    Obligation,
    ObligationBorrow,
    ObligationKind,
    Reserve,
    Wallet,
)

NATIVE_DECIMALS = 9


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Convert a JSON scalar to Decimal; floats go through ``str`` first."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def pct(value: Any, default: str = "0") -> Decimal:
    return to_decimal(value, default) / 100


def parse_borrow_rate_curve(points: list[Any]) -> BorrowRateCurve:
    """Parse ``[[utilization, rate], ...]`` pairs.

    Trailing ``[1, rate]`` padding repeated by fixed-size on-chain arrays is
    collapsed so the curve ends at its first full-utilization point.
    """
    parsed: list[tuple[Decimal, Decimal]] = []
    for point in points:
        utilization, rate = to_decimal(point[0]), to_decimal(point[1])
        parsed.append((utilization, rate))
        if utilization >= 1:
            break
    return BorrowRateCurve(points=tuple(parsed))


def parse_reserve(raw: dict[str, Any]) -> Reserve:
    return Reserve(
        address=raw["address"],
        mint=raw["mint"],
        symbol=raw.get("symbol", "").upper(),
        decimals=int(raw.get("decimals", 9)),
        oracle_price=to_decimal(raw.get("oracle_price")),
        borrow_fee_rate=to_decimal(raw.get("borrow_fee_rate")),
        flash_loan_fee_rate=to_decimal(raw.get("flash_loan_fee_rate")),
        borrow_rate_curve=parse_borrow_rate_curve(raw.get("borrow_rate_curve", [])),
        collateral_exchange_rate=to_decimal(raw.get("collateral_exchange_rate"), "1"),
        cumulative_borrow_rate=to_decimal(raw.get("cumulative_borrow_rate"), "1"),
        last_update_slot=int(raw.get("last_update_slot", 0)),
        total_borrowed=to_decimal(raw.get("total_borrowed")),
        total_supply=to_decimal(raw.get("total_supply")),
        loan_to_value=pct(raw.get("loan_to_value_pct")),
        liquidation_threshold=pct(raw.get("liquidation_threshold_pct")),
        borrow_factor=pct(raw.get("borrow_factor_pct"), "100"),
        elevation_groups=tuple(int(g) for g in raw.get("elevation_groups", []) if int(g)),
        host_fixed_interest_rate=to_decimal(raw.get("host_fixed_interest_rate")),
        token_program=raw.get("token_program", ""),
        collateral_mint=raw.get("collateral_mint", ""),
        supply_vault=raw.get("supply_vault", ""),
        fee_vault=raw.get("fee_vault", ""),
    )


def parse_elevation_group(raw: dict[str, Any]) -> ElevationGroup:
    return ElevationGroup(
        id=int(raw["id"]),
        max_ltv=pct(raw.get("max_ltv_pct")),
        liquidation_ltv=pct(raw.get("liquidation_ltv_pct")),
        max_collateral_reserve_count=int(raw.get("max_collateral_reserve_count", 0)),
        collateral_reserves=frozenset(raw.get("collateral_reserves", [])),
        debt_reserve=raw.get("debt_reserve", ""),
    )


def parse_market(raw: dict[str, Any], slot: int | None = None) -> Market:
    """Build a Market; ``slot`` overrides the document's own slot."""
    reserves = {r.address: r for r in map(parse_reserve, raw.get("reserves", []))}
    groups = {
        g.id: g
        for g in map(parse_elevation_group, raw.get("elevation_groups", []))
        if g.id > 0
    }
    return Market(
        address=raw["address"],
        program_id=raw.get("program_id", ""),
        authority=raw.get("authority", ""),
        slot=int(raw.get("slot", 0)) if slot is None else slot,
        reserves=reserves,
        elevation_groups=groups,
        lookup_table=raw.get("lookup_table", ""),
    )


def parse_obligation_kind(tag: Any) -> ObligationKind:
    try:
        return ObligationKind(int(tag))
    except ValueError:
        raise ValueError(f"Unknown obligation kind tag: {tag!r}") from None


def parse_deposit_amount(entry: dict[str, Any], reserve: Reserve) -> Decimal:
    """Liquidity-token amount of a deposit entry.

    Deposits are recorded as collateral-token base units:
        amount = collateral_lamports / exchange_rate / 10^decimals
    """
    if "amount" in entry:
        return to_decimal(entry["amount"])
    lamports = to_decimal(entry.get("collateral_lamports"))
    return lamports / reserve.collateral_exchange_rate / reserve.mint_factor


def parse_obligation(raw: dict[str, Any], market: Market) -> Obligation:
    deposits: dict[str, Decimal] = {}
    for entry in raw.get("deposits", []):
        reserve = market.reserve_by_address(entry["reserve"])
        amount = parse_deposit_amount(entry, reserve)
        if amount > 0:
            deposits[reserve.address] = amount

    borrows: dict[str, ObligationBorrow] = {}
    for entry in raw.get("borrows", []):
        reserve = market.reserve_by_address(entry["reserve"])
        if "amount" in entry:
            amount = to_decimal(entry["amount"])
        else:
            amount = to_decimal(entry.get("borrowed_lamports")) / reserve.mint_factor
        if amount > 0:
            borrows[reserve.address] = ObligationBorrow(
                amount=amount,
                cumulative_borrow_rate=to_decimal(
                    entry.get("cumulative_borrow_rate"), "1"
                ),
            )

    return Obligation(
        address=raw["address"],
        owner=raw.get("owner", ""),
        deposits=deposits,
        borrows=borrows,
        elevation_group=int(raw.get("elevation_group", 0)),
        kind=parse_obligation_kind(raw.get("kind", ObligationKind.MULTIPLY)),
    )


def parse_wallet(raw: dict[str, Any]) -> Wallet:
    return Wallet(
        owner=raw["owner"],
        native_balance=to_decimal(raw.get("native_lamports")) / 10**NATIVE_DECIMALS,
        token_accounts=frozenset(raw.get("token_accounts", [])),
    )


def parse_token_account_mints(accounts: list[dict[str, Any]]) -> frozenset[str]:
    """Mints of ``getTokenAccountsByOwner`` results in jsonParsed encoding."""
    mints: set[str] = set()
    for acc in accounts:
        info = (
            acc.get("account", {})
            .get("data", {})
            .get("parsed", {})
            .get("info", {})
        )
        mint = info.get("mint")
        if mint:
            mints.add(mint)
    return frozenset(mints)
