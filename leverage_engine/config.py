"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

NATIVE_MINT = "So11111111111111111111111111111111111111112"

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    quote_buffer_bps: int = 50
    default_slippage_pct: Decimal = Decimal("0.5")
    interest_margin: Decimal = Decimal("1.001")
    withdraw_slot_offset: int = 150


@dataclass(frozen=True)
class BudgetConfig:
    compute_unit_limit: int = 1_400_000
    compute_unit_price: int = 0


@dataclass(frozen=True)
class WrapPolicyConfig:
    """Share of the native balance wrapped ahead of a native-debt repay."""

    balance_fraction: Decimal = Decimal("0.5")
    max_amount: Decimal = Decimal("0.1")


@dataclass(frozen=True)
class SnapshotConfig:
    provider: str = "rpc"
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    path: str = ""


@dataclass(frozen=True)
class SwapConfig:
    base_url: str = "https://quote-api.jup.ag/v6"
    timeout: int = 15
    max_accounts: int = 64
    max_accounts_buffer: int = 2
    slippage_bps: int = 50


@dataclass(frozen=True)
class TokensConfig:
    native_mint: str = NATIVE_MINT


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    wrap_policy: WrapPolicyConfig = field(default_factory=WrapPolicyConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    swap: SwapConfig = field(default_factory=SwapConfig)
    tokens: TokensConfig = field(default_factory=TokensConfig)
    markets: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _decimal(raw: dict[str, Any], key: str, default: Decimal) -> Decimal:
    value = raw.get(key)
    return default if value is None else Decimal(str(value))


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        quote_buffer_bps=int(raw.get("quote_buffer_bps", 50)),
        default_slippage_pct=_decimal(
            raw, "default_slippage_pct", EngineConfig.default_slippage_pct
        ),
        interest_margin=_decimal(raw, "interest_margin", EngineConfig.interest_margin),
        withdraw_slot_offset=int(raw.get("withdraw_slot_offset", 150)),
    )


def _build_budget(raw: dict[str, Any]) -> BudgetConfig:
    return BudgetConfig(
        compute_unit_limit=int(raw.get("compute_unit_limit", 1_400_000)),
        compute_unit_price=int(raw.get("compute_unit_price", 0)),
    )


def _build_wrap_policy(raw: dict[str, Any]) -> WrapPolicyConfig:
    return WrapPolicyConfig(
        balance_fraction=_decimal(
            raw, "balance_fraction", WrapPolicyConfig.balance_fraction
        ),
        max_amount=_decimal(raw, "max_amount", WrapPolicyConfig.max_amount),
    )


def _build_snapshot(raw: dict[str, Any]) -> SnapshotConfig:
    return SnapshotConfig(
        provider=raw.get("provider", "rpc"),
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        path=raw.get("path", ""),
    )


def _build_swap(raw: dict[str, Any]) -> SwapConfig:
    return SwapConfig(
        base_url=raw.get("base_url", SwapConfig.base_url),
        timeout=int(raw.get("timeout", 15)),
        max_accounts=int(raw.get("max_accounts", 64)),
        max_accounts_buffer=int(raw.get("max_accounts_buffer", 2)),
        slippage_bps=int(raw.get("slippage_bps", 50)),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from the package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        budget=_build_budget(raw.get("budget", {})),
        wrap_policy=_build_wrap_policy(raw.get("wrap_policy", {})),
        snapshot=_build_snapshot(raw.get("snapshot", {})),
        swap=_build_swap(raw.get("swap", {})),
        tokens=TokensConfig(
            native_mint=raw.get("tokens", {}).get("native_mint", NATIVE_MINT)
        ),
        markets=dict(raw.get("markets", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if cfg.engine.quote_buffer_bps < 0:
        raise ValueError("engine.quote_buffer_bps must not be negative")
    if not 0 <= cfg.engine.default_slippage_pct < 100:
        raise ValueError("engine.default_slippage_pct must be in [0, 100)")
    if cfg.engine.interest_margin < 1:
        raise ValueError("engine.interest_margin must be at least 1")
    if cfg.engine.withdraw_slot_offset < 0:
        raise ValueError("engine.withdraw_slot_offset must not be negative")

    if cfg.budget.compute_unit_limit <= 0:
        raise ValueError("budget.compute_unit_limit must be positive")

    if not 0 <= cfg.wrap_policy.balance_fraction <= 1:
        raise ValueError("wrap_policy.balance_fraction must be in [0, 1]")
    if cfg.wrap_policy.max_amount < 0:
        raise ValueError("wrap_policy.max_amount must not be negative")

    if cfg.snapshot.provider == "rpc":
        if not cfg.snapshot.rpc_endpoints:
            raise ValueError("snapshot.rpc_endpoints required for the rpc provider")
    elif cfg.snapshot.provider == "file":
        if not cfg.snapshot.path:
            raise ValueError("snapshot.path required for the file provider")
    else:
        raise ValueError(f"Unknown snapshot provider '{cfg.snapshot.provider}'")

    if cfg.swap.max_accounts_buffer < 0:
        raise ValueError("swap.max_accounts_buffer must not be negative")

    for label, address in cfg.markets.items():
        if not address:
            raise ValueError(f"Market '{label}' has no address")
