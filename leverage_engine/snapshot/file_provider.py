"""Snapshot provider backed by a YAML document, for dry runs and tests."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from ..models import Market, Obligation, Wallet
from .parser import parse_market, parse_obligation, parse_wallet

logger = logging.getLogger(__name__)


class FileSnapshotProvider:
    """Serve markets, obligations and wallets from one YAML snapshot file.

    Expected layout::

        slot: 250000000
        markets: [{address: ..., reserves: [...], elevation_groups: [...]}]
        obligations: [{address: ..., market: ..., deposits: [...], borrows: [...]}]
        wallets: [{owner: ..., native_lamports: ..., token_accounts: [...]}]
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._doc: dict[str, Any] | None = None
        self._markets: dict[str, Market] = {}

    def _document(self) -> dict[str, Any]:
        if self._doc is None:
            if not self.path.exists():
                raise FileNotFoundError(f"Snapshot file not found: {self.path}")
            with open(self.path) as f:
                self._doc = yaml.safe_load(f) or {}
            logger.info("Snapshot loaded from %s", self.path)
        return self._doc

    def _find(self, section: str, key: str, value: str) -> dict[str, Any] | None:
        for entry in self._document().get(section, []):
            if entry.get(key) == value:
                return entry
        return None

    async def load_market(self, address: str) -> Market:
        if address not in self._markets:
            raw = self._find("markets", "address", address)
            if raw is None:
                raise KeyError(f"Market {address} not in snapshot {self.path}")
            slot = self._document().get("slot")
            self._markets[address] = parse_market(
                raw, slot=int(slot) if slot is not None else None
            )
        return self._markets[address]

    async def load_obligation(self, address: str) -> Obligation | None:
        raw = self._find("obligations", "address", address)
        if raw is None:
            return None
        market = await self.load_market(raw["market"])
        return parse_obligation(raw, market)

    async def load_wallet(self, owner: str) -> Wallet:
        raw = self._find("wallets", "owner", owner)
        if raw is None:
            return Wallet(owner=owner)
        return parse_wallet(raw)
