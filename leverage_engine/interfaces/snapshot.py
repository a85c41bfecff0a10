"""Slot-pinned market, obligation and wallet state."""
from typing import Protocol

from ..models import Market, Obligation, Wallet


class SnapshotProvider(Protocol):
    """Abstract interface for loading on-chain state the engine reads."""

    async def load_market(self, address: str) -> Market: ...

    async def load_obligation(self, address: str) -> Obligation | None:
        """Return ``None`` when the obligation has not been created yet."""
        ...

    async def load_wallet(self, owner: str) -> Wallet: ...
