"""Protocol interfaces for the leverage engine collaborators."""
from .observer import LeverageObserver
from .snapshot import SnapshotProvider
from .swap import SwapBuilder, SwapQuoter

__all__ = ["LeverageObserver", "SnapshotProvider", "SwapBuilder", "SwapQuoter"]
