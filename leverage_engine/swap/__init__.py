"""Swap provider adapters."""
from .aggregator import AggregatorSwapClient

__all__ = ["AggregatorSwapClient"]
