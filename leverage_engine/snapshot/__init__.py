"""Snapshot loading, parsing and valuation."""
from .file_provider import FileSnapshotProvider
from .rpc_provider import RpcSnapshotProvider

__all__ = ["FileSnapshotProvider", "RpcSnapshotProvider"]
