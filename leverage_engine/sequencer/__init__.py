"""Atomic sequencer: strategies, step assembly and the quote pipeline."""
from .builder import Section, StepSequence
from .context import EngineSettings, OperationContext
from .pipeline import LeveragePipeline, ProbeResult
from .strategies import DirectCollateral, WrappedCollateral, strategy_for

__all__ = [
    "DirectCollateral",
    "EngineSettings",
    "LeveragePipeline",
    "OperationContext",
    "ProbeResult",
    "Section",
    "StepSequence",
    "WrappedCollateral",
    "strategy_for",
]
