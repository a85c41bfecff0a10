"""Structured progress callbacks."""
from typing import Any, Protocol

from ..models import InstructionBundle, SwapInputs, SwapQuote


class LeverageObserver(Protocol):
    def on_calculation(self, phase: str, calcs: Any) -> None: ...

    def on_quote(self, inputs: SwapInputs, quote: SwapQuote) -> None: ...

    def on_route_rejected(self, reason: str, route_index: int) -> None: ...

    def on_bundle(self, bundle: InstructionBundle) -> None: ...
