"""Swap protocols — quoting and route realization, injected by the caller."""
from typing import Protocol

from ..models import SwapInputs, SwapQuote, SwapSteps


class SwapQuoter(Protocol):
    """Returns an (untrusted) price estimate for a swap."""

    async def quote(
        self, inputs: SwapInputs, touched_accounts: list[str]
    ) -> SwapQuote: ...


class SwapBuilder(Protocol):
    """Turns a quote into one or more candidate routes as concrete steps."""

    async def build_swap_steps(
        self,
        inputs: SwapInputs,
        touched_accounts: list[str],
        quote: SwapQuote,
    ) -> list[SwapSteps]: ...
