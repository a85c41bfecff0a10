"""Stock observers: one that logs, one that ignores everything."""
from __future__ import annotations

import logging
from typing import Any

from .models import InstructionBundle, SwapInputs, SwapQuote

logger = logging.getLogger(__name__)


class LoggingObserver:
    """Report pipeline progress through the module logger."""

    def on_calculation(self, phase: str, calcs: Any) -> None:
        logger.debug("%s calcs: %s", phase, calcs)

    def on_quote(self, inputs: SwapInputs, quote: SwapQuote) -> None:
        logger.info(
            "Quote %s -> %s for %d lamports: rate %s",
            inputs.input_mint,
            inputs.output_mint,
            inputs.input_lamports,
            quote.exchange_rate,
        )

    def on_route_rejected(self, reason: str, route_index: int) -> None:
        logger.warning("Route %d rejected: %s", route_index, reason)

    def on_bundle(self, bundle: InstructionBundle) -> None:
        sim = bundle.simulation
        logger.info(
            "Bundle ready: %d steps, flash %d -> %d, projected LTV %.4f (max %.4f)",
            len(bundle.steps),
            sim.flash_borrowed_lamports,
            sim.flash_repaid_lamports,
            sim.projected_ltv,
            sim.max_ltv,
        )


class NullObserver:
    def on_calculation(self, phase: str, calcs: Any) -> None:
        pass

    def on_quote(self, inputs: SwapInputs, quote: SwapQuote) -> None:
        pass

    def on_route_rejected(self, reason: str, route_index: int) -> None:
        pass

    def on_bundle(self, bundle: InstructionBundle) -> None:
        pass
