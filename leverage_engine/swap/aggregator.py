"""HTTP swap-aggregator client — quotes and route instructions."""
from __future__ import annotations

import asyncio
import logging
import ssl
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from typing import Any

import aiohttp
import certifi

from ..config import SwapConfig
from ..errors import QuoteUnavailable
from ..models import Step, StepKind, SwapInputs, SwapQuote, SwapSteps

logger = logging.getLogger(__name__)

MAX_LOCKED_ACCOUNTS = 64


def max_accounts_with_buffer(
    touched: int, buffer: int, limit: int = MAX_LOCKED_ACCOUNTS
) -> int:
    """Accounts left for the route once the lending steps are accounted for."""
    return limit - (touched + buffer)


def scale_quote(quote: dict[str, Any], input_lamports: int) -> dict[str, Any]:
    """Rescale a quote response to a different input amount.

    Outputs are floored and inputs/fees ceiled so the scaled quote never
    promises more than the original.
    """
    original_in = Decimal(quote["inAmount"])
    scale = Decimal(input_lamports) / original_in

    def _scaled(value: Any, rounding: str) -> str:
        return str((Decimal(value) * scale).to_integral_value(rounding))

    routes = []
    for leg in quote.get("routePlan", []):
        info = dict(leg.get("swapInfo", {}))
        if "inAmount" in info:
            info["inAmount"] = _scaled(info["inAmount"], ROUND_CEILING)
        if "outAmount" in info:
            info["outAmount"] = _scaled(info["outAmount"], ROUND_FLOOR)
        if "feeAmount" in info:
            info["feeAmount"] = _scaled(info["feeAmount"], ROUND_CEILING)
        routes.append({**leg, "swapInfo": info})

    return {
        **quote,
        "inAmount": str(input_lamports),
        "outAmount": _scaled(quote["outAmount"], ROUND_FLOOR),
        "otherAmountThreshold": _scaled(quote["otherAmountThreshold"], ROUND_FLOOR),
        "routePlan": routes,
    }


def parse_instruction(raw: dict[str, Any], kind: StepKind = StepKind.SWAP) -> Step:
    return Step(
        kind=kind,
        program=raw["programId"],
        accounts=tuple(acc["pubkey"] for acc in raw.get("accounts", [])),
        data={
            "data": raw.get("data", ""),
            "writable": tuple(
                acc["pubkey"] for acc in raw.get("accounts", []) if acc.get("isWritable")
            ),
        },
    )


def parse_swap_instructions(response: dict[str, Any]) -> list[Step]:
    """Flatten a swap-instructions response into ordered steps."""
    result = [
        parse_instruction(ix, StepKind.COMPUTE_BUDGET)
        for ix in response.get("computeBudgetInstructions", [])
    ]
    result.extend(parse_instruction(ix) for ix in response.get("setupInstructions", []))
    if response.get("swapInstruction"):
        result.append(parse_instruction(response["swapInstruction"]))
    if response.get("cleanupInstruction"):
        result.append(parse_instruction(response["cleanupInstruction"]))
    return result


class AggregatorSwapClient:
    """Quote and build swaps through an aggregator HTTP API.

    Implements both ``SwapQuoter`` and ``SwapBuilder``. Routes are capped to
    the account budget left after the lending steps.
    """

    def __init__(self, config: SwapConfig, user: str) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout
        self.max_accounts = config.max_accounts
        self.max_accounts_buffer = config.max_accounts_buffer
        self.slippage_bps = config.slippage_bps
        self.user = user

    def _session(self) -> aiohttp.ClientSession:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._session() as session:
                async with session.request(method, url, **kwargs) as response:
                    if response.status != 200:
                        body = await response.text()
                        raise QuoteUnavailable(
                            f"Aggregator {path} returned HTTP {response.status}: {body}"
                        )
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise QuoteUnavailable(f"Aggregator {path} request failed: {e}") from e

    async def quote(self, inputs: SwapInputs, touched_accounts: list[str]) -> SwapQuote:
        params: dict[str, str] = {
            "inputMint": inputs.input_mint,
            "outputMint": inputs.output_mint,
            "amount": str(inputs.input_lamports),
            "slippageBps": str(self.slippage_bps),
            "onlyDirectRoutes": "false",
        }
        max_accounts = max_accounts_with_buffer(
            len(set(touched_accounts)), self.max_accounts_buffer, self.max_accounts
        )
        if max_accounts > 0:
            params["maxAccounts"] = str(max_accounts)

        data = await self._request("GET", "/quote", params=params)
        try:
            in_amount = Decimal(data["inAmount"]) / Decimal(10) ** inputs.input_decimals
            min_out = (
                Decimal(data["otherAmountThreshold"]) / Decimal(10) ** inputs.output_decimals
            )
        except KeyError as e:
            raise QuoteUnavailable(f"Malformed quote response, missing {e}") from e
        if in_amount <= 0:
            raise QuoteUnavailable("Quote has zero input amount")

        rate = min_out / in_amount
        logger.debug(
            "Quoted %s %s -> %s at %s (max accounts %d)",
            inputs.input_lamports,
            inputs.input_mint,
            inputs.output_mint,
            rate,
            max_accounts,
        )
        return SwapQuote(exchange_rate=rate, payload=data)

    async def build_swap_steps(
        self,
        inputs: SwapInputs,
        touched_accounts: list[str],
        quote: SwapQuote,
    ) -> list[SwapSteps]:
        if not isinstance(quote.payload, dict):
            raise QuoteUnavailable("Quote carries no aggregator response to build from")
        scaled = scale_quote(quote.payload, inputs.input_lamports)
        body = {
            "userPublicKey": self.user,
            "quoteResponse": scaled,
            "wrapAndUnwrapSol": False,
        }
        response = await self._request("POST", "/swap-instructions", json=body)
        return [
            SwapSteps(
                steps=tuple(parse_swap_instructions(response)),
                quote=SwapQuote(exchange_rate=quote.exchange_rate, payload=scaled),
                lookup_tables=tuple(response.get("addressLookupTableAddresses", [])),
                actual_output_lamports=int(scaled["otherAmountThreshold"]),
            )
        ]
