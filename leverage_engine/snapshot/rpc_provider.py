"""JSON-RPC snapshot provider with endpoint fallback."""
from __future__ import annotations

import logging
import ssl
from decimal import Decimal
from typing import Any

import aiohttp
import certifi

from ..config import SnapshotConfig
from ..models import Market, Obligation, Wallet
from .parser import NATIVE_DECIMALS, parse_market, parse_obligation, parse_token_account_mints

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


class RpcSnapshotProvider:
    """Load decoded lending accounts and wallet balances over JSON-RPC.

    Lending accounts come from the indexer methods ``getLendingMarket`` and
    ``getObligation``; wallet state from the standard ``getBalance`` and
    ``getTokenAccountsByOwner`` calls. The market slot is pinned with
    ``getSlot`` so every later calculation uses one value.
    """

    def __init__(self, config: SnapshotConfig) -> None:
        if not config.rpc_endpoints:
            raise ValueError("RpcSnapshotProvider needs at least one endpoint")
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._markets: dict[str, Market] = {}

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def get_slot(self) -> int:
        return int(await self.rpc_call("getSlot", [{"commitment": "confirmed"}]))

    async def load_market(self, address: str) -> Market:
        raw = await self.rpc_call("getLendingMarket", [address])
        if not raw:
            raise KeyError(f"Lending market {address} not found")
        slot = await self.get_slot()
        market = parse_market(raw, slot=slot)
        self._markets[address] = market
        logger.debug(
            "Market %s at slot %d: %d reserves", address, slot, len(market.reserves)
        )
        return market

    async def load_obligation(self, address: str) -> Obligation | None:
        raw = await self.rpc_call("getObligation", [address])
        if not raw:
            logger.debug("Obligation %s does not exist yet", address)
            return None
        market = self._markets.get(raw["market"])
        if market is None:
            market = await self.load_market(raw["market"])
        return parse_obligation(raw, market)

    async def load_wallet(self, owner: str) -> Wallet:
        balance = await self.rpc_call("getBalance", [owner])
        lamports = int((balance or {}).get("value", 0))

        mints: set[str] = set()
        for program_id in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            result = await self.rpc_call(
                "getTokenAccountsByOwner",
                [owner, {"programId": program_id}, {"encoding": "jsonParsed"}],
            )
            mints |= parse_token_account_mints((result or {}).get("value", []))

        return Wallet(
            owner=owner,
            native_balance=Decimal(lamports) / 10**NATIVE_DECIMALS,
            token_accounts=frozenset(mints),
        )
