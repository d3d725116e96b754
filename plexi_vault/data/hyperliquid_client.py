"""
Hyperliquid client for market data, account queries and order submission.

Handles:
- Info API reads over REST (l2Book, meta, allMids, openOrders, userFills)
- Order submission / cancellation through the ccxt Hyperliquid adapter (request signing)
- Mapping venue failures onto APIError (transport) and VenueRejectionError (refused)

Constructed from configuration and injected where needed; never a module-level singleton.
"""
import asyncio
import ssl
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
import ccxt
import ccxt.async_support as ccxt_async
import certifi

from plexi_vault.config.config import VenueConfig
from plexi_vault.constants import HYPERLIQUID_INFO_ENDPOINT, PERP_SUFFIX, TIF_ALO, TIF_IOC
from plexi_vault.exceptions import APIError, VenueRejectionError
from plexi_vault.monitoring.logger import get_logger
from plexi_vault.utils.retry import retry_on_transient_errors

logger = get_logger(__name__)

_CCXT_TIF = {TIF_IOC: "IOC"}


def coin_base(coin: str) -> str:
    """'APT-PERP' -> 'APT'."""
    coin = coin.strip().upper()
    return coin[: -len(PERP_SUFFIX)] if coin.endswith(PERP_SUFFIX) else coin


def ccxt_symbol(coin: str) -> str:
    """Unified ccxt symbol for a Hyperliquid perpetual: 'APT' -> 'APT/USDC:USDC'."""
    return f"{coin_base(coin)}/USDC:USDC"


def _parse_order_id(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class HyperliquidClient:
    """
    Venue reader and order gateway for Hyperliquid perpetuals.
    """

    def __init__(
        self,
        api_url: str,
        private_key: Optional[str] = None,
        wallet_address: Optional[str] = None,
        testnet: bool = True,
        timeout_seconds: float = 10.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.wallet_address = wallet_address
        self.testnet = testnet
        self.timeout_seconds = timeout_seconds
        self._private_key = private_key
        self._exchange: Optional[ccxt_async.Exchange] = None
        self._ssl_context: Optional[ssl.SSLContext] = None
        self._session: Optional[aiohttp.ClientSession] = None
        logger.info(
            "Hyperliquid client initialized",
            api_url=self.api_url,
            testnet=testnet,
            has_credentials=bool(private_key and wallet_address),
        )

    @classmethod
    def from_config(cls, config: VenueConfig) -> "HyperliquidClient":
        return cls(
            api_url=config.api_url,
            private_key=config.private_key,
            wallet_address=config.wallet_address,
            testnet=config.testnet,
            timeout_seconds=config.request_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Info API (read-only)
    # ------------------------------------------------------------------

    def _get_ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = ssl.create_default_context(cafile=certifi.where())
        return self._ssl_context

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=self._get_ssl_context()),
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
        return self._session

    @retry_on_transient_errors(max_retries=2)
    async def info(self, request: Dict[str, Any]) -> Any:
        """POST one request to the info endpoint and return the decoded JSON."""
        url = f"{self.api_url}{HYPERLIQUID_INFO_ENDPOINT}"
        try:
            async with self._get_session().post(url, json=request) as response:
                if response.status >= 500:
                    raise APIError(f"Hyperliquid API error {response.status}: {await response.text()}")
                if response.status >= 400:
                    body = await response.text()
                    raise VenueRejectionError(
                        f"Hyperliquid rejected info request {request.get('type')}: {body}",
                        payload=body,
                        code=str(response.status),
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise APIError(f"Hyperliquid request failed: {e}") from e
        except ValueError as e:
            raise APIError(f"Hyperliquid returned an undecodable body: {e}") from e

    async def get_l2_book(self, coin: str) -> Dict[str, Any]:
        return await self.info({"type": "l2Book", "coin": coin_base(coin)})

    async def get_meta(self) -> Dict[str, Any]:
        return await self.info({"type": "meta"})

    async def get_all_mids(self) -> Dict[str, str]:
        return await self.info({"type": "allMids"})

    async def get_mid_price(self, coin: str) -> Optional[Decimal]:
        mids = await self.get_all_mids()
        raw = (mids or {}).get(coin_base(coin))
        return Decimal(str(raw)) if raw is not None else None

    async def get_open_orders(self, account: str) -> List[Dict[str, Any]]:
        return await self.info({"type": "openOrders", "user": account}) or []

    async def get_user_fills(self, account: str) -> List[Dict[str, Any]]:
        return await self.info({"type": "userFills", "user": account}) or []

    # ------------------------------------------------------------------
    # Order gateway (signed, via ccxt)
    # ------------------------------------------------------------------

    def _get_exchange(self) -> ccxt_async.Exchange:
        if self._exchange is None:
            if not self._private_key or not self.wallet_address:
                raise ValueError("Hyperliquid credentials not configured (venue.private_key / venue.wallet_address)")
            self._exchange = ccxt_async.hyperliquid({
                "walletAddress": self.wallet_address,
                "privateKey": self._private_key,
                "enableRateLimit": True,
                "timeout": int(self.timeout_seconds * 1000),
            })
            if self.testnet:
                self._exchange.set_sandbox_mode(True)
        return self._exchange

    async def place_order(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit an order in the venue wire shape:
        {coin: "<SYMBOL>-PERP", is_buy, sz, limit_px, order_type: {limit: {tif}}, reduce_only}

        Returns {"orderId": int | None, "status": str, "raw": <ccxt order>}.
        """
        tif = request["order_type"]["limit"]["tif"]
        params: Dict[str, Any] = {"reduceOnly": bool(request.get("reduce_only", False))}
        if tif == TIF_ALO:
            params["postOnly"] = True
        else:
            params["timeInForce"] = _CCXT_TIF.get(tif, tif)

        exchange = self._get_exchange()
        try:
            order = await exchange.create_order(
                ccxt_symbol(request["coin"]),
                "limit",
                "buy" if request["is_buy"] else "sell",
                float(request["sz"]),
                float(request["limit_px"]),
                params,
            )
        except ccxt.NetworkError as e:
            raise APIError(f"Hyperliquid order submission failed: {e}") from e
        except ccxt.BaseError as e:
            raise VenueRejectionError(
                f"Hyperliquid rejected order: {e}",
                payload={"request": _jsonable(request), "error": str(e)},
                code=type(e).__name__,
            ) from e

        return {
            "orderId": _parse_order_id(order.get("id")),
            "status": order.get("status") or "unknown",
            "raw": order,
        }

    async def cancel_order(self, coin: str, order_id: int) -> Dict[str, Any]:
        exchange = self._get_exchange()
        try:
            return await exchange.cancel_order(str(order_id), ccxt_symbol(coin))
        except ccxt.NetworkError as e:
            raise APIError(f"Hyperliquid cancel failed: {e}") from e
        except ccxt.BaseError as e:
            raise VenueRejectionError(
                f"Hyperliquid rejected cancel of {order_id}: {e}",
                payload={"coin": coin, "order_id": order_id, "error": str(e)},
                code=type(e).__name__,
            ) from e

    async def close(self) -> None:
        """Cleanup resources."""
        if self._exchange is not None:
            await self._exchange.close()
            self._exchange = None
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def _jsonable(request: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in request.items()}
