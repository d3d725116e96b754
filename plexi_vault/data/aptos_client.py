"""
Aptos full node REST client for the vault module's view functions.

Handles:
- View calls (total_assets, total_shares, get_user_shares) returning raw fixed-point integers
- Transaction lookup by hash
"""
import asyncio
import ssl
from typing import Any, Dict, List, Optional

import aiohttp
import certifi

from plexi_vault.constants import (
    APTOS_TX_BY_HASH_ENDPOINT,
    APTOS_VIEW_ENDPOINT,
)
from plexi_vault.exceptions import APIError, SourceUnavailableError
from plexi_vault.monitoring.logger import get_logger
from plexi_vault.utils.retry import retry_on_transient_errors

logger = get_logger(__name__)


class AptosVaultReader:
    """
    Read-only view of the on-chain vault.

    Returns raw u64 values exactly as the chain reports them (fixed-point, scale 10^8);
    scaling to decimal units belongs to the accounting layer.
    """

    source_name = "chain"

    def __init__(
        self,
        node_url: str,
        module_address: str,
        module_name: str,
        timeout_seconds: float = 10.0,
    ):
        self.node_url = node_url.rstrip("/")
        self.module_address = module_address
        self.module_name = module_name
        self.timeout_seconds = timeout_seconds
        self._ssl_context: Optional[ssl.SSLContext] = None
        self._session: Optional[aiohttp.ClientSession] = None
        logger.info(
            "Aptos vault reader initialized",
            node_url=self.node_url,
            module=f"{module_address}::{module_name}",
        )

    def _function_id(self, name: str) -> str:
        return f"{self.module_address}::{self.module_name}::{name}"

    def _get_ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = ssl.create_default_context(cafile=certifi.where())
        return self._ssl_context

    def _get_session(self) -> aiohttp.ClientSession:
        """Shared session, created on first use and reopened after close()."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=self._get_ssl_context()),
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one HTTP call against the node.

        5xx, connection failures and undecodable bodies raise APIError (retryable);
        4xx raise SourceUnavailableError (e.g. module not published, resource missing).
        """
        url = f"{self.node_url}{path}"
        try:
            async with self._get_session().request(method, url, json=payload) as response:
                if response.status >= 500:
                    raise APIError(f"Aptos node error {response.status}: {await response.text()}")
                if response.status >= 400:
                    raise SourceUnavailableError(
                        self.source_name, f"HTTP {response.status}: {await response.text()}"
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise APIError(f"Aptos node request failed: {e}") from e
        except ValueError as e:
            # Body was not valid JSON
            raise APIError(f"Aptos node returned an undecodable body: {e}") from e

    @retry_on_transient_errors(max_retries=2)
    async def view(self, function: str, arguments: List[Any]) -> List[Any]:
        """Call a view function of the vault module and return the raw result list."""
        payload = {
            "function": self._function_id(function),
            "type_arguments": [],
            "arguments": arguments,
        }
        result = await self._request("POST", APTOS_VIEW_ENDPOINT, payload)
        if not isinstance(result, list):
            raise SourceUnavailableError(self.source_name, f"Unexpected view response for {function}: {result!r}")
        return result

    async def _view_u64(self, function: str, arguments: List[Any]) -> int:
        result = await self.view(function, arguments)
        raw = result[0] if result else 0
        try:
            return int(raw or 0)
        except (TypeError, ValueError) as e:
            raise SourceUnavailableError(self.source_name, f"Non-integer {function} value: {raw!r}") from e

    async def total_assets(self) -> int:
        return await self._view_u64("total_assets", [self.module_address])

    async def total_shares(self) -> int:
        return await self._view_u64("total_shares", [self.module_address])

    async def get_user_shares(self, account: str) -> int:
        return await self._view_u64("get_user_shares", [self.module_address, account])

    @retry_on_transient_errors(max_retries=2)
    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        """Fetch a transaction by hash (pending or committed)."""
        return await self._request("GET", APTOS_TX_BY_HASH_ENDPOINT.format(tx_hash=tx_hash))

