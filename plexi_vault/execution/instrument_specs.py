"""
Instrument metadata registry: single source of truth for venue precision rules.

Loads the Hyperliquid ``meta`` universe, parses each entry into an explicit
``InstrumentMeta`` and caches it in memory with a TTL.
Used for: tick-size flooring and decimal-precision limits in the hedge sizer.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional

from plexi_vault.constants import DEFAULT_PRICE_INCREMENT, DEFAULT_SZ_DECIMALS
from plexi_vault.exceptions import ComputationError
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)

CACHE_TTL_SECONDS = 15 * 60


@dataclass(frozen=True)
class InstrumentMeta:
    """Precision rules for one instrument."""

    name: str  # e.g. APT
    sz_decimals: int = DEFAULT_SZ_DECIMALS
    price_increment: Decimal = DEFAULT_PRICE_INCREMENT  # tick size
    max_leverage: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "szDecimals": self.sz_decimals,
            "priceIncrement": str(self.price_increment),
            "maxLeverage": self.max_leverage,
        }


def parse_instrument_meta(raw: Any) -> InstrumentMeta:
    """
    Parse one universe entry ({"name", "szDecimals", "priceIncrement"?, "maxLeverage"?}).

    Missing ``szDecimals`` / ``priceIncrement`` fall back to 4 / 0.01; present but
    malformed values raise ComputationError instead of leaking NaN into sizing.
    """
    if not isinstance(raw, dict):
        raise ComputationError(f"Instrument metadata must be a mapping, got {type(raw).__name__}")

    name = str(raw.get("name") or "").strip().upper()

    sz_raw = raw.get("szDecimals")
    if sz_raw is None:
        sz_decimals = DEFAULT_SZ_DECIMALS
    else:
        if isinstance(sz_raw, bool):
            raise ComputationError(f"Invalid szDecimals for {name or '?'}: {sz_raw!r}")
        try:
            sz_decimals = int(sz_raw)
        except (TypeError, ValueError) as e:
            raise ComputationError(f"Invalid szDecimals for {name or '?'}: {sz_raw!r}") from e
        if sz_decimals < 0 or Decimal(str(sz_raw)) != sz_decimals:
            raise ComputationError(f"Invalid szDecimals for {name or '?'}: {sz_raw!r}")

    tick_raw = raw.get("priceIncrement")
    if tick_raw is None or tick_raw == "":
        price_increment = DEFAULT_PRICE_INCREMENT
    else:
        try:
            price_increment = Decimal(str(tick_raw))
        except (InvalidOperation, ValueError) as e:
            raise ComputationError(f"Invalid priceIncrement for {name or '?'}: {tick_raw!r}") from e
        if not price_increment.is_finite() or price_increment <= 0:
            raise ComputationError(f"Invalid priceIncrement for {name or '?'}: {tick_raw!r}")

    max_lev = raw.get("maxLeverage")
    try:
        max_leverage = int(max_lev) if max_lev is not None else None
    except (TypeError, ValueError):
        max_leverage = None

    return InstrumentMeta(
        name=name,
        sz_decimals=sz_decimals,
        price_increment=price_increment,
        max_leverage=max_leverage,
    )


class InstrumentRegistry:
    """
    In-memory cache of instrument metadata keyed by coin.

    ``get_meta_fn`` returns the venue's meta payload ({"universe": [...]}).
    """

    def __init__(
        self,
        get_meta_fn: Callable[[], Awaitable[Dict[str, Any]]],
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
    ):
        self._get_meta_fn = get_meta_fn
        self._cache_ttl = cache_ttl_seconds
        self._by_name: Dict[str, InstrumentMeta] = {}
        self._loaded_at: float = 0

    def _is_stale(self) -> bool:
        if not self._by_name or self._loaded_at == 0:
            return True
        return (time.monotonic() - self._loaded_at) >= self._cache_ttl

    def _index(self, metas: List[InstrumentMeta]) -> None:
        self._by_name = {m.name: m for m in metas if m.name}

    async def refresh(self, force: bool = False) -> None:
        """Load the universe from the venue when empty or stale."""
        if not force and not self._is_stale():
            return
        payload = await self._get_meta_fn()
        universe = payload.get("universe") if isinstance(payload, dict) else None
        if not isinstance(universe, list):
            raise ComputationError("Venue meta payload has no 'universe' list")

        metas: List[InstrumentMeta] = []
        for entry in universe:
            try:
                metas.append(parse_instrument_meta(entry))
            except ComputationError as e:
                logger.warning("INSTRUMENT_META_SKIPPED", entry=str(entry)[:120], error=str(e))
        self._index(metas)
        self._loaded_at = time.monotonic()
        logger.info("InstrumentRegistry refreshed", count=len(self._by_name))

    async def get_meta(self, coin: str) -> InstrumentMeta:
        """Metadata for a coin ('APT' or 'APT-PERP'). Unknown coins raise ComputationError."""
        await self.refresh()
        name = coin.strip().upper()
        if name.endswith("-PERP"):
            name = name[: -len("-PERP")]
        meta = self._by_name.get(name)
        if meta is None:
            raise ComputationError(f"No instrument metadata for {coin}")
        return meta
