"""
L2 order book snapshot parsing.

The venue returns ``{"coin", "time", "levels": [bids, asks]}`` where each level is
``{"px", "sz", "n"}`` with string prices. This module turns that payload into an
explicit, validated type so sizing never does arithmetic on missing fields.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from plexi_vault.exceptions import ComputationError


@dataclass(frozen=True)
class BookLevel:
    px: Decimal
    sz: Decimal
    n: int = 0


@dataclass(frozen=True)
class L2Book:
    """
    Minimal two-sided book snapshot.

    NOTE: Not a depth-of-book engine; only the levels the venue returned.
    """
    coin: str
    bids: List[BookLevel]
    asks: List[BookLevel]
    timestamp: Optional[datetime] = None

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].px if self.bids else None

    @property
    def best_ask(self) -> Decimal:
        """Best ask: first entry of the second level array."""
        if not self.asks:
            raise ComputationError(f"Order book for {self.coin or '?'} has no asks")
        return self.asks[0].px

    def spread_pct(self) -> Optional[Decimal]:
        if self.best_bid is None or not self.asks:
            return None
        return (self.best_ask - self.best_bid) / self.best_ask


def _parse_level(raw: Any, where: str) -> BookLevel:
    if not isinstance(raw, dict) or "px" not in raw:
        raise ComputationError(f"Malformed book level at {where}: {raw!r}")
    try:
        px = Decimal(str(raw["px"]))
        sz = Decimal(str(raw.get("sz", "0")))
    except (InvalidOperation, ValueError) as e:
        raise ComputationError(f"Non-numeric book level at {where}: {raw!r}") from e
    if not px.is_finite() or px <= 0:
        raise ComputationError(f"Invalid price at {where}: {raw['px']!r}")
    return BookLevel(px=px, sz=sz, n=int(raw.get("n") or 0))


def parse_l2_book(raw: Any) -> L2Book:
    """Validate and convert a raw l2Book payload. Shape mismatches raise ComputationError."""
    if isinstance(raw, L2Book):
        return raw
    if not isinstance(raw, dict):
        raise ComputationError(f"Order book must be a mapping, got {type(raw).__name__}")
    levels = raw.get("levels")
    if not isinstance(levels, (list, tuple)) or len(levels) < 2:
        raise ComputationError("Order book must carry two level arrays (bids, asks)")
    bids_raw, asks_raw = levels[0], levels[1]
    if not isinstance(bids_raw, (list, tuple)) or not isinstance(asks_raw, (list, tuple)):
        raise ComputationError("Order book level arrays must be lists")

    bids = [_parse_level(lvl, f"bids[{i}]") for i, lvl in enumerate(bids_raw)]
    asks = [_parse_level(lvl, f"asks[{i}]") for i, lvl in enumerate(asks_raw)]

    ts = None
    if raw.get("time") is not None:
        try:
            ts = datetime.fromtimestamp(int(raw["time"]) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            ts = None

    return L2Book(coin=str(raw.get("coin") or ""), bids=bids, asks=asks, timestamp=ts)
