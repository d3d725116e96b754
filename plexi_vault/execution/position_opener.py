"""
Hedge position orchestration.

Handles:
- Deposit-triggered hedges (fixed slippage on a reference price)
- IOC and add-liquidity-only perp orders in the venue wire shape
- Book-driven sized orders through the hedge sizer
- Advisory post-submission verification against open orders and recent fills
- HedgeAttempt state tracking for every submission
"""
import time
from collections import deque
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from plexi_vault.constants import (
    DEFAULT_HEDGE_COIN,
    DEPOSIT_HEDGE_SLIPPAGE,
    MIN_HEDGE_DEPOSIT,
    MIN_ORDER_SIZE,
    PERP_SUFFIX,
    RECENT_FILLS_WINDOW_SECONDS,
    TIF_ALO,
    TIF_IOC,
)
from plexi_vault.domain.models import (
    HedgeAttempt,
    HedgeState,
    OrderAck,
    OrderParameters,
    OrderVerification,
)
from plexi_vault.domain.protocols import OrderGateway, VenueReader
from plexi_vault.exceptions import ValidationError, VenueRejectionError
from plexi_vault.execution.hedge_sizer import compute_order_parameters
from plexi_vault.execution.instrument_specs import InstrumentRegistry
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)

Number = Union[Decimal, str, int, float]

_SIZE_QUANTUM = Decimal("0.001")
_PRICE_QUANTUM = Decimal("0.01")
_HEDGE_AMOUNT_QUANTUM = Decimal("0.0001")


def _decimal(value: Number, name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{name} must be numeric (got {value!r})") from e
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite (got {value!r})")
    return result


def _fill_time_ms(fill: Dict[str, Any]) -> float:
    """Fill timestamp in epoch ms; malformed or missing times read as 0 (never recent)."""
    try:
        return float(fill.get("time") or 0)
    except (TypeError, ValueError):
        return 0.0


def perp_coin(coin: str) -> str:
    """'apt' / 'APT' / 'APT-PERP' -> 'APT-PERP'."""
    coin = coin.strip().upper()
    return coin if coin.endswith(PERP_SUFFIX) else f"{coin}{PERP_SUFFIX}"


class PositionOpener:
    """
    Places hedge orders on the perp venue and checks them afterwards.

    The order gateway and venue reader are injected (usually the same
    HyperliquidClient); nothing here reads configuration or credentials.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        venue: VenueReader,
        account: Optional[str] = None,
        instruments: Optional[InstrumentRegistry] = None,
        clock: Callable[[], float] = time.time,
        history_size: int = 100,
    ):
        """
        Args:
            gateway: Order submission / cancellation
            venue: Book, meta, open orders and fills
            account: Default venue account for verification and account queries
            instruments: Instrument metadata cache (built from ``venue.get_meta`` if omitted)
            clock: Wall clock in epoch seconds
            history_size: Number of recent HedgeAttempts kept for inspection
        """
        self.gateway = gateway
        self.venue = venue
        self.account = account
        self.instruments = instruments or InstrumentRegistry(venue.get_meta)
        self._clock = clock
        self.attempts: Deque[HedgeAttempt] = deque(maxlen=history_size)

    def _require_account(self, account: Optional[str]) -> str:
        account = account or self.account
        if not account:
            raise ValidationError("Venue account address is required")
        return account

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _submit(
        self,
        coin: str,
        size: Number,
        price: Number,
        is_buy: bool,
        reduce_only: bool,
        tif: str,
    ) -> OrderAck:
        sz = _decimal(size, "size")
        px = _decimal(price, "price")
        if sz < MIN_ORDER_SIZE:
            raise ValidationError(f"Order size {sz} is below the minimum of {MIN_ORDER_SIZE}")
        if px <= 0:
            raise ValidationError(f"Order price must be > 0 (got {px})")

        symbol = perp_coin(coin)
        attempt = HedgeAttempt(coin=symbol, size=sz, price=px, is_buy=is_buy, tif=tif)
        self.attempts.append(attempt)

        request: Dict[str, Any] = {
            "coin": symbol,
            "is_buy": is_buy,
            "sz": sz,
            "limit_px": px,
            "order_type": {"limit": {"tif": tif}},
            "reduce_only": reduce_only,
        }

        attempt.transition(HedgeState.SUBMITTED)
        logger.info(
            "HEDGE_ORDER_SUBMITTED",
            coin=symbol,
            side="buy" if is_buy else "sell",
            size=str(sz),
            limit_px=str(px),
            tif=tif,
            reduce_only=reduce_only,
        )
        try:
            response = await self.gateway.place_order(request)
        except VenueRejectionError as e:
            attempt.error = str(e)
            attempt.transition(HedgeState.REJECTED)
            logger.error("HEDGE_ORDER_REJECTED", coin=symbol, error=str(e), payload=e.payload, code=e.code)
            raise
        except Exception as e:
            attempt.error = str(e)
            attempt.transition(HedgeState.REJECTED)
            logger.error("HEDGE_ORDER_FAILED", coin=symbol, error=str(e), error_type=type(e).__name__)
            raise

        ack = OrderAck(
            order_id=response.get("orderId"),
            status=str(response.get("status") or "unknown"),
            raw=response,
        )
        attempt.order_id = ack.order_id
        attempt.transition(HedgeState.ACKNOWLEDGED)
        logger.info("HEDGE_ORDER_ACKNOWLEDGED", coin=symbol, order_id=ack.order_id, status=ack.status)
        return ack

    async def place_ioc_perp_order(
        self,
        coin: str,
        size: Number,
        price: Number,
        is_buy: bool = True,
        reduce_only: bool = False,
    ) -> OrderAck:
        """
        Immediate-or-cancel limit order on the coin's perpetual.

        Raises:
            ValidationError: size below 0.001 (no network call is made)
            VenueRejectionError: the venue refused the order
        """
        return await self._submit(coin, size, price, is_buy, reduce_only, TIF_IOC)

    async def place_limit_order(
        self,
        coin: str,
        size: Number,
        price: Number,
        is_buy: bool = True,
        reduce_only: bool = False,
    ) -> OrderAck:
        """Add-liquidity-only limit order (rejected by the venue if it would cross)."""
        return await self._submit(coin, size, price, is_buy, reduce_only, TIF_ALO)

    async def open_position_on_deposit(
        self,
        deposit_amount: Number,
        coin: str = DEFAULT_HEDGE_COIN,
        reference_price: Optional[Number] = None,
    ) -> OrderAck:
        """
        Buy ``deposit_amount`` coin units at reference price + 0.15%.

        The coin amount equals the deposit amount (1:1), rounded to 3 decimals with a
        0.001 floor; the price is rounded to 2 decimals.
        """
        amount = _decimal(deposit_amount, "deposit_amount")
        if amount < MIN_HEDGE_DEPOSIT:
            raise ValidationError(
                f"Deposit amount {amount} is below the {MIN_HEDGE_DEPOSIT} minimum required to open a hedge"
            )
        if reference_price is None:
            raise ValidationError("reference_price is required to open a hedge")
        ref = _decimal(reference_price, "reference_price")
        if ref <= 0:
            raise ValidationError(f"reference_price must be > 0 (got {ref})")

        size = max(amount, MIN_ORDER_SIZE).quantize(_SIZE_QUANTUM, rounding=ROUND_HALF_UP)
        price = (ref * DEPOSIT_HEDGE_SLIPPAGE).quantize(_PRICE_QUANTUM, rounding=ROUND_HALF_UP)

        logger.info(
            "DEPOSIT_HEDGE_REQUESTED",
            coin=coin,
            deposit_amount=str(amount),
            size=str(size),
            reference_price=str(ref),
            limit_px=str(price),
        )
        return await self.place_ioc_perp_order(coin, size, price, is_buy=True)

    async def open_sized_position(
        self,
        coin: str,
        amount: Number,
        attempt: int = 1,
        is_perp: bool = True,
    ) -> Tuple[OrderParameters, OrderAck]:
        """
        Size a buy against the live book and submit one IOC order.

        A single submission per call: the caller retries with ``attempt + 1`` to
        widen slippage.
        """
        book = await self.venue.get_l2_book(coin)
        meta = await self.instruments.get_meta(coin)
        params = compute_order_parameters(attempt, amount, book, meta, is_perp=is_perp)
        ack = await self.place_ioc_perp_order(coin, params.size, params.price, is_buy=True)
        return params, ack

    # ------------------------------------------------------------------
    # Verification and account queries
    # ------------------------------------------------------------------

    async def verify_order_on_chain(
        self,
        order_id: int,
        coin: str = DEFAULT_HEDGE_COIN,
        account: Optional[str] = None,
    ) -> OrderVerification:
        """
        Look the order up in open orders and recent fills.

        Advisory only: absence from open orders does not prove a fill.
        """
        account = self._require_account(account)
        open_orders = await self.venue.get_open_orders(account)
        fills = await self.venue.get_user_fills(account)

        order_found = any(o.get("oid") == order_id for o in open_orders or [])

        symbol = perp_coin(coin)
        base = symbol[: -len(PERP_SUFFIX)]
        cutoff_ms = (self._clock() - RECENT_FILLS_WINDOW_SECONDS) * 1000
        recent_fills = [
            f for f in fills or []
            if f.get("coin") in (symbol, base) and _fill_time_ms(f) > cutoff_ms
        ]
        our_fill = next((f for f in fills or [] if f.get("oid") == order_id), None)

        logger.info(
            "HEDGE_ORDER_VERIFIED",
            order_id=order_id,
            coin=symbol,
            order_found=order_found,
            recent_fills=len(recent_fills),
            filled=our_fill is not None,
        )
        return OrderVerification(order_found=order_found, recent_fills=recent_fills, our_fill=our_fill)

    @staticmethod
    def calculate_hedge_amount(total_usd_value: Number, coin_usd: Number) -> Decimal:
        """Coin units worth ``total_usd_value`` at ``coin_usd``, rounded to 4 decimals."""
        total = _decimal(total_usd_value, "total_usd_value")
        price = _decimal(coin_usd, "coin_usd")
        if price <= 0:
            raise ValidationError(f"coin_usd must be > 0 (got {price})")
        return (total / price).quantize(_HEDGE_AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)

    async def get_user_open_orders(self, account: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.venue.get_open_orders(self._require_account(account))

    async def get_user_fills(self, account: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.venue.get_user_fills(self._require_account(account))

    async def cancel_order(self, coin: str, order_id: int) -> Dict[str, Any]:
        logger.info("HEDGE_ORDER_CANCEL", coin=perp_coin(coin), order_id=order_id)
        return await self.gateway.cancel_order(perp_coin(coin), order_id)

    async def cancel_all_orders(self, coin: Optional[str] = None, account: Optional[str] = None) -> int:
        """Cancel every open order (optionally only for ``coin``). Returns the number cancelled."""
        open_orders = await self.get_user_open_orders(account)
        base = perp_coin(coin)[: -len(PERP_SUFFIX)] if coin else None
        cancelled = 0
        for order in open_orders:
            order_coin = str(order.get("coin") or "")
            if base and order_coin.upper() not in (base, f"{base}{PERP_SUFFIX}"):
                continue
            await self.cancel_order(order_coin, order["oid"])
            cancelled += 1
        logger.info("HEDGE_ORDERS_CANCELLED", coin=coin, cancelled=cancelled)
        return cancelled
