"""
Hedge order sizing: turn a desired amount plus book/instrument data into a venue-legal
(price, size) pair.

Order of operations for the price:
1. Slippage offset: 15 bps on attempt 1, +10 bps per further attempt
2. Raw price = best ask * (1 + bps / 10000)
3. Floor to the instrument tick size
4. Truncate to (max_decimals - sz_decimals) fractional digits (6 for perps, 8 for spot)
5. Round half-up to 5 significant figures; re-floor to tick if that broke alignment
6. Final floor to tick

Size is the amount truncated to ``sz_decimals`` (no tick rounding).

All arithmetic is Decimal. Any malformed input fails with ComputationError; a partial
or guessed pair is never returned.
"""
from decimal import ROUND_DOWN, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

from plexi_vault.constants import (
    BASE_SLIPPAGE_BPS,
    MAX_DECIMALS_PERP,
    MAX_DECIMALS_SPOT,
    PRICE_SIGNIFICANT_FIGURES,
    SLIPPAGE_STEP_BPS,
)
from plexi_vault.data.orderbook import L2Book, parse_l2_book
from plexi_vault.domain.models import OrderParameters
from plexi_vault.exceptions import ComputationError
from plexi_vault.execution.instrument_specs import InstrumentMeta, parse_instrument_meta
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)

_BPS_DIVISOR = Decimal("10000")


def slippage_bps(attempt: int) -> int:
    """15 bps on the first attempt, widened by 10 bps per retry."""
    if isinstance(attempt, bool) or not isinstance(attempt, int) or attempt < 1:
        raise ComputationError(f"attempt must be an integer >= 1 (got {attempt!r})")
    return BASE_SLIPPAGE_BPS + (attempt - 1) * SLIPPAGE_STEP_BPS


def floor_to_tick(value: Decimal, tick: Decimal) -> Decimal:
    """Largest multiple of ``tick`` that is <= ``value``."""
    if tick <= 0:
        raise ComputationError(f"tick size must be > 0 (got {tick})")
    return (value / tick).to_integral_value(rounding=ROUND_FLOOR) * tick


def truncate_decimals(value: Decimal, places: int) -> Decimal:
    """Drop fractional digits beyond ``places`` (toward zero)."""
    return value.quantize(Decimal(1).scaleb(-max(0, places)), rounding=ROUND_DOWN)


def round_significant(value: Decimal, figures: int) -> Decimal:
    """Round half-up to ``figures`` significant digits."""
    if value == 0:
        return value
    quantum = Decimal(1).scaleb(value.adjusted() - figures + 1)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def _canonical(value: Decimal) -> Decimal:
    # 11.010 -> 11.01, 1.2E+4 -> 12000
    if value == value.to_integral_value():
        return value.quantize(Decimal(1))
    return value.normalize()


def compute_order_parameters(
    attempt: int,
    amount: Union[Decimal, str, int, float],
    order_book: Union[L2Book, Any],
    instrument_meta: Union[InstrumentMeta, Any],
    is_perp: bool = True,
) -> OrderParameters:
    """
    Compute a tick-aligned, precision-legal limit price and a truncated size.

    Args:
        attempt: 1-based attempt number; each retry widens slippage by 10 bps
        amount: Desired size in coin units
        order_book: Parsed L2Book or raw l2Book payload ({"levels": [bids, asks]})
        instrument_meta: InstrumentMeta or raw universe entry ({"szDecimals", "priceIncrement"})
        is_perp: Perpetual (6 max decimals) vs spot (8)

    Returns:
        OrderParameters(price, size)

    The tick floor runs last, so a tick that does not divide
    10^-(maxDecimals - szDecimals) (e.g. 0.003 with a 2-decimal budget) could
    leave extra fractional digits; that case fails instead of returning an
    illegal price.

    Raises:
        ComputationError: On malformed inputs, a non-positive result, or a price
            the tick cannot express within the decimal budget
    """
    try:
        bps = slippage_bps(attempt)
        book = parse_l2_book(order_book)
        meta = instrument_meta if isinstance(instrument_meta, InstrumentMeta) else parse_instrument_meta(instrument_meta)

        qty = Decimal(str(amount))
        if not qty.is_finite() or qty <= 0:
            raise ComputationError(f"amount must be a positive number (got {amount!r})")

        tick = meta.price_increment
        max_decimals = MAX_DECIMALS_PERP if is_perp else MAX_DECIMALS_SPOT
        max_px_decimals = max(0, max_decimals - meta.sz_decimals)

        best_ask = book.best_ask
        raw_px = best_ask * (1 + Decimal(bps) / _BPS_DIVISOR)

        px = floor_to_tick(raw_px, tick)
        px = truncate_decimals(px, max_px_decimals)

        px = round_significant(px, PRICE_SIGNIFICANT_FIGURES)
        if px % tick != 0:
            px = floor_to_tick(px, tick)

        px = _canonical(floor_to_tick(px, tick))
        size = truncate_decimals(qty, meta.sz_decimals)
    except ComputationError:
        raise
    except (InvalidOperation, ArithmeticError, TypeError, ValueError, KeyError, IndexError) as e:
        logger.error("ORDER_PARAMS_FAILED", attempt=attempt, amount=str(amount), error=str(e))
        raise ComputationError(f"Failed to compute order price and size: {e}") from e

    if px <= 0:
        raise ComputationError(f"Computed non-positive price {px} (best ask {best_ask}, tick {tick})")
    px_decimals = max(0, -px.as_tuple().exponent)
    if px_decimals > max_px_decimals:
        # Tick does not divide 10^-max_px_decimals
        raise ComputationError(
            f"Tick {tick} yields price {px} with {px_decimals} decimals; at most {max_px_decimals} allowed"
        )

    logger.debug(
        "ORDER_PARAMS_COMPUTED",
        attempt=attempt,
        bps=bps,
        best_ask=str(best_ask),
        raw_px=str(raw_px),
        price=str(px),
        size=str(size),
        tick=str(tick),
        sz_decimals=meta.sz_decimals,
        is_perp=is_perp,
    )
    return OrderParameters(price=px, size=size)
