"""
Post-commit deposit hook that opens a hedge for qualifying deposits.
"""
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from plexi_vault.constants import DEFAULT_HEDGE_COIN, DEFAULT_REFERENCE_PRICE, MIN_HEDGE_DEPOSIT
from plexi_vault.domain.models import DepositResult, Transaction
from plexi_vault.execution.position_opener import PositionOpener
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)

PriceSource = Callable[[str], Awaitable[Optional[Decimal]]]


class HedgeOnDeposit:
    """
    Buys the hedge coin 1:1 with the deposit amount once the deposit is recorded.

    Never raises: every failure ends up as ``hedge_success=False`` with
    ``hedge_error`` on the deposit result.
    """

    def __init__(
        self,
        opener: PositionOpener,
        coin: str = DEFAULT_HEDGE_COIN,
        reference_price: Decimal = DEFAULT_REFERENCE_PRICE,
        price_source: Optional[PriceSource] = None,
    ):
        self.opener = opener
        self.coin = coin.upper()
        self.reference_price = Decimal(str(reference_price))
        self.price_source = price_source

    async def _reference_price(self) -> Decimal:
        if self.price_source is None:
            return self.reference_price
        try:
            price = await self.price_source(self.coin)
        except Exception as e:
            logger.warning("REFERENCE_PRICE_FALLBACK", coin=self.coin, error=str(e), fallback=str(self.reference_price))
            return self.reference_price
        if price is None or price <= 0:
            logger.warning("REFERENCE_PRICE_FALLBACK", coin=self.coin, price=price, fallback=str(self.reference_price))
            return self.reference_price
        return price

    async def __call__(self, transaction: Transaction, result: DepositResult) -> None:
        if transaction.amount < MIN_HEDGE_DEPOSIT:
            result.hedge_success = False
            logger.info(
                "HEDGE_SKIPPED_BELOW_MINIMUM",
                tx_hash=transaction.tx_hash,
                amount=str(transaction.amount),
                minimum=str(MIN_HEDGE_DEPOSIT),
            )
            return

        try:
            price = await self._reference_price()
            ack = await self.opener.open_position_on_deposit(transaction.amount, self.coin, price)
        except Exception as e:
            result.hedge_success = False
            result.hedge_error = str(e)
            logger.error(
                "DEPOSIT_HEDGE_FAILED",
                tx_hash=transaction.tx_hash,
                amount=str(transaction.amount),
                coin=self.coin,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        result.hedge_success = True
        result.hedge_order_ref = ack.order_id
        logger.info(
            "DEPOSIT_HEDGED",
            tx_hash=transaction.tx_hash,
            coin=self.coin,
            order_id=ack.order_id,
            status=ack.status,
        )
