"""
Vault data sources tried in order by the accounting engine.

Each source answers with a SourceResult instead of raising for "data not
available", so the engine can walk the list without exception-driven control
flow. Only the caller decides whether running out of sources is an error.
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Generic, Optional, Protocol, TypeVar

from plexi_vault.constants import CHAIN_FIXED_POINT_SCALE
from plexi_vault.domain.models import TransactionKind, VaultState
from plexi_vault.domain.protocols import ChainReader, TransactionLedger
from plexi_vault.exceptions import OperationalError, SourceUnavailableError
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_ZERO = Decimal("0")

# Chain read failures that hand over to the next source; ValueError covers undecodable node payloads
_CHAIN_READ_ERRORS = (OperationalError, asyncio.TimeoutError, ConnectionError, ValueError)


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """Outcome of one source query: a value, or the reason there is none."""
    source: str
    ok: bool
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def found(cls, source: str, value: T) -> "SourceResult[T]":
        return cls(source=source, ok=True, value=value)

    @classmethod
    def unavailable(cls, source: str, reason: str) -> "SourceResult[T]":
        return cls(source=source, ok=False, reason=reason)


class VaultDataSource(Protocol):
    name: str

    async def vault_state(self) -> SourceResult[VaultState]: ...

    async def user_shares(self, account: str) -> SourceResult[Decimal]: ...


def from_fixed_point(raw: int) -> Decimal:
    """Chain u64 (scale 10^8) -> Decimal units."""
    return Decimal(int(raw)) / CHAIN_FIXED_POINT_SCALE


class ChainVaultSource:
    """On-chain vault view functions. Preferred whenever it has data."""

    name = "chain"

    def __init__(self, reader: ChainReader):
        self.reader = reader

    async def vault_state(self) -> SourceResult[VaultState]:
        try:
            # Sequential reads; the two values are not an atomic snapshot
            raw_assets = await self.reader.total_assets()
            raw_shares = await self.reader.total_shares()
        except _CHAIN_READ_ERRORS as e:
            logger.info("Vault state not available on chain, falling back", error=str(e))
            return SourceResult.unavailable(self.name, str(e))

        if raw_assets == 0 and raw_shares == 0:
            return SourceResult.unavailable(self.name, "no meaningful on-chain data")

        state = VaultState.from_totals(
            from_fixed_point(raw_assets), from_fixed_point(raw_shares), source=self.name
        )
        return SourceResult.found(self.name, state)

    async def user_shares(self, account: str) -> SourceResult[Decimal]:
        try:
            raw = await self.reader.get_user_shares(account)
        except _CHAIN_READ_ERRORS as e:
            logger.info("User shares not available on chain, falling back", account=account, error=str(e))
            return SourceResult.unavailable(self.name, str(e))
        # A successful read is authoritative, zero included
        return SourceResult.found(self.name, max(_ZERO, from_fixed_point(raw)))


class LedgerVaultSource:
    """
    Aggregation over completed ledger transactions.

    Deposits minus withdrawals, for both shares and amounts, floored at zero.
    """

    name = "ledger"

    def __init__(self, ledger: TransactionLedger):
        self.ledger = ledger

    async def _net(self, column: str, account: Optional[str] = None) -> Decimal:
        deposited = await self.ledger.sum_completed(TransactionKind.DEPOSIT, column, account=account)
        withdrawn = await self.ledger.sum_completed(TransactionKind.WITHDRAW, column, account=account)
        return max(_ZERO, deposited - withdrawn)

    async def vault_state(self) -> SourceResult[VaultState]:
        try:
            shares = await self._net("shares")
            assets = await self._net("amount")
        except SourceUnavailableError as e:
            return SourceResult.unavailable(self.name, e.reason)
        return SourceResult.found(self.name, VaultState.from_totals(assets, shares, source=self.name))

    async def user_shares(self, account: str) -> SourceResult[Decimal]:
        try:
            shares = await self._net("shares", account=account)
        except SourceUnavailableError as e:
            return SourceResult.unavailable(self.name, e.reason)
        return SourceResult.found(self.name, shares)
