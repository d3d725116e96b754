"""
Domain protocols (interfaces) for dependency inversion.

The accounting engine and the position opener depend on these contracts,
not on the concrete Aptos / Hyperliquid / SQLAlchemy implementations.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from plexi_vault.domain.models import (
    DepositResult,
    Transaction,
    TransactionKind,
    TransactionStatus,
)


@runtime_checkable
class ChainReader(Protocol):
    """Read-only vault view functions. Values are raw fixed-point integers (scale 10^8)."""

    async def total_assets(self) -> int: ...

    async def total_shares(self) -> int: ...

    async def get_user_shares(self, account: str) -> int: ...

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]: ...


@runtime_checkable
class VenueReader(Protocol):
    """Read-only market data and account queries against the exchange."""

    async def get_l2_book(self, coin: str) -> Dict[str, Any]: ...

    async def get_meta(self) -> Dict[str, Any]: ...

    async def get_all_mids(self) -> Dict[str, str]: ...

    async def get_open_orders(self, account: str) -> List[Dict[str, Any]]: ...

    async def get_user_fills(self, account: str) -> List[Dict[str, Any]]: ...


@runtime_checkable
class OrderGateway(Protocol):
    """Order submission and cancellation against the exchange."""

    async def place_order(self, request: Dict[str, Any]) -> Dict[str, Any]: ...

    async def cancel_order(self, coin: str, order_id: int) -> Dict[str, Any]: ...


@runtime_checkable
class TransactionLedger(Protocol):
    """Durable, append-only store of deposit/withdraw records."""

    async def add(self, transaction: Transaction) -> Transaction: ...

    async def get(self, tx_hash: str) -> Optional[Transaction]: ...

    async def exists(self, tx_hash: str) -> bool: ...

    async def sum_completed(
        self,
        kind: TransactionKind,
        column: str,
        account: Optional[str] = None,
    ) -> Decimal: ...

    async def list(
        self,
        account: Optional[str] = None,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Transaction]: ...

    async def count(
        self,
        account: Optional[str] = None,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
    ) -> int: ...

    async def delete_account(self, account: str) -> int: ...


@runtime_checkable
class DepositHook(Protocol):
    """
    Post-commit side effect of a recorded deposit.

    Runs after the ledger write; may annotate the result but must never raise.
    """

    async def __call__(self, transaction: Transaction, result: DepositResult) -> None: ...
