"""
Persistence for the vault transaction ledger.

Synchronous repository functions over SQLAlchemy, plus ``SqlTransactionLedger``
which offloads them to a thread so the event loop is never blocked.
"""
import asyncio
from datetime import timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Column, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from plexi_vault.domain.models import Transaction, TransactionKind, TransactionStatus
from plexi_vault.exceptions import SourceUnavailableError, ValidationError
from plexi_vault.monitoring.logger import get_logger
from plexi_vault.storage.db import Base, Database

logger = get_logger(__name__)

_SUMMABLE_COLUMNS = ("amount", "shares")


class TransactionModel(Base):
    """ORM model for ledger transactions."""
    __tablename__ = "vault_transactions"
    __table_args__ = (
        Index("idx_tx_account", "account"),
        Index("idx_tx_kind_status", "kind", "status"),
        Index("idx_tx_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(66), nullable=False, unique=True)
    account = Column(String(66), nullable=False)
    kind = Column(String(16), nullable=False)
    amount = Column(Numeric(precision=28, scale=8), nullable=False)
    shares = Column(Numeric(precision=28, scale=8), nullable=False)
    status = Column(String(16), nullable=False, default=TransactionStatus.PENDING.value)
    block_height = Column(Integer, nullable=True)
    gas_used = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False)


def _to_model(tx: Transaction) -> TransactionModel:
    return TransactionModel(
        tx_hash=tx.tx_hash,
        account=tx.account,
        kind=tx.kind.value,
        amount=tx.amount,
        shares=tx.shares,
        status=tx.status.value,
        block_height=tx.block_height,
        gas_used=tx.gas_used,
        # Stored naive UTC
        created_at=tx.created_at.astimezone(timezone.utc).replace(tzinfo=None),
    )


def _from_model(m: TransactionModel) -> Transaction:
    return Transaction(
        tx_hash=m.tx_hash,
        account=m.account,
        kind=TransactionKind(m.kind),
        amount=Decimal(str(m.amount)),
        shares=Decimal(str(m.shares)),
        status=TransactionStatus(m.status),
        created_at=m.created_at.replace(tzinfo=timezone.utc),
        block_height=m.block_height,
        gas_used=m.gas_used,
    )


def _filtered(session, account=None, kind=None, status=None):
    query = session.query(TransactionModel)
    if account:
        query = query.filter(TransactionModel.account == account)
    if kind:
        query = query.filter(TransactionModel.kind == kind.value)
    if status:
        query = query.filter(TransactionModel.status == status.value)
    return query


# Repository Functions
def save_transaction(db: Database, tx: Transaction) -> Transaction:
    """Insert a ledger record. Raises ValidationError on a duplicate hash."""
    try:
        with db.get_session() as session:
            session.add(_to_model(tx))
    except IntegrityError as e:
        raise ValidationError(f"Transaction {tx.tx_hash} already recorded") from e
    return tx


def get_transaction(db: Database, tx_hash: str) -> Optional[Transaction]:
    with db.get_session() as session:
        model = session.query(TransactionModel).filter(TransactionModel.tx_hash == tx_hash).first()
        return _from_model(model) if model else None


def list_transactions(
    db: Database,
    account: Optional[str] = None,
    kind: Optional[TransactionKind] = None,
    status: Optional[TransactionStatus] = None,
    offset: int = 0,
    limit: Optional[int] = None,
) -> List[Transaction]:
    """List transactions newest first."""
    with db.get_session() as session:
        query = _filtered(session, account, kind, status).order_by(
            TransactionModel.created_at.desc(), TransactionModel.id.desc()
        )
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [_from_model(m) for m in query.all()]


def count_transactions(
    db: Database,
    account: Optional[str] = None,
    kind: Optional[TransactionKind] = None,
    status: Optional[TransactionStatus] = None,
) -> int:
    with db.get_session() as session:
        return _filtered(session, account, kind, status).count()


def sum_completed(
    db: Database,
    kind: TransactionKind,
    column: str,
    account: Optional[str] = None,
) -> Decimal:
    """Sum ``amount`` or ``shares`` over completed transactions of one kind."""
    if column not in _SUMMABLE_COLUMNS:
        raise ValueError(f"Cannot aggregate column {column!r}")
    target = getattr(TransactionModel, column)
    with db.get_session() as session:
        query = session.query(func.coalesce(func.sum(target), 0)).filter(
            TransactionModel.kind == kind.value,
            TransactionModel.status == TransactionStatus.COMPLETED.value,
        )
        if account:
            query = query.filter(TransactionModel.account == account)
        total = query.scalar()
    return Decimal(str(total or 0))


def delete_account_transactions(db: Database, account: str) -> int:
    """Administrative reset: physically delete every record of an account."""
    with db.get_session() as session:
        deleted = (
            session.query(TransactionModel)
            .filter(TransactionModel.account == account)
            .delete(synchronize_session=False)
        )
    logger.warning("LEDGER_ACCOUNT_RESET", account=account, deleted=deleted)
    return deleted


class SqlTransactionLedger:
    """
    Async ledger backed by the SQLAlchemy repository functions.

    Read failures surface as SourceUnavailableError("ledger", ...).
    """

    source_name = "ledger"

    def __init__(self, db: Database):
        self.db = db

    async def _read(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, self.db, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("LEDGER_READ_FAILED", operation=fn.__name__, error=str(e))
            raise SourceUnavailableError(self.source_name, str(e)) from e

    async def add(self, transaction: Transaction) -> Transaction:
        saved = await asyncio.to_thread(save_transaction, self.db, transaction)
        logger.info(
            "LEDGER_TX_RECORDED",
            tx_hash=transaction.tx_hash,
            account=transaction.account,
            kind=transaction.kind.value,
            amount=str(transaction.amount),
            shares=str(transaction.shares),
            status=transaction.status.value,
        )
        return saved

    async def get(self, tx_hash: str) -> Optional[Transaction]:
        return await self._read(get_transaction, tx_hash)

    async def exists(self, tx_hash: str) -> bool:
        return await self.get(tx_hash) is not None

    async def sum_completed(
        self,
        kind: TransactionKind,
        column: str,
        account: Optional[str] = None,
    ) -> Decimal:
        return await self._read(sum_completed, kind, column, account=account)

    async def list(
        self,
        account: Optional[str] = None,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        return await self._read(
            list_transactions, account=account, kind=kind, status=status, offset=offset, limit=limit
        )

    async def count(
        self,
        account: Optional[str] = None,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
    ) -> int:
        return await self._read(count_transactions, account=account, kind=kind, status=status)

    async def delete_account(self, account: str) -> int:
        return await asyncio.to_thread(delete_account_transactions, self.db, account)
