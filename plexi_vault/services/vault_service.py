"""
Vault accounting engine.

Derives vault state and share balances (chain first, ledger aggregation as
fallback), records deposits and withdrawals, and runs post-commit deposit hooks.
Hedging is a hook: nothing here talks to the exchange.
"""
import asyncio
import math
import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from plexi_vault.constants import (
    ACCOUNT_HISTORY_LIMIT,
    DEFAULT_EVENTS_LIMIT,
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    RESET_SHARE_THRESHOLD,
    SHARES_PER_UNIT,
    TX_CONFIRMATION_POLL_SECONDS,
    TX_CONFIRMATION_TIMEOUT_SECONDS,
)
from plexi_vault.domain.models import (
    AccountPosition,
    DepositResult,
    Transaction,
    TransactionKind,
    TransactionStatus,
    VaultState,
    WithdrawResult,
    is_valid_tx_hash,
    normalize_address,
)
from plexi_vault.domain.protocols import ChainReader, DepositHook, TransactionLedger
from plexi_vault.exceptions import (
    InsufficientSharesError,
    OperationalError,
    SourceUnavailableError,
    ValidationError,
)
from plexi_vault.monitoring.logger import get_logger
from plexi_vault.services.sources import (
    ChainVaultSource,
    LedgerVaultSource,
    SourceResult,
    VaultDataSource,
)

logger = get_logger(__name__)

Number = Union[Decimal, str, int, float]

_EVENT_NAMES = {
    TransactionKind.DEPOSIT: "DepositEvent",
    TransactionKind.WITHDRAW: "WithdrawEvent",
}


def _positive_decimal(value: Number, name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{name} must be a number (got {value!r})") from e
    if not result.is_finite() or result <= 0:
        raise ValidationError(f"{name} must be greater than 0 (got {value!r})")
    return result


def generate_tx_hash() -> str:
    """Random 0x-prefixed 64-hex reference for records that arrive without one."""
    return "0x" + secrets.token_hex(32)


class VaultService:
    """
    Accounting over an ordered list of vault data sources plus the ledger.

    Example:
        service = VaultService(ledger, chain=AptosVaultReader(...), hooks=[hedge_hook])
        result = await service.record_deposit(account, Decimal("10"))
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        chain: Optional[ChainReader] = None,
        sources: Optional[Sequence[VaultDataSource]] = None,
        hooks: Optional[Sequence[DepositHook]] = None,
        cache_ttl_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            ledger: Durable transaction store
            chain: On-chain vault reader; when omitted only the ledger answers
            sources: Explicit source order (defaults to chain, then ledger)
            hooks: Post-commit deposit hooks, run in order
            cache_ttl_seconds: Vault state cache lifetime (0 disables)
        """
        self.ledger = ledger
        self.chain = chain
        self._ledger_source = LedgerVaultSource(ledger)
        if sources is None:
            sources = ([ChainVaultSource(chain)] if chain is not None else []) + [self._ledger_source]
        self.sources: List[VaultDataSource] = list(sources)
        self.hooks: List[DepositHook] = list(hooks or [])
        self.cache_ttl_seconds = cache_ttl_seconds
        self._sleep = sleep
        self._cached_state: Optional[VaultState] = None
        self._cached_at: float = 0.0

        logger.info(
            "VaultService initialized",
            sources=[s.name for s in self.sources],
            hooks=[type(h).__name__ for h in self.hooks],
        )

    def add_hook(self, hook: DepositHook) -> None:
        self.hooks.append(hook)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def invalidate_cache(self) -> None:
        self._cached_state = None
        self._cached_at = 0.0

    async def get_vault_state(self) -> VaultState:
        """
        Total assets, total shares and share price from the first source with data.

        Raises:
            SourceUnavailableError: no source could answer
        """
        if (
            self._cached_state is not None
            and self.cache_ttl_seconds > 0
            and (time.monotonic() - self._cached_at) < self.cache_ttl_seconds
        ):
            return self._cached_state

        results: List[SourceResult[VaultState]] = []
        for source in self.sources:
            result = await source.vault_state()
            if result.ok:
                self._cached_state = result.value
                self._cached_at = time.monotonic()
                logger.debug("VAULT_STATE", **result.value.to_dict())
                return result.value
            results.append(result)

        raise SourceUnavailableError("vault", _describe_failures(results))

    async def get_user_shares(self, account: str) -> Decimal:
        """Share balance of ``account`` from the first source that can answer."""
        account = normalize_address(account)
        results: List[SourceResult[Decimal]] = []
        for source in self.sources:
            result = await source.user_shares(account)
            if result.ok:
                return result.value
            results.append(result)
        raise SourceUnavailableError("vault", _describe_failures(results))

    async def get_ledger_shares(self, account: str) -> Decimal:
        """Share balance of ``account`` from ledger records only."""
        result = await self._ledger_source.user_shares(normalize_address(account))
        if not result.ok:
            raise SourceUnavailableError(result.source, result.reason or "unknown")
        return result.value

    async def get_account_position(self, account: str) -> AccountPosition:
        """Ledger share balance valued at the current vault share price, plus recent history."""
        account = normalize_address(account)
        shares = await self.get_ledger_shares(account)
        state = await self.get_vault_state()
        history = await self.ledger.list(account=account, limit=ACCOUNT_HISTORY_LIMIT)
        return AccountPosition(
            account=account,
            shares=shares,
            share_price=state.share_price,
            transactions=history,
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def _resolve_tx_hash(self, tx_hash: Optional[str]) -> str:
        if tx_hash is None:
            return generate_tx_hash()
        if not is_valid_tx_hash(tx_hash):
            raise ValidationError(f"Invalid transaction hash format: {tx_hash!r}")
        tx_hash = tx_hash.strip().lower()
        if await self.ledger.exists(tx_hash):
            raise ValidationError(f"Transaction {tx_hash} already recorded")
        return tx_hash

    async def record_deposit(
        self,
        account: str,
        amount: Number,
        tx_hash: Optional[str] = None,
    ) -> DepositResult:
        """
        Record a completed deposit and mint ``amount * SHARES_PER_UNIT`` shares.

        Post-commit hooks (hedging) run afterwards; their failures are reported on
        the result and never undo the record.

        Raises:
            ValidationError: bad address, non-positive amount or duplicate hash
        """
        account = normalize_address(account)
        amount = _positive_decimal(amount, "amount")
        tx_hash = await self._resolve_tx_hash(tx_hash)
        shares = amount * SHARES_PER_UNIT

        transaction = Transaction(
            tx_hash=tx_hash,
            account=account,
            kind=TransactionKind.DEPOSIT,
            amount=amount,
            shares=shares,
            status=TransactionStatus.COMPLETED,
        )
        await self.ledger.add(transaction)
        self.invalidate_cache()
        logger.info("DEPOSIT_RECORDED", tx_hash=tx_hash, account=account, amount=str(amount), shares=str(shares))

        result = DepositResult(tx_hash=tx_hash, shares_minted=shares, success=True)
        await self._run_deposit_hooks(transaction, result)
        return result

    async def _run_deposit_hooks(self, transaction: Transaction, result: DepositResult) -> None:
        for hook in self.hooks:
            try:
                await hook(transaction, result)
            except Exception as e:
                # The deposit is already committed
                result.hedge_success = False
                result.hedge_error = result.hedge_error or str(e)
                logger.error(
                    "DEPOSIT_HOOK_FAILED",
                    hook=type(hook).__name__,
                    tx_hash=transaction.tx_hash,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def record_withdraw(
        self,
        account: str,
        shares: Number,
        tx_hash: Optional[str] = None,
    ) -> WithdrawResult:
        """
        Record a completed withdrawal of ``shares`` (paid out 1:1).

        Raises:
            InsufficientSharesError: more shares than the ledger balance; nothing is recorded
            ValidationError: bad address, non-positive shares or duplicate hash
        """
        account = normalize_address(account)
        shares = _positive_decimal(shares, "shares")
        available = await self.get_ledger_shares(account)
        if shares > available:
            logger.warning(
                "WITHDRAW_REJECTED_INSUFFICIENT_SHARES",
                account=account,
                requested=str(shares),
                available=str(available),
            )
            raise InsufficientSharesError(account, shares, available)

        tx_hash = await self._resolve_tx_hash(tx_hash)
        # TODO: pay out shares * share_price once withdrawals are priced against vault NAV
        amount = shares
        transaction = Transaction(
            tx_hash=tx_hash,
            account=account,
            kind=TransactionKind.WITHDRAW,
            amount=amount,
            shares=shares,
            status=TransactionStatus.COMPLETED,
        )
        await self.ledger.add(transaction)
        self.invalidate_cache()
        logger.info("WITHDRAW_RECORDED", tx_hash=tx_hash, account=account, shares=str(shares), amount=str(amount))
        return WithdrawResult(tx_hash=tx_hash, amount_withdrawn=amount, success=True)

    async def reset_if_zero(self, account: str) -> Dict[str, Any]:
        """
        Administrative reset: delete the account's ledger records when its share
        balance (chain first) is effectively zero.
        """
        account = normalize_address(account)
        shares = await self.get_user_shares(account)
        if shares < RESET_SHARE_THRESHOLD:
            deleted = await self.ledger.delete_account(account)
            self.invalidate_cache()
            logger.warning("ACCOUNT_RESET", account=account, shares=str(shares), deleted=deleted)
            return {"contract_shares": shares, "deleted_transactions": deleted, "action": "reset"}
        logger.info("ACCOUNT_RESET_SKIPPED", account=account, shares=str(shares))
        return {"contract_shares": shares, "action": "no_reset"}

    # ------------------------------------------------------------------
    # Ledger queries
    # ------------------------------------------------------------------

    async def get_transaction(self, tx_hash: str) -> Optional[Transaction]:
        return await self.ledger.get(tx_hash.strip().lower())

    async def list_transactions(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
        status: Optional[TransactionStatus] = None,
        kind: Optional[TransactionKind] = None,
        account: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One page of transactions (newest first) with pagination metadata."""
        if page < 1:
            raise ValidationError(f"page must be >= 1 (got {page})")
        if limit < 1:
            raise ValidationError(f"limit must be >= 1 (got {limit})")
        limit = min(limit, MAX_PAGE_LIMIT)
        if account is not None:
            account = normalize_address(account)

        transactions = await self.ledger.list(
            account=account, kind=kind, status=status, offset=(page - 1) * limit, limit=limit
        )
        total = await self.ledger.count(account=account, kind=kind, status=status)
        return {
            "transactions": transactions,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    async def recent_events(self, limit: int = DEFAULT_EVENTS_LIMIT) -> List[Dict[str, Any]]:
        """Recent deposits and withdrawals shaped as vault events for activity feeds."""
        if limit < 1:
            limit = DEFAULT_EVENTS_LIMIT
        transactions = await self.ledger.list(limit=min(limit, MAX_PAGE_LIMIT))
        return [
            {
                "type": _EVENT_NAMES[tx.kind],
                "user": tx.account,
                "amount": str(tx.amount),
                "shares": str(tx.shares),
                "timestamp": tx.created_at.isoformat(),
                "transactionHash": tx.tx_hash,
                "blockHeight": tx.block_height,
                "status": tx.status.value,
            }
            for tx in transactions
        ]

    # ------------------------------------------------------------------
    # Chain helpers
    # ------------------------------------------------------------------

    def _require_chain(self) -> ChainReader:
        if self.chain is None:
            raise SourceUnavailableError("chain", "no chain reader configured")
        return self.chain

    async def get_transaction_details(self, tx_hash: str) -> Dict[str, Any]:
        return await self._require_chain().get_transaction(tx_hash)

    async def wait_for_transaction(
        self,
        tx_hash: str,
        timeout_seconds: float = TX_CONFIRMATION_TIMEOUT_SECONDS,
        poll_seconds: float = TX_CONFIRMATION_POLL_SECONDS,
    ) -> bool:
        """
        Poll until the transaction is committed and successful.

        Returns False on timeout or a failed transaction; never raises for either.
        """
        chain = self._require_chain()
        deadline = time.monotonic() + timeout_seconds
        while True:
            try:
                tx = await chain.get_transaction(tx_hash)
            except OperationalError as e:
                # Not indexed yet
                logger.debug("TX_NOT_YET_AVAILABLE", tx_hash=tx_hash, error=str(e))
                tx = None
            if tx and tx.get("type") != "pending_transaction":
                success = bool(tx.get("success"))
                logger.info("TX_CONFIRMED", tx_hash=tx_hash, success=success, vm_status=tx.get("vm_status"))
                return success
            if time.monotonic() >= deadline:
                logger.warning("TX_CONFIRMATION_TIMEOUT", tx_hash=tx_hash, timeout_seconds=timeout_seconds)
                return False
            await self._sleep(poll_seconds)


def _describe_failures(results: Sequence[SourceResult]) -> str:
    if not results:
        return "no data sources configured"
    return "; ".join(f"{r.source}: {r.reason}" for r in results)
