"""
Domain models for the vault engine.

These are the core business objects used throughout the application.
All timestamps use UTC timezone-aware datetimes; all amounts are Decimal.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from plexi_vault.constants import DEFAULT_SHARE_PRICE
from plexi_vault.exceptions import InvariantError, ValidationError

HEX_64_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_address(value: str) -> bool:
    """Aptos account address: 0x followed by 64 hex characters."""
    return isinstance(value, str) and bool(HEX_64_PATTERN.match(value.strip()))


def is_valid_tx_hash(value: str) -> bool:
    """Aptos transaction hash: 0x followed by 64 hex characters."""
    return isinstance(value, str) and bool(HEX_64_PATTERN.match(value.strip()))


def normalize_address(value: str) -> str:
    """Validate and lower-case an account address."""
    if not is_valid_address(value):
        raise ValidationError(f"Invalid wallet address format: {value!r}")
    return value.strip().lower()


class TransactionKind(str, Enum):
    """Ledger transaction kind."""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class TransactionStatus(str, Enum):
    """Ledger transaction status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class HedgeState(str, Enum):
    """Lifecycle of a single hedge order attempt."""
    REQUESTED = "requested"
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


_HEDGE_TRANSITIONS = {
    HedgeState.REQUESTED: {HedgeState.SUBMITTED, HedgeState.REJECTED},
    HedgeState.SUBMITTED: {HedgeState.ACKNOWLEDGED, HedgeState.REJECTED},
    HedgeState.ACKNOWLEDGED: set(),
    HedgeState.REJECTED: set(),
}


@dataclass(frozen=True)
class Transaction:
    """
    One deposit or withdrawal recorded in the ledger.

    Immutable once completed; only the administrative reset removes records.
    """
    tx_hash: str
    account: str
    kind: TransactionKind
    amount: Decimal
    shares: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    block_height: Optional[int] = None
    gas_used: Optional[int] = None

    def __post_init__(self):
        """Validate transaction invariants."""
        if not is_valid_tx_hash(self.tx_hash):
            raise ValidationError(f"Invalid transaction hash format: {self.tx_hash!r}")
        if not is_valid_address(self.account):
            raise ValidationError(f"Invalid wallet address format: {self.account!r}")
        if self.amount < 0:
            raise ValidationError(f"Transaction amount must be >= 0 (got {self.amount})")
        if self.shares < 0:
            raise ValidationError(f"Transaction shares must be >= 0 (got {self.shares})")
        if self.created_at.tzinfo is None:
            raise ValidationError("Transaction created_at must be timezone-aware (UTC)")
        for name in ("block_height", "gas_used"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValidationError(f"Transaction {name} must be >= 0 (got {value})")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "walletAddress": self.account,
            "type": self.kind.value,
            "amount": str(self.amount),
            "shares": str(self.shares),
            "status": self.status.value,
            "blockHeight": self.block_height,
            "gasUsed": self.gas_used,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class VaultState:
    """Derived vault snapshot. Recomputed on every query."""
    total_assets: Decimal
    total_shares: Decimal
    share_price: Decimal
    source: str = "ledger"

    @classmethod
    def from_totals(cls, total_assets: Decimal, total_shares: Decimal, source: str) -> "VaultState":
        """Build a state with non-negative totals and the default price for an empty vault."""
        assets = max(Decimal("0"), total_assets)
        shares = max(Decimal("0"), total_shares)
        price = assets / shares if shares > 0 else DEFAULT_SHARE_PRICE
        return cls(total_assets=assets, total_shares=shares, share_price=price, source=source)

    @property
    def tvl(self) -> Decimal:
        return self.total_assets

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAssets": str(self.total_assets),
            "totalShares": str(self.total_shares),
            "sharePrice": str(self.share_price),
            "source": self.source,
        }


@dataclass(frozen=True)
class AccountPosition:
    """An account's share balance and its asset-equivalent value."""
    account: str
    shares: Decimal
    share_price: Decimal
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def assets_equivalent(self) -> Decimal:
        return self.shares * self.share_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "walletAddress": self.account,
            "shares": str(self.shares),
            "assetsEquivalent": str(self.assets_equivalent),
            "sharePrice": str(self.share_price),
            "txHistory": [tx.to_dict() for tx in self.transactions],
        }


@dataclass(frozen=True)
class OrderParameters:
    """Venue-legal (price, size) pair computed right before submission."""
    price: Decimal
    size: Decimal


@dataclass
class DepositResult:
    tx_hash: str
    shares_minted: Decimal
    success: bool
    hedge_order_ref: Optional[int] = None
    hedge_success: bool = False
    hedge_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "sharesMinted": str(self.shares_minted),
            "success": self.success,
            "hedgeOrderRef": self.hedge_order_ref,
            "hedgeSuccess": self.hedge_success,
            "hedgeError": self.hedge_error,
        }


@dataclass
class WithdrawResult:
    tx_hash: str
    amount_withdrawn: Decimal
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "amountWithdrawn": str(self.amount_withdrawn),
            "success": self.success,
        }


@dataclass(frozen=True)
class OrderAck:
    """Venue acknowledgement of a submitted order."""
    order_id: Optional[int]
    status: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderVerification:
    """
    Advisory cross-check of an order against venue state.

    Not settlement proof: an order absent from open orders may be filled or cancelled.
    """
    order_found: bool
    recent_fills: List[Dict[str, Any]]
    our_fill: Optional[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderFound": self.order_found,
            "recentFills": self.recent_fills,
            "ourFill": self.our_fill,
        }


@dataclass
class HedgeAttempt:
    """
    One hedge order attempt.

    Requested -> Submitted -> {Acknowledged | Rejected}. Acknowledged orders are
    not tracked to completion here.
    """
    coin: str
    size: Decimal
    price: Decimal
    is_buy: bool = True
    tif: str = "Ioc"
    state: HedgeState = HedgeState.REQUESTED
    order_id: Optional[int] = None
    error: Optional[str] = None
    history: List[HedgeState] = field(default_factory=lambda: [HedgeState.REQUESTED])

    def transition(self, new_state: HedgeState) -> None:
        if new_state not in _HEDGE_TRANSITIONS[self.state]:
            raise InvariantError(f"Illegal hedge transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def is_terminal(self) -> bool:
        return not _HEDGE_TRANSITIONS[self.state]
