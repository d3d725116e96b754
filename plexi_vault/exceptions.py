"""
Custom exception hierarchy for the vault engine.

Hierarchy:

    VaultSystemError (base)
    ├── OperationalError        (transient: chain node, venue, network, timeouts)
    │   ├── SourceUnavailableError  (a vault data source could not answer)
    │   └── APIError            (transport-level failure talking to a service)
    ├── DataError               (bad input or bad data, surfaced to the caller)
    │   ├── ValidationError
    │   │   └── InsufficientSharesError
    │   ├── ComputationError    (malformed book/instrument data during sizing)
    │   ├── NotFoundError       (requested record does not exist)
    │   └── VenueRejectionError (exchange refused an order)
    └── InvariantError          (illegal state transition, never swallowed)

Rules:
    - SourceUnavailableError: try the next data source; surface when none is left
    - ValidationError: surface immediately, no retry
    - NotFoundError: surface to the caller (HTTP 404)
    - VenueRejectionError / ComputationError: surface with diagnostics; hedge
      callers convert them into ``hedge_success=False``
    - InvariantError: let it crash
"""
from typing import Any, Optional


class VaultSystemError(Exception):
    """Base exception for all vault engine errors."""
    pass


# ============ OPERATIONAL (transient) ============

class OperationalError(VaultSystemError):
    """Transient error: chain node, venue API, network, timeouts."""
    pass


class SourceUnavailableError(OperationalError):
    """A vault data source (chain or ledger) could not be read.

    Recoverable while another source remains in the fallback chain.
    """

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class APIError(OperationalError):
    """Transport-level failure talking to the chain node or the venue."""
    pass


# ============ DATA (bad input, surfaced) ============

class DataError(VaultSystemError):
    """Bad input or bad data. Surfaced to the caller, not retried."""
    pass


class ValidationError(DataError):
    """Raised when request validation fails (amounts, addresses, minimums)."""
    pass


class InsufficientSharesError(ValidationError):
    """Withdrawal asks for more shares than the account holds."""

    def __init__(self, account: str, requested: Any, available: Any):
        super().__init__(
            f"Insufficient shares for withdrawal: requested {requested}, available {available}"
        )
        self.account = account
        self.requested = requested
        self.available = available


class NotFoundError(DataError):
    """Requested record (transaction, order) does not exist."""
    pass


class ComputationError(DataError):
    """Order price/size derivation failed on malformed market data.

    Fails closed: no partial or guessed parameters are ever returned.
    """
    pass


class VenueRejectionError(DataError):
    """The exchange rejected an order (size, price, precision, margin...)."""

    def __init__(self, message: str, payload: Optional[Any] = None, code: Optional[str] = None):
        super().__init__(message)
        self.payload = payload
        self.code = code


# ============ INVARIANT (halt) ============

class InvariantError(VaultSystemError):
    """Internal invariant violated (e.g. illegal hedge state transition)."""
    pass
