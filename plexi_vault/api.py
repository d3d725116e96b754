"""
HTTP API over the vault engine.

`create_app(service, opener)` returns a FastAPI app; it holds no accounting logic.
All responses use the envelope ``{"success": bool, "data" | "error": ...}``.
"""
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from plexi_vault.constants import DEFAULT_EVENTS_LIMIT, DEFAULT_HEDGE_COIN, DEFAULT_PAGE_LIMIT
from plexi_vault.domain.models import TransactionKind, TransactionStatus
from plexi_vault.exceptions import NotFoundError, SourceUnavailableError, ValidationError
from plexi_vault.execution.position_opener import PositionOpener
from plexi_vault.monitoring.logger import get_logger
from plexi_vault.services.vault_service import VaultService

logger = get_logger(__name__)


class DepositRequest(BaseModel):
    walletAddress: str
    amount: Decimal = Field(gt=0)
    txHash: Optional[str] = None


class WithdrawRequest(BaseModel):
    walletAddress: str
    shares: Decimal = Field(gt=0)
    txHash: Optional[str] = None


def _ok(data: Any, status_code: int = 200, message: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": True, "data": data}
    if message:
        content["message"] = message
    return JSONResponse(content=content, status_code=status_code)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        content={"success": False, "error": {"message": message, "statusCode": status_code}},
        status_code=status_code,
    )


def create_app(service: VaultService, opener: Optional[PositionOpener] = None) -> FastAPI:
    """
    Build the vault API.

    Args:
        service: Accounting engine
        opener: Position opener for hedge verification (verification returns 503 without it)
    """
    app = FastAPI(title="Plexi Vault API")
    started_at = time.time()

    async def _user_summary(account: str, tx_hash: str) -> Dict[str, Any]:
        # The record is already committed; a failed balance read only drops the balance
        try:
            shares: Optional[str] = str(await service.get_ledger_shares(account))
        except SourceUnavailableError as e:
            logger.warning("USER_BALANCE_UNAVAILABLE", account=account, tx_hash=tx_hash, error=str(e))
            shares = None
        return {"walletAddress": account.strip().lower(), "shares": shares}

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return _error(f"Invalid request: {details}", 400)

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return _error(str(exc), 400)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return _error(str(exc), 404)

    @app.exception_handler(SourceUnavailableError)
    async def _unavailable(request: Request, exc: SourceUnavailableError):
        logger.warning("API_SOURCE_UNAVAILABLE", path=request.url.path, error=str(exc))
        return _error(str(exc), 503)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("API_UNHANDLED_ERROR", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return _error("Internal server error", 500)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - started_at),
            "hedging": opener is not None,
        }

    @app.post("/vault/deposit")
    async def deposit(body: DepositRequest):
        result = await service.record_deposit(body.walletAddress, body.amount, body.txHash)
        data = result.to_dict()
        data["user"] = await _user_summary(body.walletAddress, result.tx_hash)
        return _ok(data, status_code=201)

    @app.post("/vault/withdraw")
    async def withdraw(body: WithdrawRequest):
        result = await service.record_withdraw(body.walletAddress, body.shares, body.txHash)
        data = result.to_dict()
        data["user"] = await _user_summary(body.walletAddress, result.tx_hash)
        return _ok(data)

    @app.get("/vault/state")
    async def vault_state():
        state = await service.get_vault_state()
        return _ok(state.to_dict())

    @app.get("/vault/user/{address}")
    async def user_position(address: str):
        position = await service.get_account_position(address)
        return _ok(position.to_dict())

    @app.get("/vault/transactions")
    async def transactions(
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
        status: Optional[TransactionStatus] = None,
        kind: Optional[TransactionKind] = Query(default=None, alias="type"),
    ):
        listing = await service.list_transactions(page=page, limit=limit, status=status, kind=kind)
        return _ok({
            "transactions": [tx.to_dict() for tx in listing["transactions"]],
            "pagination": listing["pagination"],
        })

    @app.get("/vault/transactions/{tx_hash}")
    async def transaction(tx_hash: str):
        tx = await service.get_transaction(tx_hash)
        if tx is None:
            raise NotFoundError(f"Transaction {tx_hash} not found")
        return _ok(tx.to_dict())

    @app.get("/vault/events")
    async def events(limit: int = DEFAULT_EVENTS_LIMIT):
        return _ok(await service.recent_events(limit))

    @app.post("/vault/reset-if-zero/{address}")
    async def reset_if_zero(address: str):
        outcome = await service.reset_if_zero(address)
        data = {"contractShares": str(outcome["contract_shares"]), "action": outcome["action"]}
        if "deleted_transactions" in outcome:
            data["deletedTransactions"] = outcome["deleted_transactions"]
            message = f"Database reset completed for {address}"
        else:
            message = f"No reset needed for {address}"
        return _ok(data, message=message)

    @app.get("/vault/hedge/verify/{order_id}")
    async def verify_hedge(order_id: int, coin: str = DEFAULT_HEDGE_COIN, account: Optional[str] = None):
        if opener is None:
            raise SourceUnavailableError("venue", "hedging is not configured")
        verification = await opener.verify_order_on_chain(order_id, coin, account)
        return _ok(verification.to_dict())

    return app
