"""
Pytest configuration and shared fixtures.
"""
import os

# Keep developer .env files out of the test run
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from plexi_vault.storage.db import Database
from plexi_vault.storage.repository import SqlTransactionLedger


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


@pytest.fixture
def db():
    """Fresh in-memory SQLite ledger database per test."""
    database = Database("sqlite:///:memory:")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def ledger(db):
    return SqlTransactionLedger(db)


@pytest.fixture
def address():
    """address(n) -> deterministic valid 0x + 64-hex account address."""
    def _make(n: int = 1) -> str:
        return "0x" + format(n, "064x")
    return _make


@pytest.fixture
def tx_hash():
    """tx_hash(n) -> deterministic valid 0x + 64-hex transaction hash."""
    def _make(n: int = 1) -> str:
        return "0x" + format(0xABC000 + n, "064x")
    return _make


@pytest.fixture
def chain_reader():
    """ChainReader stub reporting an empty (uninitialized) vault."""
    reader = MagicMock()
    reader.total_assets = AsyncMock(return_value=0)
    reader.total_shares = AsyncMock(return_value=0)
    reader.get_user_shares = AsyncMock(return_value=0)
    reader.get_transaction = AsyncMock(return_value={"type": "user_transaction", "success": True})
    return reader


@pytest.fixture
def l2_book():
    """Raw l2Book payload with best ask 11.00."""
    return {
        "coin": "APT",
        "time": 1700000000000,
        "levels": [
            [{"px": "10.99", "sz": "120.5", "n": 3}, {"px": "10.98", "sz": "40", "n": 1}],
            [{"px": "11.00", "sz": "80.25", "n": 2}, {"px": "11.01", "sz": "300", "n": 5}],
        ],
    }


@pytest.fixture
def venue(l2_book):
    """Venue client stub acting as both VenueReader and OrderGateway."""
    client = MagicMock()
    client.get_l2_book = AsyncMock(return_value=l2_book)
    client.get_meta = AsyncMock(return_value={
        "universe": [
            {"name": "APT", "szDecimals": 4, "maxLeverage": 10},
            {"name": "BTC", "szDecimals": 5, "maxLeverage": 50},
        ]
    })
    client.get_all_mids = AsyncMock(return_value={"APT": "4.5", "BTC": "65000"})
    client.get_mid_price = AsyncMock(return_value=Decimal("4.5"))
    client.get_open_orders = AsyncMock(return_value=[])
    client.get_user_fills = AsyncMock(return_value=[])
    client.place_order = AsyncMock(return_value={"orderId": 123456, "status": "open", "raw": {}})
    client.cancel_order = AsyncMock(return_value={"status": "canceled"})
    return client
