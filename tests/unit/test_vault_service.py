"""
Unit tests for the vault accounting engine.

Runs against an in-memory SQLite ledger with a stubbed chain reader.
"""
import re
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from plexi_vault.domain.models import TransactionKind, TransactionStatus
from plexi_vault.exceptions import (
    APIError,
    InsufficientSharesError,
    SourceUnavailableError,
    ValidationError,
)
from plexi_vault.services.vault_service import VaultService

SCALE = 10 ** 8


@pytest.fixture
def service(ledger, chain_reader):
    return VaultService(ledger, chain=chain_reader, cache_ttl_seconds=0)


# ---------------------------------------------------------------------------
# Vault state
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_state_prefers_chain_values(service, chain_reader):
    chain_reader.total_assets.return_value = 1000 * SCALE
    chain_reader.total_shares.return_value = 100000 * SCALE

    state = await service.get_vault_state()

    assert state.source == "chain"
    assert state.total_assets == Decimal("1000")
    assert state.total_shares == Decimal("100000")
    assert state.share_price == Decimal("0.01")


@pytest.mark.asyncio
async def test_zero_chain_totals_fall_back_to_ledger(service, address):
    await service.record_deposit(address(1), Decimal("10"))

    state = await service.get_vault_state()

    assert state.source == "ledger"
    assert state.total_assets == Decimal("10")
    assert state.total_shares == Decimal("1000")
    assert state.share_price == Decimal("0.01")


@pytest.mark.asyncio
async def test_chain_error_falls_back_to_ledger(service, chain_reader, address):
    chain_reader.total_assets.side_effect = APIError("node unreachable")
    await service.record_deposit(address(1), Decimal("4"))

    state = await service.get_vault_state()

    assert state.source == "ledger"
    assert state.total_assets == Decimal("4")


@pytest.mark.asyncio
async def test_undecodable_chain_payload_falls_back_to_ledger(service, chain_reader, address):
    chain_reader.total_assets.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    chain_reader.get_user_shares.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    await service.record_deposit(address(1), Decimal("100"))

    state = await service.get_vault_state()

    assert state.source == "ledger"
    assert state.total_assets == Decimal("100")
    assert await service.get_user_shares(address(1)) == Decimal("10000")


@pytest.mark.asyncio
async def test_empty_vault_has_unit_share_price(service):
    state = await service.get_vault_state()
    assert state.total_assets == 0
    assert state.total_shares == 0
    assert state.share_price == Decimal("1.0")


@pytest.mark.asyncio
async def test_totals_are_never_negative(service, address):
    # 1:1 withdrawal payout lets withdrawn amount exceed deposited amount
    await service.record_deposit(address(1), Decimal("10"))
    await service.record_withdraw(address(1), Decimal("250"))

    state = await service.get_vault_state()

    assert state.total_assets == Decimal("0")
    assert state.total_shares == Decimal("750")
    assert state.share_price == Decimal("0")


@pytest.mark.asyncio
async def test_ledger_failure_propagates_when_no_source_is_left(chain_reader):
    ledger = MagicMock()
    ledger.sum_completed = AsyncMock(side_effect=SourceUnavailableError("ledger", "database is locked"))
    service = VaultService(ledger, chain=chain_reader, cache_ttl_seconds=0)

    with pytest.raises(SourceUnavailableError, match="database is locked"):
        await service.get_vault_state()


@pytest.mark.asyncio
async def test_state_cache_is_invalidated_by_deposits(ledger, chain_reader, address):
    service = VaultService(ledger, chain=chain_reader, cache_ttl_seconds=60)

    first = await service.get_vault_state()
    await service.get_vault_state()
    assert chain_reader.total_assets.await_count == 1

    await service.record_deposit(address(1), Decimal("5"))
    second = await service.get_vault_state()

    assert chain_reader.total_assets.await_count == 2
    assert first.total_assets == 0
    assert second.total_assets == Decimal("5")


# ---------------------------------------------------------------------------
# Deposits and withdrawals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_deposit_mints_hundred_shares_per_unit(service, ledger, address, tx_hash):
    result = await service.record_deposit(address(1), Decimal("10"), tx_hash(1))

    assert result.success is True
    assert result.shares_minted == Decimal("1000")
    assert result.tx_hash == tx_hash(1)
    assert result.hedge_success is False

    stored = await ledger.get(tx_hash(1))
    assert stored.kind == TransactionKind.DEPOSIT
    assert stored.status == TransactionStatus.COMPLETED
    assert stored.amount == Decimal("10")


@pytest.mark.asyncio
async def test_deposit_generates_hash_when_missing(service, address):
    result = await service.record_deposit(address(1), "1.5")
    assert re.fullmatch(r"0x[0-9a-f]{64}", result.tx_hash)


@pytest.mark.asyncio
async def test_deposit_normalizes_address_case(service, ledger):
    upper = "0x" + "AB" * 32
    result = await service.record_deposit(upper, Decimal("1"))
    stored = await ledger.get(result.tx_hash)
    assert stored.account == upper.lower()


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), "NaN", "ten"])
async def test_deposit_rejects_non_positive_amounts(service, ledger, address, amount):
    with pytest.raises(ValidationError):
        await service.record_deposit(address(1), amount)
    assert await ledger.count() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("account", ["0x123", "not-an-address", "ab" * 32])
async def test_deposit_rejects_bad_addresses(service, account):
    with pytest.raises(ValidationError, match="address"):
        await service.record_deposit(account, Decimal("1"))


@pytest.mark.asyncio
async def test_duplicate_hash_is_rejected(service, ledger, address, tx_hash):
    await service.record_deposit(address(1), Decimal("1"), tx_hash(7))

    with pytest.raises(ValidationError, match="already recorded"):
        await service.record_deposit(address(2), Decimal("2"), tx_hash(7))
    assert await ledger.count() == 1


@pytest.mark.asyncio
async def test_failing_hook_never_fails_the_deposit(service, ledger, address):
    service.add_hook(AsyncMock(side_effect=RuntimeError("venue exploded")))

    result = await service.record_deposit(address(1), Decimal("10"))

    assert result.success is True
    assert result.hedge_success is False
    assert result.hedge_error == "venue exploded"
    assert await ledger.exists(result.tx_hash)


@pytest.mark.asyncio
async def test_hooks_see_the_committed_record(service, ledger, address):
    seen = {}

    async def hook(transaction, result):
        seen["stored"] = await ledger.get(transaction.tx_hash)
        result.hedge_success = True

    service.add_hook(hook)
    result = await service.record_deposit(address(1), Decimal("3"))

    assert seen["stored"] is not None
    assert result.hedge_success is True


@pytest.mark.asyncio
async def test_withdraw_pays_out_one_to_one(service, address):
    await service.record_deposit(address(1), Decimal("10"))

    result = await service.record_withdraw(address(1), Decimal("250"))

    assert result.success is True
    assert result.amount_withdrawn == Decimal("250")
    assert await service.get_ledger_shares(address(1)) == Decimal("750")


@pytest.mark.asyncio
async def test_withdraw_more_than_held_records_nothing(service, ledger, address):
    await service.record_deposit(address(1), Decimal("1"))

    with pytest.raises(InsufficientSharesError) as exc_info:
        await service.record_withdraw(address(1), Decimal("100.01"))

    assert exc_info.value.available == Decimal("100")
    assert await ledger.count(kind=TransactionKind.WITHDRAW) == 0


@pytest.mark.asyncio
async def test_withdraw_rejects_non_positive_shares(service, address):
    with pytest.raises(ValidationError):
        await service.record_withdraw(address(1), Decimal("0"))


@pytest.mark.asyncio
async def test_balances_are_per_account(service, address):
    await service.record_deposit(address(1), Decimal("2"))
    await service.record_deposit(address(2), Decimal("5"))

    assert await service.get_ledger_shares(address(1)) == Decimal("200")
    assert await service.get_ledger_shares(address(2)) == Decimal("500")
    with pytest.raises(InsufficientSharesError):
        await service.record_withdraw(address(1), Decimal("300"))


# ---------------------------------------------------------------------------
# User shares, positions and reset
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_user_shares_from_chain_even_when_zero(service, chain_reader, address):
    await service.record_deposit(address(1), Decimal("2"))
    chain_reader.get_user_shares.return_value = 0

    assert await service.get_user_shares(address(1)) == Decimal("0")

    chain_reader.get_user_shares.return_value = 150 * SCALE
    assert await service.get_user_shares(address(1)) == Decimal("150")


@pytest.mark.asyncio
async def test_user_shares_fall_back_to_ledger(service, chain_reader, address):
    chain_reader.get_user_shares.side_effect = SourceUnavailableError("chain", "module not published")
    await service.record_deposit(address(1), Decimal("2"))

    assert await service.get_user_shares(address(1)) == Decimal("200")
    assert await service.get_user_shares(address(9)) == Decimal("0")


@pytest.mark.asyncio
async def test_account_position_values_ledger_shares(service, chain_reader, address):
    await service.record_deposit(address(1), Decimal("2"))
    chain_reader.total_assets.return_value = 300 * SCALE
    chain_reader.total_shares.return_value = 200 * SCALE

    position = await service.get_account_position(address(1))

    assert position.shares == Decimal("200")
    assert position.share_price == Decimal("1.5")
    assert position.assets_equivalent == Decimal("300")
    assert len(position.transactions) == 1


@pytest.mark.asyncio
async def test_reset_if_zero_deletes_records(service, ledger, chain_reader, address):
    await service.record_deposit(address(1), Decimal("2"))
    await service.record_deposit(address(2), Decimal("2"))
    chain_reader.get_user_shares.return_value = 50_000  # 0.0005 shares

    outcome = await service.reset_if_zero(address(1))

    assert outcome["action"] == "reset"
    assert outcome["deleted_transactions"] == 1
    assert await ledger.count(account=address(1)) == 0
    assert await ledger.count(account=address(2)) == 1


@pytest.mark.asyncio
async def test_reset_if_zero_keeps_funded_accounts(service, ledger, chain_reader, address):
    await service.record_deposit(address(1), Decimal("2"))
    chain_reader.get_user_shares.return_value = 200 * SCALE

    outcome = await service.reset_if_zero(address(1))

    assert outcome == {"contract_shares": Decimal("200"), "action": "no_reset"}
    assert await ledger.count(account=address(1)) == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_transactions_paginates(service, address):
    for n in range(3):
        await service.record_deposit(address(n + 1), Decimal(n + 1))

    page = await service.list_transactions(page=2, limit=2)

    assert page["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
    assert len(page["transactions"]) == 1
    # newest first: the last page holds the oldest deposit
    assert page["transactions"][0].amount == Decimal("1")


@pytest.mark.asyncio
async def test_list_transactions_caps_limit_and_filters(service, address):
    await service.record_deposit(address(1), Decimal("5"))
    await service.record_withdraw(address(1), Decimal("100"))

    page = await service.list_transactions(limit=1000, kind=TransactionKind.WITHDRAW)

    assert page["pagination"]["limit"] == 100
    assert [tx.kind for tx in page["transactions"]] == [TransactionKind.WITHDRAW]
    with pytest.raises(ValidationError):
        await service.list_transactions(page=0)


@pytest.mark.asyncio
async def test_recent_events(service, address):
    await service.record_deposit(address(1), Decimal("5"))
    await service.record_withdraw(address(1), Decimal("100"))

    events = await service.recent_events(limit=10)

    assert [e["type"] for e in events] == ["WithdrawEvent", "DepositEvent"]
    assert events[1]["user"] == address(1)
    assert Decimal(events[1]["shares"]) == Decimal("500")


@pytest.mark.asyncio
async def test_get_transaction_is_case_insensitive(service, address, tx_hash):
    await service.record_deposit(address(1), Decimal("1"), tx_hash(3))
    found = await service.get_transaction(tx_hash(3).upper().replace("0X", "0x"))
    assert found.tx_hash == tx_hash(3)
    assert await service.get_transaction(tx_hash(4)) is None


# ---------------------------------------------------------------------------
# Chain helpers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_wait_for_transaction_polls_until_committed(ledger, chain_reader, tx_hash):
    chain_reader.get_transaction.side_effect = [
        APIError("not found yet"),
        {"type": "pending_transaction"},
        {"type": "user_transaction", "success": True, "vm_status": "Executed successfully"},
    ]
    sleep = AsyncMock()
    service = VaultService(ledger, chain=chain_reader, sleep=sleep)

    assert await service.wait_for_transaction(tx_hash(1), timeout_seconds=30, poll_seconds=1) is True
    assert sleep.await_count == 2
    sleep.assert_awaited_with(1)


@pytest.mark.asyncio
async def test_wait_for_transaction_times_out_without_raising(ledger, chain_reader, tx_hash):
    chain_reader.get_transaction.return_value = {"type": "pending_transaction"}
    service = VaultService(ledger, chain=chain_reader, sleep=AsyncMock())

    assert await service.wait_for_transaction(tx_hash(1), timeout_seconds=0) is False


@pytest.mark.asyncio
async def test_wait_for_failed_transaction_returns_false(ledger, chain_reader, tx_hash):
    chain_reader.get_transaction.return_value = {"type": "user_transaction", "success": False}
    service = VaultService(ledger, chain=chain_reader, sleep=AsyncMock())

    assert await service.wait_for_transaction(tx_hash(1)) is False


@pytest.mark.asyncio
async def test_chain_helpers_need_a_chain_reader(ledger, tx_hash):
    service = VaultService(ledger)
    with pytest.raises(SourceUnavailableError):
        await service.get_transaction_details(tx_hash(1))
