"""
End-to-end deposit flow: ledger record, share minting and the post-commit hedge.

Real ledger, service, hook and position opener; only the venue is stubbed.
"""
from decimal import Decimal

import pytest

from plexi_vault.domain.models import HedgeState
from plexi_vault.exceptions import VenueRejectionError
from plexi_vault.execution.position_opener import PositionOpener
from plexi_vault.services.hedge_hook import HedgeOnDeposit
from plexi_vault.services.vault_service import VaultService

WALLET = "0x" + "ab" * 20


@pytest.fixture
def opener(venue):
    return PositionOpener(gateway=venue, venue=venue, account=WALLET)


@pytest.fixture
def service(ledger, chain_reader, opener):
    hook = HedgeOnDeposit(opener, coin="APT", reference_price=Decimal("4.22"))
    return VaultService(ledger, chain=chain_reader, hooks=[hook], cache_ttl_seconds=0)


@pytest.mark.asyncio
async def test_qualifying_deposit_is_hedged(service, venue, opener, address):
    result = await service.record_deposit(address(1), Decimal("10"))

    assert result.success is True
    assert result.hedge_success is True
    assert result.hedge_order_ref == 123456

    request = venue.place_order.await_args.args[0]
    assert request["coin"] == "APT-PERP"
    assert request["is_buy"] is True
    assert request["sz"] == Decimal("10.000")
    assert request["limit_px"] == Decimal("4.23")
    assert request["order_type"] == {"limit": {"tif": "Ioc"}}
    assert request["reduce_only"] is False

    assert opener.attempts[-1].state == HedgeState.ACKNOWLEDGED
    assert await service.get_ledger_shares(address(1)) == Decimal("1000")


@pytest.mark.asyncio
async def test_mid_price_source_sets_the_limit(ledger, chain_reader, opener, venue, address):
    hook = HedgeOnDeposit(opener, price_source=venue.get_mid_price)
    service = VaultService(ledger, chain=chain_reader, hooks=[hook], cache_ttl_seconds=0)

    await service.record_deposit(address(1), Decimal("5"))

    # 4.5 * 1.0015 = 4.50675 -> 4.51
    assert venue.place_order.await_args.args[0]["limit_px"] == Decimal("4.51")


@pytest.mark.asyncio
async def test_small_deposit_is_not_hedged(service, venue, address):
    result = await service.record_deposit(address(1), Decimal("2"))

    assert result.success is True
    assert result.hedge_success is False
    assert result.hedge_error is None
    venue.place_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_venue_rejection_keeps_the_deposit(service, ledger, venue, opener, address):
    venue.place_order.side_effect = VenueRejectionError("Insufficient margin", code="InsufficientFunds")

    result = await service.record_deposit(address(1), Decimal("25"))

    assert result.success is True
    assert result.hedge_success is False
    assert "Insufficient margin" in result.hedge_error
    assert opener.attempts[-1].state == HedgeState.REJECTED

    stored = await ledger.get(result.tx_hash)
    assert stored is not None
    assert stored.amount == Decimal("25")
    assert await service.get_ledger_shares(address(1)) == Decimal("2500")


@pytest.mark.asyncio
async def test_network_failure_keeps_the_deposit(service, venue, address):
    venue.place_order.side_effect = ConnectionError("reset by peer")

    result = await service.record_deposit(address(1), Decimal("3"))

    assert result.success is True
    assert result.hedge_success is False
    assert result.hedge_error == "reset by peer"


@pytest.mark.asyncio
async def test_withdraw_after_hedged_deposit(service, venue, address):
    await service.record_deposit(address(1), Decimal("10"))

    withdrawal = await service.record_withdraw(address(1), Decimal("400"))

    assert withdrawal.amount_withdrawn == Decimal("400")
    assert await service.get_ledger_shares(address(1)) == Decimal("600")
    assert venue.place_order.await_count == 1
