"""
CLI entrypoint for the Plexi vault engine.

Provides commands to serve the API, initialize the ledger database, and run
one-off accounting and hedge-verification operations.
"""
import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer

from plexi_vault.config.config import Config, load_config
from plexi_vault.data.aptos_client import AptosVaultReader
from plexi_vault.data.hyperliquid_client import HyperliquidClient
from plexi_vault.exceptions import VaultSystemError
from plexi_vault.execution.instrument_specs import InstrumentRegistry
from plexi_vault.execution.position_opener import PositionOpener
from plexi_vault.monitoring.logger import get_logger, setup_logging
from plexi_vault.services.hedge_hook import HedgeOnDeposit
from plexi_vault.services.vault_service import VaultService
from plexi_vault.storage.db import Database, init_db
from plexi_vault.storage.repository import SqlTransactionLedger

app = typer.Typer(
    name="plexi-vault",
    help="Plexi vault accounting and hedging engine",
    add_completion=False,
)

logger = get_logger(__name__)

ConfigOption = typer.Option(None, "--config", help="Path to config file (default: packaged config.yaml)")


@dataclass
class Components:
    """Everything a command needs, built once from configuration."""
    config: Config
    db: Database
    service: VaultService
    chain: AptosVaultReader
    venue: HyperliquidClient
    opener: PositionOpener

    async def close(self) -> None:
        await self.chain.close()
        await self.venue.close()
        self.db.dispose()


def build_components(config: Config) -> Components:
    """Wire ledger, chain reader, venue client, opener and the hedge hook from configuration."""
    db = init_db(config.data.database_url)
    ledger = SqlTransactionLedger(db)
    chain = AptosVaultReader(
        node_url=config.chain.node_url,
        module_address=config.chain.vault_module_address,
        module_name=config.chain.vault_module_name,
        timeout_seconds=config.chain.request_timeout_seconds,
    )
    venue = HyperliquidClient.from_config(config.venue)
    opener = PositionOpener(
        gateway=venue,
        venue=venue,
        account=config.venue.wallet_address,
        instruments=InstrumentRegistry(venue.get_meta),
    )

    service = VaultService(
        ledger,
        chain=chain,
        cache_ttl_seconds=config.vault.vault_state_cache_ttl_seconds,
    )
    if config.vault.hedge_enabled and config.venue.has_credentials:
        service.add_hook(
            HedgeOnDeposit(
                opener,
                coin=config.vault.hedge_coin,
                reference_price=config.vault.reference_price,
                price_source=venue.get_mid_price if config.vault.use_venue_mid_price else None,
            )
        )
    else:
        logger.warning(
            "HEDGING_DISABLED",
            hedge_enabled=config.vault.hedge_enabled,
            has_credentials=config.venue.has_credentials,
        )
    return Components(config=config, db=db, service=service, chain=chain, venue=venue, opener=opener)


def _bootstrap(config_path: Optional[Path]) -> Config:
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    return config


def _run(config_path: Optional[Path], action: Callable[[Components], Awaitable[Any]]) -> None:
    """Build components, run one async action, print its result as JSON."""
    config = _bootstrap(config_path)

    async def _main():
        components = build_components(config)
        try:
            return await action(components)
        finally:
            await components.close()

    try:
        result = asyncio.run(_main())
    except VaultSystemError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(result, indent=2, default=str))


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: api.host)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: api.port)"),
):
    """
    Serve the vault HTTP API.

    Example:
        plexi-vault serve --port 3001
    """
    import uvicorn

    from plexi_vault.api import create_app

    config = _bootstrap(config_path)
    components = build_components(config)
    api = create_app(components.service, components.opener)

    @api.on_event("shutdown")
    async def _shutdown():
        await components.close()

    logger.info("Starting API", host=host or config.api.host, port=port or config.api.port)
    uvicorn.run(api, host=host or config.api.host, port=port or config.api.port, log_config=None)


@app.command("init-db")
def init_db_command(config_path: Optional[Path] = ConfigOption):
    """Create the ledger tables."""
    config = _bootstrap(config_path)
    db = init_db(config.data.database_url)
    db.dispose()
    typer.echo("Database initialized")


@app.command()
def state(config_path: Optional[Path] = ConfigOption):
    """Show total assets, total shares and share price."""

    async def action(c: Components):
        return (await c.service.get_vault_state()).to_dict()

    _run(config_path, action)


@app.command()
def user(
    address: str = typer.Argument(..., help="Account address (0x + 64 hex)"),
    config_path: Optional[Path] = ConfigOption,
):
    """Show an account's share balance and recent transactions."""

    async def action(c: Components):
        return (await c.service.get_account_position(address)).to_dict()

    _run(config_path, action)


@app.command()
def deposit(
    address: str = typer.Argument(..., help="Account address"),
    amount: str = typer.Argument(..., help="Deposited amount"),
    tx_hash: Optional[str] = typer.Option(None, "--tx-hash", help="On-chain transaction hash"),
    config_path: Optional[Path] = ConfigOption,
):
    """Record a deposit (and hedge it when hedging is enabled)."""

    async def action(c: Components):
        return (await c.service.record_deposit(address, amount, tx_hash)).to_dict()

    _run(config_path, action)


@app.command()
def withdraw(
    address: str = typer.Argument(..., help="Account address"),
    shares: str = typer.Argument(..., help="Shares to burn"),
    tx_hash: Optional[str] = typer.Option(None, "--tx-hash", help="On-chain transaction hash"),
    config_path: Optional[Path] = ConfigOption,
):
    """Record a withdrawal."""

    async def action(c: Components):
        return (await c.service.record_withdraw(address, shares, tx_hash)).to_dict()

    _run(config_path, action)


@app.command("verify-order")
def verify_order(
    order_id: int = typer.Argument(..., help="Venue order id"),
    coin: str = typer.Option("APT", "--coin", help="Hedge coin"),
    account: Optional[str] = typer.Option(None, "--account", help="Venue account (default: venue.wallet_address)"),
    config_path: Optional[Path] = ConfigOption,
):
    """Check a hedge order against open orders and recent fills."""

    async def action(c: Components):
        return (await c.opener.verify_order_on_chain(order_id, coin, account)).to_dict()

    _run(config_path, action)


if __name__ == "__main__":
    app()
