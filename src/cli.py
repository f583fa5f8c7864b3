#!/usr/bin/env python3
"""
CLI interface for the chain account monitor.

Usage:
    python -m src.cli run --config config/config.yml
    python -m src.cli report
    python -m src.cli db-status
"""

import asyncio
import logging
import signal
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.chainmon import (
    ChainAPIClient,
    Config,
    ConfigurationError,
    MonitorDatabase,
    PersistenceError,
    ScrapingService,
    TransfersReport,
    load_accounts,
    load_config,
)
from src.chainmon.config import DEFAULT_CONFIG_PATH
from src.chainmon.database import EVENT_TABLES

app = typer.Typer(
    name="chainmon",
    help="Polkadot/Kusama account monitor - collects transfers, rewards and nominations",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging with Rich handler."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def _load(config_path: str, verbose: bool) -> Config:
    """Load config and start logging; exits the process on bad config."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        setup_logging()
        logger.error(str(e))
        raise typer.Exit(code=1)

    setup_logging(logging.DEBUG if verbose else config.logging_level)
    return config


def _install_signal_handlers(waiter: asyncio.Task) -> None:
    """Stop the pollers on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.warning("Shutdown requested, stopping pollers...")
        waiter.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, signal_handler)
        loop.add_signal_handler(signal.SIGTERM, signal_handler)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        pass


async def run_service(config: Config) -> None:
    """
    Start one supervised poller per configured module and block.

    Raises:
        ConfigurationError: On any startup problem
    """
    logger.info("Reading accounts file")
    accounts = load_accounts(config.accounts_file)

    logger.info("Setting up database")
    db = MonitorDatabase(config.database.path)

    async with ChainAPIClient(
        api_key=config.api.api_key,
        requests_per_second=config.api.requests_per_second,
        timeout=config.api.timeout,
    ) as api:
        logger.info("Setting up scraping service")
        service = ScrapingService(
            db,
            api,
            row_amount=config.polling.row_amount,
            loop_interval=config.polling.loop_interval,
            failed_task_sleep=config.polling.failed_task_sleep,
        )

        logger.info(f"Adding {len(accounts)} accounts to monitor")
        service.add_accounts(accounts)

        for module in config.collection.modules:
            service.run(module)

        if not service.running:
            logger.warning("No modules configured under collection.modules")

        waiter = asyncio.create_task(service.wait_forever())
        _install_signal_handlers(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            pass
        finally:
            await service.stop()


@app.command()
def run(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Run the monitor until terminated.

    Example:
        chainmon run --config config/config.yml
    """
    config = _load(config_path, verbose)

    try:
        asyncio.run(run_service(config))
    except ConfigurationError as e:
        logger.error(f"Startup failed: {e}")
        raise typer.Exit(code=1)


@app.command()
def report(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"
    ),
    since: Optional[int] = typer.Option(
        None, "--since", help="Start of the window (UNIX seconds); default: everything"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Write a CSV summary of stored transfers per account.
    """
    config = _load(config_path, verbose)

    try:
        accounts = load_accounts(config.accounts_file)
        db = MonitorDatabase(config.database.path)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)

    transfers_report = TransfersReport(
        db,
        accounts,
        report_range=config.report.range,
        output_dir=config.report.output_dir,
        last_report=since,
    )
    try:
        filepath = transfers_report.run_once()
    except PersistenceError as e:
        logger.error(f"Report failed: {e}")
        raise typer.Exit(code=1)

    if filepath is None:
        console.print("[yellow]No report due for the requested window[/yellow]")
    else:
        console.print(f"[green]Report written to {filepath}[/green]")


@app.command(name="db-status")
def db_status(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"
    ),
) -> None:
    """
    Show how many events are stored per data kind and account.
    """
    config = _load(config_path, verbose=False)

    try:
        db = MonitorDatabase(config.database.path)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)

    try:
        counts = db.count_events()
        per_account = {name: db.count_events_by_account(name) for name in EVENT_TABLES}
    except PersistenceError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)

    table = Table(title=f"Database: {config.database.path}", show_header=True)
    table.add_column("Table")
    table.add_column("Events", justify="right")
    for name in EVENT_TABLES:
        table.add_row(name, f"{counts[name]:,}")
    console.print(table)

    for name in EVENT_TABLES:
        if not per_account[name]:
            continue

        account_table = Table(title=name, show_header=True)
        account_table.add_column("Stash", style="cyan")
        account_table.add_column("Network")
        account_table.add_column("Events", justify="right")
        for (stash, network), n in sorted(per_account[name].items()):
            account_table.add_row(stash, network, f"{n:,}")
        console.print(account_table)


@app.command()
def accounts(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config file"
    ),
) -> None:
    """
    List the accounts configured for monitoring.
    """
    config = _load(config_path, verbose=False)

    try:
        contexts = load_accounts(config.accounts_file)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)

    table = Table(show_header=True)
    table.add_column("Stash", style="cyan")
    table.add_column("Network")
    table.add_column("Description")
    for ctx in contexts:
        table.add_row(ctx.stash, ctx.network.value, ctx.description)
    console.print(table)
    console.print(f"\n{len(contexts)} accounts, modules: "
                  f"{', '.join(m.value for m in config.collection.modules) or 'none'}")


if __name__ == "__main__":
    app()
