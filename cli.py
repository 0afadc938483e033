#!/usr/bin/env python3
"""
PerpLedger CLI - Sync wallets and inspect PnL from the command line
"""
import asyncio
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from loguru import logger
import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from shared.config.settings import settings
from shared.models.base import PerpLedgerError, InvalidWalletAddressError
from shared.utils.logging import setup_logging
from perpledger.analytics import AnalyticsEngine
from perpledger.decoder import create_event_decoder
from perpledger.portfolio.pnl import PnlEngine
from perpledger.sources import CoinGeckoPriceSource, SolanaRpcSource, TradeFetcher
from perpledger.storage import DatabaseStore
from perpledger.sync import BackgroundNotifier, LoggingSink, SyncOrchestrator


app = typer.Typer(help="PerpLedger CLI - On-chain perp position and PnL tracker")
console = Console()


@dataclass
class Components:
    store: DatabaseStore
    orchestrator: SyncOrchestrator
    notifier: BackgroundNotifier
    pnl: PnlEngine
    analytics: AnalyticsEngine


@asynccontextmanager
async def components():
    """Wire the engine from settings and release resources on exit"""
    store = DatabaseStore(settings.store.database_url, echo=settings.store.echo_sql)
    source = SolanaRpcSource(settings.rpc)
    prices = CoinGeckoPriceSource(settings.price)

    fetcher = TradeFetcher(
        source,
        create_event_decoder(settings.rpc),
        page_size=settings.rpc.page_size,
        max_attempts=settings.rpc.transaction_attempts,
        backoff_min=settings.rpc.backoff_min,
        backoff_max=settings.rpc.backoff_max,
    )
    notifier = BackgroundNotifier(LoggingSink())
    pnl = PnlEngine(store, prices, price_config=settings.price, sync_config=settings.sync)

    try:
        yield Components(
            store=store,
            orchestrator=SyncOrchestrator(fetcher, store, notifier, config=settings.sync),
            notifier=notifier,
            pnl=pnl,
            analytics=AnalyticsEngine(store, pnl),
        )
    finally:
        await notifier.drain()
        await source.close()
        await prices.close()
        await store.close()


def _run(coro) -> None:
    """Run a command coroutine, reporting application errors"""
    setup_logging(settings.log_level, settings.log_file)
    try:
        asyncio.run(coro)
    except (InvalidWalletAddressError, ValueError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=2)
    except PerpLedgerError as e:
        logger.error(f"Command failed: {e}")
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)


def _money(value) -> str:
    if value is None:
        return "-"
    color = "green" if value >= 0 else "red"
    return f"[{color}]{value:,.2f}[/{color}]"


@app.command()
def info():
    """Display system information"""
    console.print(Panel.fit(
        f"[bold blue]{settings.app_name}[/bold blue] v{settings.app_version}\n"
        f"Environment: {settings.environment}\n"
        f"RPC: {settings.rpc.rpc_url}\n"
        f"Program: {settings.rpc.program_id}\n"
        f"Database: {settings.store.database_url}",
        title="System Information"
    ))


@app.command()
def sync(
    wallet: str = typer.Argument(..., help="Wallet address (base58)"),
    limit: int = typer.Option(None, "--limit", "-l", help="Max transactions to inspect")
):
    """Sync a wallet's trades into the local database"""
    async def run():
        async with components() as c:
            console.print(f"[cyan]Syncing {wallet}...[/cyan]")
            result = await c.orchestrator.sync_wallet(wallet, limit)

            console.print(Panel.fit(
                f"[green]✓ Sync complete[/green]\n"
                f"Fills seen: {result.fills_seen}\n"
                f"New fills: {result.fills_processed}\n"
                f"Positions updated: {result.positions_updated}\n"
                f"Positions closed: {len(result.closed_positions)}",
                title="Sync"
            ))

            positions = await c.store.list_positions(wallet)
            table = Table(title="Positions")
            table.add_column("Market", style="cyan")
            table.add_column("Side", style="magenta")
            table.add_column("Status")
            table.add_column("Size", justify="right")
            table.add_column("Avg Entry", justify="right")
            table.add_column("Realized", justify="right")

            for p in positions[-20:]:
                table.add_row(
                    p.market,
                    p.side.value,
                    p.status.value,
                    f"{p.total_size:.4f}",
                    f"{p.avg_entry_price:.4f}",
                    _money(p.realized_pnl),
                )
            console.print(table)

    _run(run())


@app.command()
def pnl(wallet: str = typer.Argument(..., help="Wallet address (base58)")):
    """Mark open positions to market"""
    async def run():
        async with components() as c:
            rows = await c.pnl.get_wallet_performance(wallet)
            if not rows:
                console.print("[yellow]⚠ No open positions[/yellow]")
                return

            table = Table(title="Open Positions")
            table.add_column("Market", style="cyan")
            table.add_column("Side", style="magenta")
            table.add_column("Size", justify="right")
            table.add_column("Entry", justify="right")
            table.add_column("Mark", justify="right")
            table.add_column("Unrealized", justify="right")
            table.add_column("Realized", justify="right")
            table.add_column("Price", style="dim")

            for row in rows:
                table.add_row(
                    row.market,
                    row.side,
                    f"{row.size:.4f}",
                    f"{row.entry_price:.4f}",
                    f"{row.current_price:.4f}",
                    _money(row.unrealized_pnl),
                    _money(row.realized_pnl),
                    row.price_source.value,
                )

            console.print(table)
            console.print(f"Total unrealized: {_money(sum(r.unrealized_pnl for r in rows))}")

    _run(run())


@app.command()
def analytics(wallet: str = typer.Argument(..., help="Wallet address (base58)")):
    """Show performance and behavioral analytics"""
    async def run():
        async with components() as c:
            summary = await c.analytics.get_comprehensive_analytics(wallet)
            behavior = await c.analytics.get_behavioral_metrics(wallet)
            risk = summary.risk_metrics

            console.print(Panel.fit(
                f"[bold green]Performance[/bold green]\n\n"
                f"Realized PnL: {_money(summary.total_pnl['realized'])}\n"
                f"Unrealized PnL: {_money(summary.total_pnl['unrealized'])}\n"
                f"Win Rate: {summary.win_rate:.2f}%\n"
                f"Trades: {summary.trade_count['total']} "
                f"({summary.trade_count['open']} open)\n"
                f"Avg Duration: {summary.avg_trade_duration:.1f} min\n"
                f"Fees: {summary.total_fees:,.2f}\n"
                f"Volume: {summary.total_volume:,.2f}\n\n"
                f"Sharpe: {risk['sharpe_ratio']:.2f}  Sortino: {risk['sortino_ratio']:.2f}\n"
                f"Max Drawdown: {risk['max_drawdown']:.2f}%\n"
                f"Profit Factor: {risk['profit_factor']:.2f}  Expectancy: {risk['expectancy']:.2f}",
                title=wallet[:8] + "..."
            ))

            table = Table(title="Markets")
            table.add_column("Market", style="cyan")
            table.add_column("PnL", justify="right")
            table.add_column("Win Rate", justify="right")
            table.add_column("Positions", justify="right")
            table.add_column("Volume", justify="right")
            for market, stats in summary.market_performance.items():
                table.add_row(
                    market,
                    _money(stats["pnl"]),
                    f"{stats['win_rate']}%",
                    str(stats["trade_count"]),
                    f"{stats['volume']:,.2f}",
                )
            console.print(table)

            console.print("\n[bold]Insights:[/bold]")
            for insight in behavior.insights:
                console.print(f"  • {insight}")

    _run(run())


@app.command()
def leaderboard(limit: int = typer.Option(10, "--limit", "-l", help="Number of wallets")):
    """Rank stored wallets by realized PnL"""
    async def run():
        async with components() as c:
            rows = await c.analytics.get_global_leaderboard(limit)
            if not rows:
                console.print("[yellow]⚠ No wallets synced yet[/yellow]")
                return

            table = Table(title="Leaderboard")
            table.add_column("#", justify="right")
            table.add_column("Wallet", style="cyan")
            table.add_column("Realized PnL", justify="right")
            table.add_column("Win Rate", justify="right")
            table.add_column("Closed", justify="right")
            for rank, row in enumerate(rows, start=1):
                table.add_row(
                    str(rank),
                    row["wallet"],
                    _money(row["pnl"]),
                    f"{row['win_rate']:.2f}%",
                    str(row["closed_positions"]),
                )
            console.print(table)

    _run(run())

if __name__ == "__main__":
    app()
