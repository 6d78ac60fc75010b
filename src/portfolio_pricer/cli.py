"""Click-based CLI for portfolio-pricer.

Commands only parse arguments and render output; pricing decisions live in
the classifier and the price resolver.
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from portfolio_pricer.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


async def _create_resolver_async(config):
    """Create a resolver with an initialized cache."""
    from portfolio_pricer.prices import PriceResolver

    return await PriceResolver.from_config(config)


def _split_symbols(symbols: tuple[str, ...]) -> list[str]:
    """Accept both ``A B C`` and ``A,B,C``."""
    return [s.strip() for arg in symbols for s in arg.split(",") if s.strip()]


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PORTFOLIO_PRICER_CONFIG",
    default=None,
    help="Path to portfolio-pricer.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="portfolio-pricer")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Portfolio Pricer: cached price resolution for stocks, funds, FX and metals."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
def classify(symbols: tuple[str, ...]) -> None:
    """Show the asset type and provider symbol of each ticker."""
    from portfolio_pricer.prices import classifier

    table = Table(title="Symbol Classification")
    table.add_column("Symbol", style="bold")
    table.add_column("Asset type")
    table.add_column("Provider symbol")

    for symbol in _split_symbols(symbols):
        s = classifier.normalize(symbol)
        table.add_row(s, classifier.classify(s).value, classifier.transform(s))

    console.print(table)


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Write records and stats as JSON to stdout.",
)
@click.option(
    "--refresh",
    is_flag=True,
    default=False,
    help="Invalidate the cache before resolving.",
)
@click.pass_context
def resolve(ctx: click.Context, symbols: tuple[str, ...], as_json: bool, refresh: bool) -> None:
    """Resolve current prices, cache first."""
    config = _load_config(ctx)

    async def _run():
        resolver = await _create_resolver_async(config)
        try:
            if refresh:
                await resolver.invalidate_cache()
            batch = resolver.resolve_batch(_split_symbols(symbols))
            records = []
            async for record in batch:
                records.append(record)
                if not as_json and ctx.obj["verbose"]:
                    console.print(f"  {record.symbol}: {record.price} ({record.source})")
            return records, batch.stats
        finally:
            await resolver.close()

    records, stats = _run_async(_run())

    if as_json:
        output = {
            "items": [r.model_dump(mode="json") for r in records],
            "stats": stats.model_dump(),
        }
        click.echo(json.dumps(output, indent=2, default=str))
    else:
        _output_records_table(records)
        console.print(
            f"[green]✓[/green] {stats.total} symbols: "
            f"{stats.live} live, {stats.cached} cached"
            + (f" ([red]{stats.failed} failed[/red])" if stats.failed else "")
        )

    if stats.failed:
        raise SystemExit(1)


def _output_records_table(records) -> None:
    """Render price records as a Rich table."""
    from portfolio_pricer.core.models import utcnow

    today = utcnow().date()
    table = Table(title="Prices")
    table.add_column("Symbol", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Change %", justify="right")
    table.add_column("Date")
    table.add_column("Source")
    table.add_column("Status")

    for r in sorted(records, key=lambda r: r.symbol):
        if r.is_error:
            status = f"[red]{r.error_kind.value if r.error_kind else 'error'}[/red]"
        elif r.is_dated(today):
            status = "[yellow]dated[/yellow]"
        else:
            status = "[green]ok[/green]"
        color = "green" if r.change_percent > 0 else "red" if r.change_percent < 0 else "white"
        table.add_row(
            r.symbol,
            f"{r.price:,.4f}",
            f"[{color}]{r.change:+,.4f}[/{color}]",
            f"[{color}]{r.change_percent:+.2f}%[/{color}]",
            str(r.price_date or ""),
            r.source.value if r.source else "",
            status,
        )

    console.print(table)


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.option(
    "--range",
    "-r",
    "range_",
    type=click.Choice(["1d", "1w", "1mo", "3mo", "6mo", "1y", "3y", "5y"]),
    default="1mo",
    help="History range.",
)
@click.pass_context
def history(ctx: click.Context, symbol: str, range_: str) -> None:
    """Print a price series as JSON (oldest first)."""
    from portfolio_pricer.core import HistoryRange, QuoteError

    config = _load_config(ctx)

    async def _run():
        resolver = await _create_resolver_async(config)
        try:
            return await resolver.fetch_history(symbol, HistoryRange(range_))
        finally:
            await resolver.close()

    try:
        points = _run_async(_run())
    except QuoteError as e:
        console.print(f"[red]History unavailable for {symbol}: {e}[/red]")
        raise SystemExit(1)

    if not points:
        console.print(f"[yellow]No history for {symbol}.[/yellow]")
    click.echo(json.dumps([p.model_dump(mode="json") for p in points], indent=2))


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.pass_context
def validate(ctx: click.Context, symbol: str) -> None:
    """Check that SYMBOL can be priced, bypassing the cache."""
    config = _load_config(ctx)

    async def _run():
        resolver = await _create_resolver_async(config)
        try:
            return await resolver.validate_symbol(symbol)
        finally:
            await resolver.close()

    record = _run_async(_run())
    if record is None:
        console.print(f"[red]✗[/red] {symbol.upper()} could not be priced")
        raise SystemExit(1)

    console.print(
        f"[green]✓[/green] {record.symbol} = {record.price:,.4f}"
        + (f" {record.currency}" if record.currency else "")
        + (f" ({record.name})" if record.name else "")
    )


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


@cli.group()
def cache() -> None:
    """Inspect and manage the durable price cache."""


@cache.command("stats")
@click.pass_context
def cache_stats(ctx: click.Context) -> None:
    """Show cache size and freshness."""
    config = _load_config(ctx)

    async def _run():
        resolver = await _create_resolver_async(config)
        try:
            return await resolver.cache_stats()
        finally:
            await resolver.close()

    stats = _run_async(_run())

    table = Table(title="Price Cache")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Backend", config.cache.backend.value)
    if config.cache.backend.value == "sqlite":
        table.add_row("Database path", config.cache.sqlite_path)
    table.add_section()
    table.add_row("Entries", str(stats.total))
    table.add_row("Fresh", str(stats.valid))
    table.add_row("Invalidated", str(stats.invalidated))
    console.print(table)


@cache.command("invalidate")
@click.pass_context
def cache_invalidate(ctx: click.Context) -> None:
    """Mark every entry stale so the next resolve refetches it."""
    config = _load_config(ctx)

    async def _run():
        resolver = await _create_resolver_async(config)
        try:
            return await resolver.invalidate_cache()
        finally:
            await resolver.close()

    count = _run_async(_run())
    console.print(f"[green]✓[/green] Invalidated {count} entries")


@cache.command("clear")
@click.confirmation_option(prompt="Delete every cached price?")
@click.pass_context
def cache_clear(ctx: click.Context) -> None:
    """Delete every cached entry."""
    config = _load_config(ctx)

    async def _run():
        resolver = await _create_resolver_async(config)
        try:
            return await resolver.clear_cache()
        finally:
            await resolver.close()

    count = _run_async(_run())
    console.print(f"[green]✓[/green] Cleared {count} entries")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address. Default: api.host.")
@click.option("--port", "-p", type=int, default=None, help="Port number. Default: api.port.")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    try:
        import uvicorn
    except ImportError:
        console.print(
            "[red]uvicorn not installed. Install with: "
            "pip install portfolio-pricer[api][/red]"
        )
        raise SystemExit(1)

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    console.print(f"Starting portfolio-pricer API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "portfolio_pricer.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
