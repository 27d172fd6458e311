# -*- coding: utf-8 -*-
"""microbatch command line interface."""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import MicrobatchConfig, init_config
from .context import StreamingContext
from .errors import MicrobatchError, TerminationTimeoutError

# Console for rich output
console = Console()

# Main CLI app
app = typer.Typer(
    name="microbatch",
    help="Discretized-stream micro-batch processing",
    add_completion=False,
)

config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)


def configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def run_pipeline(ssc: StreamingContext, duration: Optional[float]) -> int:
    """Run ``ssc`` for ``duration`` seconds (forever if None); returns the number of tick errors."""
    await ssc.start()
    try:
        await ssc.await_termination(timeout=duration)
    except TerminationTimeoutError:
        logger.info("Timeout reached, stopping...")
    finally:
        await ssc.stop()

    errors = ssc.drain_errors()
    for error in errors:
        console.print(f"[yellow]tick error:[/yellow] {error}")
    return len(errors)


@app.callback()
def main_callback():
    """microbatch CLI - micro-batch streaming engine."""
    pass


@app.command()
def version():
    """Show microbatch version."""
    from . import __version__
    console.print(f"[bold blue]microbatch[/bold blue] version [bold green]{__version__}[/bold green]")


@app.command()
def demo(
    interval: float = typer.Option(2.0, "--interval", "-i", help="Batch interval in seconds"),
    window: float = typer.Option(10.0, "--window", "-w", help="Window duration in seconds"),
    slide: float = typer.Option(4.0, "--slide", "-s", help="Slide duration in seconds"),
    duration: float = typer.Option(30.0, "--duration", "-d", help="How long to run, in seconds"),
    num: Optional[int] = typer.Option(None, "--num", "-n", help="Elements to print per batch"),
    seed: Optional[int] = typer.Option(None, help="Random seed for the simulated logs"),
    log_level: str = typer.Option("INFO", "-l", "--loglevel", help="Logging level"),
    config_file: Optional[str] = typer.Option(None, "--config", help="JSON config file"),
):
    """Run the log-analysis demo: upper-case, keep ERROR lines, window, print."""
    configure_logging(log_level)
    config = init_config(config_file)
    num = config.operational.print_num if num is None else num

    console.print(Panel(
        f"Batch interval: {interval}s\n"
        f"Window: {window}s, slide: {slide}s\n"
        f"Duration: {duration}s",
        title="Streaming Log Demo"
    ))

    try:
        ssc = StreamingContext(interval, config=config, name="demo")
        logs = ssc.simulated_log_stream(seed=seed)
        errors = logs.map(str.upper).filter(lambda line: "ERROR" in line)
        errors.window(window, slide).print(num)
    except MicrobatchError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    try:
        failures = asyncio.run(run_pipeline(ssc, duration))
    except KeyboardInterrupt:
        console.print("\n[dim]Demo stopped by user[/dim]")
        raise typer.Exit(code=0)

    console.print(f"[bold green]Streaming completed[/bold green] after {ssc.tick_index} ticks")
    if failures:
        raise typer.Exit(code=1)


@app.command()
def socket(
    host: str = typer.Argument("localhost", help="Host to read lines from"),
    port: int = typer.Argument(9999, help="Port to read lines from"),
    contains: Optional[str] = typer.Option(None, "--contains", "-c", help="Keep only lines containing this text"),
    interval: float = typer.Option(1.0, "--interval", "-i", help="Batch interval in seconds"),
    window: Optional[float] = typer.Option(None, "--window", "-w", help="Window duration in seconds"),
    slide: Optional[float] = typer.Option(None, "--slide", "-s", help="Slide duration in seconds"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Stop after this many seconds"),
    num: Optional[int] = typer.Option(None, "--num", "-n", help="Elements to print per batch"),
    log_level: str = typer.Option("INFO", "-l", "--loglevel", help="Logging level"),
    config_file: Optional[str] = typer.Option(None, "--config", help="JSON config file"),
):
    """Print lines read from a TCP socket, one batch per interval."""
    configure_logging(log_level)
    config = init_config(config_file)
    num = config.operational.print_num if num is None else num

    try:
        ssc = StreamingContext(interval, config=config, name="socket")
        stream = ssc.socket_text_stream(host, port)
        if contains:
            stream = stream.filter(lambda line: contains in line)
        if window is not None:
            stream = stream.window(window, slide)
        stream.print(num)
    except MicrobatchError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    try:
        asyncio.run(run_pipeline(ssc, duration))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped by user[/dim]")


@config_app.command("show")
def config_show(
    config_file: Optional[str] = typer.Option(None, "--config", help="JSON config file"),
):
    """Show the effective configuration."""
    config: MicrobatchConfig = init_config(config_file)

    table = Table(title="microbatch configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Key", style="magenta")
    table.add_column("Value", style="green")

    for section, values in config.to_dict().items():
        for key, value in values.items():
            table.add_row(section, key, str(value))

    console.print(table)


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
