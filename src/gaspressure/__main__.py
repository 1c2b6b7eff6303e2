"""
GasPressure CLI entry point.

Usage:
    gaspressure [OPTIONS] COMMAND [ARGS]...
    python -m gaspressure [OPTIONS] COMMAND [ARGS]...
"""

import logging
import signal
import threading
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.table import Table

from gaspressure import __version__
from gaspressure.core.config import GasPressureConfig, get_config
from gaspressure.rpc.client import GasPressureClient
from gaspressure.rpc.contract import RpcError
from gaspressure.runners import run_demo, run_input_client, run_output_client, run_server
from gaspressure.transport import TransportError, create_transport

console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Set up root logging for a CLI process."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _stop_on_signals() -> threading.Event:
    """Event set by SIGINT/SIGTERM."""
    stop_event = threading.Event()

    def _handler(signum, frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    return stop_event


def _transport_factory(config: GasPressureConfig):
    if config.broker.backend == "memory":
        raise click.UsageError(
            "The memory broker only works inside one process. "
            "Use --broker redis, or the 'demo' command."
        )
    return lambda: create_transport(config.broker)


@click.group()
@click.version_option(version=__version__, prog_name="gaspressure")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Configuration file (default: ./gaspressure.yaml)",
)
@click.option(
    "--broker",
    type=click.Choice(["memory", "redis"]),
    default=None,
    help="Override the broker backend",
)
@click.pass_context
def cli(ctx, verbose, config_path, broker):
    """GasPressure - gas container simulation over broker RPC."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    config = get_config(config_path)
    if broker:
        config.broker.backend = broker
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def server(ctx):
    """Run the gas pressure server."""
    configure_logging(ctx.obj["verbose"])
    config = ctx.obj["config"]
    run_server(config, _transport_factory(config), _stop_on_signals())


@cli.command("input-client")
@click.pass_context
def input_client(ctx):
    """Run a client that adds mass while pressure is low."""
    configure_logging(ctx.obj["verbose"])
    config = ctx.obj["config"]
    run_input_client(config, _transport_factory(config), _stop_on_signals())


@cli.command("output-client")
@click.pass_context
def output_client(ctx):
    """Run a client that removes mass while pressure is high."""
    configure_logging(ctx.obj["verbose"])
    config = ctx.obj["config"]
    run_output_client(config, _transport_factory(config), _stop_on_signals())


@cli.command()
@click.option("--duration", "-d", default=30.0, show_default=True, help="Seconds to run")
@click.pass_context
def demo(ctx, duration):
    """Run server and both clients in one process on an in-memory broker."""
    configure_logging(ctx.obj["verbose"])
    console.print(f"[bold green]Running in-memory demo for {duration:.0f}s...[/bold green]")
    broker = run_demo(ctx.obj["config"], duration, _stop_on_signals())

    table = Table(title="Broker")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name, value in broker.get_stats().items():
        table.add_row(name, str(value))
    console.print(table)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the container pressure and destroyed flag."""
    config = ctx.obj["config"]
    try:
        transport = _transport_factory(config)()
        with transport, GasPressureClient.from_config(transport, config, role="Status") as client:
            pressure = client.get_pressure()
            destroyed = client.is_destroyed()
    except (RpcError, TransportError) as e:
        console.print(f"[red]Status unavailable: {e}[/red]")
        raise SystemExit(1)

    table = Table(title="Gas Container")
    table.add_column("Property")
    table.add_column("Value", justify="right")
    table.add_row("Pressure", f"{pressure:.2f}")
    table.add_row("Destroyed", "[red]yes[/red]" if destroyed else "[green]no[/green]")
    console.print(table)


@cli.group("config")
def config_group():
    """Configuration commands."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx):
    """Print the effective configuration as YAML."""
    console.print(yaml.dump(ctx.obj["config"].to_dict(), default_flow_style=False))


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
