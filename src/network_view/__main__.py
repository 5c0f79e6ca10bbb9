"""CLI entry point for Network View."""

import json
import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from aiohttp import web

from .config import Config
from .discovery import network
from .utils.log_config import configure_logging
from .web import create_app


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON configuration file.",
    envvar="NETWORK_VIEW_CONFIG_FILE"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None, # Falls back to the Config default
    help="Override the logging level (e.g., DEBUG, INFO).",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format.",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> None:
    """Network View - streams mDNS service discovery to live subscribers."""
    try:
        if config_file:
            cfg = Config.from_file(Path(config_file))
        else:
            # Environment variables (and .env if present)
            cfg = Config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: 9999).")
@click.option("--bind", "-b", "bind_addr", default=None, help="IP address to bind to (default: all interfaces).")
@click.option("--iface", "-i", default=None, help="Network interface for mDNS discovery (default: first usable interface).")
@click.pass_context
def serve(ctx: click.Context, port: Optional[int], bind_addr: Optional[str], iface: Optional[str]) -> None:
    """Run discovery and serve the event stream over HTTP."""
    config: Config = ctx.obj["config"]
    if port is not None:
        config.server.port = port
    if bind_addr is not None:
        config.server.host = bind_addr
    if iface is not None:
        config.discovery.interface = iface

    configure_logging(config.logging)
    logger = structlog.get_logger("network_view")
    host = config.server.host or None
    logger.info("Starting mDNS discovery server", host=config.server.host or "*", port=config.server.port)

    try:
        web.run_app(create_app(config), host=host, port=config.server.port, print=None)
    except OSError as e:
        click.echo(f"Server error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include interfaces that are down.")
def interfaces(show_all: bool) -> None:
    """List local network interfaces eligible for discovery."""
    for descriptor in network.list_interfaces(up_only=not show_all):
        address = network.get_interface_ipv4(descriptor.name) or "-"
        click.echo(f"{descriptor.name:<16} mtu={descriptor.mtu:<6} {address:<16} {','.join(descriptor.flags)}")


@cli.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"Network View v{__version__}")


@cli.command()
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = ctx.obj["config"]
    click.echo(json.dumps(config.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    cli()
