"""gen-http-proxy CLI - Token-protected reverse proxy in front of one upstream."""

import asyncio
import logging
import os
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from . import __version__
from .config import ProxyConfig, resolve_config
from .exceptions import ConfigurationError
from .server import run_server
from .ssl import generate_self_signed_cert

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def setup_logging(level_name: str):
    """Route all logging (ours and aiohttp's) through rich."""
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        raise click.UsageError(f"Unknown log level '{level_name}'")
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def access_url(config: ProxyConfig) -> str:
    url = f"{config.scheme}://{config.listen.host}:{config.listen.port}"
    if config.auth_enabled:
        url += f"?token={config.token}"
    return url


def print_banner(config: ProxyConfig):
    """Show where we forward to and how to get in."""
    lines = [
        f"[bold]Redirecting to:[/bold] {config.target.host}:{config.target.port}",
        f"[bold]Access URL:[/bold] {access_url(config)}",
    ]
    if config.auth_enabled:
        lines.append(f"[bold]Token:[/bold] {config.token}")
    else:
        lines.append("[yellow]Authentication disabled (blank token)[/yellow]")
    lines.append(f"[bold]Use cookies:[/bold] {str(config.use_cookies).lower()}")
    if config.cookie_max_age is not None:
        lines.append(f"[bold]Expiration:[/bold] {config.cookie_max_age}")
    lines.append(f"[dim]Denied requests: {config.fallback.value}[/dim]")

    console.print(Panel("\n".join(lines), title="gen-http-proxy", border_style="cyan"))


@click.command()
@click.version_option(version=__version__, prog_name="gen-http-proxy")
@click.option("--log-level", default=None,
              help="Logging level (default: $loglevel or INFO)")
@click.option("--generate-cert", is_flag=True,
              help="Write a self-signed key/certificate to $key/$cert and exit")
@click.argument("addresses", nargs=-1, metavar="[TARGET | LISTEN TARGET]")
def main(addresses, log_level, generate_cert):
    """Proxy to TARGET (host:port), letting through only requests that carry the token.

    Settings come from the environment (secure, token, key, cert, usecookies,
    sessiontimeout, staticserver, staticfolder, fallback, server, target);
    positional addresses take precedence over server/target.
    """
    try:
        config = resolve_config(os.environ, addresses)
    except ConfigurationError as e:
        raise click.UsageError(e.message)

    setup_logging(log_level or config.log_level)

    if generate_cert:
        try:
            common_name = config.listen.host if config.listen.host != "0.0.0.0" else "localhost"
            generate_self_signed_cert(config.keyfile, config.certfile, common_name)
        except ConfigurationError as e:
            err_console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        console.print(f"[green]✓[/green] Self-signed certificate written to {config.certfile}")
        return

    try:
        asyncio.run(run_server(config, on_ready=print_banner))
    except ConfigurationError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
