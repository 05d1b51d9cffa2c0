"""CLI entry point for oidc-gate."""

import click

from oidc_gate import __version__
from oidc_gate.cli import config as config_commands
from oidc_gate.cli import discover as discover_commands
from oidc_gate.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="oidc-gate")
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default=None,
    help="Enable logging at this level",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """oidc-gate - OpenID Connect relying-party session core."""
    ctx.ensure_object(dict)
    if log_level:
        configure_logging(log_level, trace_enabled=log_level.upper() == "TRACE")


cli.add_command(config_commands.config)
cli.add_command(discover_commands.discover)
