"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from oidc_gate.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml, load_config
from oidc_gate.core.errors import ConfigurationError

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)

config_file_option = click.option(
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or formatted text.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        click.echo(f"{key}: {value}")


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


@click.group()
def config() -> None:
    """Manage oidc-gate configuration."""
    pass


@config.command("init")
@config_file_option
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing configuration file.",
)
@json_option
def config_init(config_file: Path | None, force: bool, output_json: bool) -> None:
    """Write a commented default configuration file.

    Examples:

        # Write ~/.oidc_gate/config.yaml
        oidc-gate config init

        # Overwrite an existing file
        oidc-gate config init --force
    """
    path = config_file or DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        if output_json:
            output_result({"status": "exists", "config_file": str(path)}, as_json=True)
            return
        click.echo(f"Configuration file already exists: {path}")
        click.echo("Use --force to overwrite it.")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())

    if output_json:
        output_result({"status": "created", "config_file": str(path)}, as_json=True)
        return
    click.echo(f"Configuration written to: {path}")
    click.echo("")
    click.echo("Next steps:")
    click.echo("  1. Set issuer_url, client_id and client_secret")
    click.echo("  2. Run 'oidc-gate discover <issuer_url>' to check the provider")


@config.command("show")
@config_file_option
@click.option("--show-secret", is_flag=True, help="Print the client secret unredacted")
@json_option
def config_show(config_file: Path | None, show_secret: bool, output_json: bool) -> None:
    """Show the effective configuration (file + environment)."""
    try:
        app_config = load_config(config_file)
    except ConfigurationError as e:
        error_result(str(e), output_json)

    data = app_config.to_dict(include_secret=show_secret)

    problems: list[str] = []
    try:
        app_config.relying_party.validate()
    except ConfigurationError as e:
        problems.append(str(e))

    if output_json:
        output_result(
            {
                "config_file": str(app_config.config_path) if app_config.config_path else None,
                "config": data,
                "problems": problems,
            },
            as_json=True,
        )
        return

    click.echo(f"Config file: {app_config.config_path or '(none, defaults and environment only)'}")
    click.echo("")
    for section, values in data.items():
        click.echo(f"{section}:")
        for key, value in values.items():
            click.echo(f"  {key}: {value}")
    for problem in problems:
        click.echo(f"Warning: {problem}", err=True)
