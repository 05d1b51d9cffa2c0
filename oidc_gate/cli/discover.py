"""Provider discovery CLI command."""

from __future__ import annotations

import click

from oidc_gate.cli.config import error_result, json_option, output_result
from oidc_gate.core.oidc.discovery import ProviderMetadataResolver, Unavailable


@click.command()
@click.argument("issuer")
@click.option("--timeout", type=float, default=10.0, show_default=True, help="HTTP timeout in seconds")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification")
@json_option
def discover(issuer: str, timeout: float, insecure: bool, output_json: bool) -> None:
    """Fetch and check an issuer's discovery document and signing keys.

    Examples:

        oidc-gate discover https://keycloak.example.com/realms/main

        oidc-gate discover https://keycloak.example.com/realms/main --json
    """
    if not output_json:
        click.echo(f"Discovering OIDC configuration for {issuer}...")
        click.echo("")

    resolver = ProviderMetadataResolver(timeout=timeout, verify_ssl=not insecure)
    result = resolver.resolve(issuer)

    if isinstance(result, Unavailable):
        error_result(result.error, output_json)

    key_ids = [key.key_id for key in result.jwks.keys]

    if output_json:
        output_result(
            {
                "issuer": result.issuer,
                "authorization_endpoint": result.authorization_endpoint,
                "token_endpoint": result.token_endpoint,
                "userinfo_endpoint": result.userinfo_endpoint,
                "end_session_endpoint": result.end_session_endpoint,
                "jwks_uri": result.jwks_uri,
                "key_ids": key_ids,
                "scopes_supported": list(result.scopes_supported),
            },
            as_json=True,
        )
        return

    click.echo("OIDC Configuration:")
    click.echo(f"  Issuer: {result.issuer}")
    click.echo(f"  Authorization: {result.authorization_endpoint}")
    click.echo(f"  Token: {result.token_endpoint}")
    if result.userinfo_endpoint:
        click.echo(f"  UserInfo: {result.userinfo_endpoint}")
    click.echo(f"  JWKS: {result.jwks_uri} ({len(key_ids)} keys)")
    if result.end_session_endpoint:
        click.echo(f"  Logout: {result.end_session_endpoint}")
    else:
        click.echo("  Logout: not supported")
    if result.scopes_supported:
        click.echo(f"  Scopes: {', '.join(result.scopes_supported)}")
