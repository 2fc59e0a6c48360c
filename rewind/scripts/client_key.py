"""CLI command for minting the confidential client's signing key.

Usage:
    flask generate-client-key             # PEM on stdout
    flask generate-client-key --env       # One line, ready for OAUTH_PRIVATE_KEY=
"""

from __future__ import annotations

import click
from flask.cli import with_appcontext


@click.command("generate-client-key")
@click.option("--env", "as_env", is_flag=True, help="Print as a single OAUTH_PRIVATE_KEY line")
@with_appcontext
def generate_client_key_command(as_env: bool):
    """Generate a new ES256 key for private_key_jwt client authentication."""
    from rewind.core.auth.keys import generate_key, key_to_pem

    pem = key_to_pem(generate_key())
    if as_env:
        click.echo("OAUTH_PRIVATE_KEY=" + pem.strip().replace("\n", "\\n"))
    else:
        click.echo(pem, nl=False)
