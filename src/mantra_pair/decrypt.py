"""Offline recovery of credentials from an encrypted export token.

    SESSION_SECRET=... mantra-decrypt 'MantraEnc~...' > creds.json
"""

from __future__ import annotations

import sys
import typing as t

import click

from mantra_pair.core.exporter import ENCRYPTED_PREFIX, decrypt_token
from mantra_pair.errors import TokenError


@click.command()
@click.argument("token", required=False)
@click.option("--secret", envvar="SESSION_SECRET", default=None, help="Export secret (defaults to SESSION_SECRET)")
def main(token: t.Optional[str], secret: t.Optional[str]) -> None:
    if not token or not token.startswith(ENCRYPTED_PREFIX):
        click.echo(f"Usage: SESSION_SECRET=... mantra-decrypt {ENCRYPTED_PREFIX}<token>", err=True)
        sys.exit(2)
    secret = (secret or "").strip()
    if not secret:
        click.echo("SESSION_SECRET is required", err=True)
        sys.exit(2)

    try:
        creds = decrypt_token(token, secret)
    except TokenError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)

    out = click.get_binary_stream("stdout")
    out.write(creds)
    out.flush()


if __name__ == "__main__":
    main()
