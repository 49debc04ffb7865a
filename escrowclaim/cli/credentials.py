"""
escrowclaim keygen / fingerprint / inspect

Usage:
    escrowclaim keygen signing.pem
    escrowclaim fingerprint <credential>
    escrowclaim inspect <credential> --public-key <hex> [--format json]

inspect runs the full credential verification (structure, signature, fields,
expiry, type) and never touches a store.
"""

import re
from pathlib import Path

import click

from escrowclaim.cli.output import (
    EXIT_CLAIM_ERROR,
    EXIT_USAGE,
    emit,
    fail,
    format_option,
)
from escrowclaim.core.crypto import Ed25519KeyManager
from escrowclaim.core.exceptions import ClaimError
from escrowclaim.core.time import wire_timestamp
from escrowclaim.credentials.codec import CredentialCodec, fingerprint

_HEX_KEY_RE = re.compile(r"^[0-9a-f]{64}$")


def _public_key_hex(ctx, param, value: str) -> str:
    value = value.strip().lower()
    if not _HEX_KEY_RE.match(value):
        raise click.BadParameter("must be 64 hex characters")
    return value


@click.command(name="keygen")
@click.argument("out", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file.")
def keygen_command(out: str, force: bool) -> None:
    """
    Create an Ed25519 signing key for claim credentials.

    Writes a PEM private key to OUT and prints the public key hex, which is
    what `inspect --public-key` expects.
    """
    path = Path(out)
    if path.exists() and not force:
        fail(f"{path} already exists (use --force to overwrite)", "human", EXIT_USAGE)
    key = Ed25519KeyManager.generate()
    try:
        key.save(path)
    except RuntimeError as exc:
        fail(str(exc), "human", EXIT_USAGE)
    click.echo(key.public_key_hex)


@click.command(name="fingerprint")
@click.argument("credential")
def fingerprint_command(credential: str) -> None:
    """Print the SHA-256 fingerprint a store indexes CREDENTIAL under."""
    click.echo(fingerprint(credential.strip()))


@click.command(name="inspect")
@click.argument("credential")
@click.option(
    "--public-key", "public_key",
    required=True,
    callback=_public_key_hex,
    metavar="HEX",
    help="Service signing public key (64 hex chars).",
)
@format_option
def inspect_command(credential: str, public_key: str, fmt: str) -> None:
    """
    Verify CREDENTIAL and show its payload.

    Exits 1 if the credential is malformed, forged, expired or of the wrong
    type.
    """
    credential = credential.strip()
    codec = CredentialCodec.for_public_key(public_key)
    try:
        payload = codec.verify(credential)
    except ClaimError as exc:
        fail(exc.message, fmt, EXIT_CLAIM_ERROR, kind=type(exc).__name__)

    emit({
        "public_key":  payload.public_key,
        "type":        payload.type,
        "issued_at":   payload.issued_at,
        "expires_at":  wire_timestamp(payload.expires_at_datetime),
        "fingerprint": fingerprint(credential),
    }, fmt, "Credential valid")
