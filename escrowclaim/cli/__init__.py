"""
escrowclaim/cli/__init__.py

escrowclaim CLI - root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    escrowclaim = "escrowclaim.cli:cli"

Adding a new command:
    1. Create escrowclaim/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

import click

from escrowclaim.cli.credentials import fingerprint_command, inspect_command, keygen_command
from escrowclaim.cli.lookup import account_command, claim_command
from escrowclaim.logging_config import setup_logging


@click.group()
@click.version_option(package_name="escrowclaim")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for diagnostics written to stderr.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write logs to a rotating file.",
)
def cli(log_level: str, log_file) -> None:
    """
    escrowclaim - claim credential and escrow store tooling.

    \b
    Commands:
      keygen       Create a credential signing key.
      fingerprint  Print the storage fingerprint of a credential.
      inspect      Verify a credential against a public key.
      account      Show an escrow account from a store journal.
      claim        Show a claim record from a store journal.

    \b
    Exit codes:
      0  ok
      1  claim error (invalid credential, unknown account / claim)
      2  usage or I/O error
    """
    setup_logging(log_level, log_file=log_file)


cli.add_command(keygen_command)
cli.add_command(fingerprint_command)
cli.add_command(inspect_command)
cli.add_command(account_command)
cli.add_command(claim_command)
