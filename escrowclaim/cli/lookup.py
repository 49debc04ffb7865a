"""
escrowclaim account / claim - read-only views over a store journal.

    escrowclaim account escrow.jsonl <account-id>
    escrowclaim claim   escrow.jsonl <claim-id> --format json

The journal is opened read-only in effect: neither command writes.
"""

from pathlib import Path

import click

from escrowclaim.accounts.service import MASKED_CREDENTIAL, claim_url
from escrowclaim.cli.output import EXIT_CLAIM_ERROR, EXIT_USAGE, emit, fail, format_option
from escrowclaim.core.exceptions import StoreError
from escrowclaim.core.models import AccountView, ClaimDetails
from escrowclaim.store.store import JsonlEscrowStore


def _open_store(path: str, fmt: str) -> JsonlEscrowStore:
    store_path = Path(path)
    if not store_path.exists():
        fail(f"Store not found: {path}", fmt, EXIT_USAGE)
    try:
        return JsonlEscrowStore(store_path)
    except StoreError as exc:
        fail(exc.message, fmt, EXIT_USAGE)


@click.command(name="account")
@click.argument("store", type=click.Path(dir_okay=False))
@click.argument("account_id")
@click.option(
    "--base-url",
    default="https://claim.bridgelet.io",
    show_default=True,
    help="Claim URL base used for the masked claim link.",
)
@format_option
def account_command(store: str, account_id: str, base_url: str, fmt: str) -> None:
    """Show ACCOUNT_ID from the STORE journal. The secret is never shown."""
    escrow_store = _open_store(store, fmt)
    account = escrow_store.get_account(account_id)
    if account is None:
        fail(f"Account {account_id} not found", fmt, EXIT_CLAIM_ERROR, kind="AccountNotFound")
    url = claim_url(base_url, MASKED_CREDENTIAL) if account.credential_fingerprint else None
    emit(AccountView.of(account, url).to_dict(), fmt, f"Account {account_id}")


@click.command(name="claim")
@click.argument("store", type=click.Path(dir_okay=False))
@click.argument("claim_id")
@format_option
def claim_command(store: str, claim_id: str, fmt: str) -> None:
    """Show the claim record CLAIM_ID from the STORE journal."""
    escrow_store = _open_store(store, fmt)
    record = escrow_store.get_claim(claim_id)
    if record is None:
        fail(f"Claim {claim_id} not found", fmt, EXIT_CLAIM_ERROR, kind="ClaimNotFound")
    emit(ClaimDetails.of(record).to_dict(), fmt, f"Claim {claim_id}")
