"""
Escrow issuance and read-side services.

EscrowIssuer
    create()           generate identity → fund on ledger → issue credential
                       → persist PENDING_PAYMENT. The raw credential is
                       returned here and nowhere else.
    confirm_funding()  PENDING_PAYMENT → PENDING_CLAIM
    expire()           PENDING_* → EXPIRED
    mark_failed()      PENDING_* → FAILED
    get_account()      public AccountView
    list_accounts()    status filter + limit/offset paging

ClaimVerifier
    verify()           stateless preview of a credential, no mutation
    find_claim()       ClaimDetails by claim id

Secrets and raw credentials are never logged.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from escrowclaim.core.ciphers import SecretCipher
from escrowclaim.core.exceptions import ClaimNotFound, InvalidRequest
from escrowclaim.core.models import (
    AccountStatus,
    AccountView,
    ClaimDetails,
    ClaimVerification,
    EscrowAccount,
    IssuedEscrow,
    normalize_amount,
    normalize_asset,
)
from escrowclaim.core.time import Clock, utc_now
from escrowclaim.credentials.codec import CredentialCodec, fingerprint
from escrowclaim.lifecycle.state_machine import assert_transition, check_eligibility
from escrowclaim.network.client import LedgerClient
from escrowclaim.settlement.engine import resolve_credential
from escrowclaim.store.store import EscrowStore
from escrowclaim.sweeps.validator import SweepValidator

logger = logging.getLogger(__name__)

MASKED_CREDENTIAL = "***"
MAX_PAGE_SIZE = 100


def claim_url(base_url: str, credential: str) -> str:
    return f"{base_url.rstrip('/')}/c/{credential}"


class EscrowIssuer:
    """
    Creates escrows and applies the externally triggered transitions.

    credential_ttl bounds the credential's own lifetime; expires_in bounds
    the escrow. Both are enforced at redemption.
    """

    def __init__(
        self,
        store: EscrowStore,
        codec: CredentialCodec,
        ledger_client: LedgerClient,
        cipher: SecretCipher,
        validator: SweepValidator,
        credential_ttl: int = 2592000,
        min_expires_in: int = 3600,
        max_expires_in: int = 2592000,
        claim_base_url: str = "https://claim.bridgelet.io",
        clock: Clock = utc_now,
    ):
        self.store          = store
        self.codec          = codec
        self.ledger_client  = ledger_client
        self.cipher         = cipher
        self.validator      = validator
        self.credential_ttl = credential_ttl
        self.min_expires_in = min_expires_in
        self.max_expires_in = max_expires_in
        self.claim_base_url = claim_base_url
        self.clock          = clock

    # ── Create ────────────────────────────────────────────────

    def create(
        self,
        funding_source: str,
        amount: str,
        asset: str,
        expires_in: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IssuedEscrow:
        amount, asset = self._validate_request(funding_source, amount, asset, expires_in)

        now = self.clock()
        expires_at = now + timedelta(seconds=expires_in)

        public_key, secret = self.ledger_client.generate_identity()
        funding_reference = self.ledger_client.fund_new_account(
            public_key, amount, asset, expires_at
        )
        logger.info("Escrow identity %s funded: %s", public_key, funding_reference)

        credential = self.codec.issue(public_key, self.credential_ttl)

        account = EscrowAccount(
            id=                     EscrowAccount.new_id(),
            public_key=             public_key,
            secret_encrypted=       self.cipher.encrypt(secret),
            funding_source=         funding_source,
            amount=                 amount,
            asset=                  asset,
            status=                 AccountStatus.PENDING_PAYMENT,
            expires_at=             expires_at,
            created_at=             now,
            updated_at=             now,
            credential_fingerprint= fingerprint(credential),
            metadata=               dict(metadata or {}),
        )
        del secret
        stored = self.store.insert_account(account)
        logger.info("Escrow %s created, expires %s", stored.id, stored.expires_at)

        url = claim_url(self.claim_base_url, credential)
        return IssuedEscrow(
            account=           AccountView.of(stored, url),
            credential=        credential,
            claim_url=         url,
            funding_reference= funding_reference,
        )

    def _validate_request(self, funding_source, amount, asset, expires_in):
        if not self.validator.is_valid_address(funding_source):
            raise InvalidRequest("funding_source must be a valid account address")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise InvalidRequest("expires_in must be an integer number of seconds")
        if not self.min_expires_in <= expires_in <= self.max_expires_in:
            raise InvalidRequest(
                f"expires_in must be between {self.min_expires_in} "
                f"and {self.max_expires_in} seconds"
            )
        try:
            amount = normalize_amount(amount)
            asset = normalize_asset(asset, self.validator.is_valid_address)
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from exc
        return amount, asset

    # ── External transitions ──────────────────────────────────

    def confirm_funding(self, account_id: str) -> AccountView:
        """Funding observed on the ledger: open the escrow for claiming."""
        return self._transition(account_id, AccountStatus.PENDING_CLAIM)

    def expire(self, account_id: str) -> AccountView:
        return self._transition(account_id, AccountStatus.EXPIRED)

    def mark_failed(self, account_id: str) -> AccountView:
        return self._transition(account_id, AccountStatus.FAILED)

    def _transition(self, account_id: str, target: AccountStatus) -> AccountView:
        account = self.store.require_account(account_id)
        assert_transition(account, target)
        now = self.clock()

        def apply(acct: EscrowAccount) -> None:
            acct.status = target
            if target == AccountStatus.EXPIRED:
                acct.expired_at = now

        updated = self.store.conditional_update(account_id, account.status, apply)
        logger.info("Account %s moved to %s", account_id, target.value)
        return self._view(updated)

    # ── Reads ─────────────────────────────────────────────────

    def get_account(self, account_id: str) -> AccountView:
        return self._view(self.store.require_account(account_id))

    def list_accounts(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AccountView], int]:
        """
        Page through accounts in creation order, optionally filtered by status.

        Returns (views, total) where total counts every match before paging.
        limit is capped at MAX_PAGE_SIZE.
        """
        wanted = None
        if status is not None:
            try:
                wanted = AccountStatus(status)
            except ValueError:
                raise InvalidRequest(f"Unknown account status: {status!r}") from None
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidRequest("limit must be a positive integer")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidRequest("offset must be a non-negative integer")

        matches = [
            a for a in self.store.list_accounts()
            if wanted is None or a.status == wanted
        ]
        page = matches[offset:offset + min(limit, MAX_PAGE_SIZE)]
        return [self._view(a) for a in page], len(matches)

    def _view(self, account: EscrowAccount) -> AccountView:
        url = None
        if account.credential_fingerprint:
            url = claim_url(self.claim_base_url, MASKED_CREDENTIAL)
        return AccountView.of(account, url)


class ClaimVerifier:
    """Read-only credential checks and claim lookups."""

    def __init__(self, store: EscrowStore, codec: CredentialCodec, clock: Clock = utc_now):
        self.store = store
        self.codec = codec
        self.clock = clock

    def verify(self, credential: str) -> ClaimVerification:
        """
        Preview a credential.

        Raises the same errors redemption would, except that an already
        claimed escrow surfaces as AlreadyRedeemed (conflict) instead of a
        replay.
        """
        logger.info("Starting claim credential verification")
        _, account = resolve_credential(self.codec, self.store, credential)
        check_eligibility(account, self.clock())
        logger.info("Claim credential verified for account: %s", account.id)
        return ClaimVerification(
            valid=      True,
            account_id= account.id,
            amount=     account.amount,
            asset=      account.asset,
            expires_at= account.expires_at,
        )

    def find_claim(self, claim_id: str) -> ClaimDetails:
        logger.info("Looking up claim: %s", claim_id)
        record = self.store.get_claim(claim_id)
        if record is None:
            logger.warning("Claim %s not found", claim_id)
            raise ClaimNotFound(f"Claim {claim_id} not found")
        return ClaimDetails.of(record)
