"""
Claim redemption engine.

redeem() drives one redemption through these checkpoints:

    1. verify credential, locate escrow by fingerprint
    2. idempotency gate: escrow already CLAIMED → replay stored claim
    3. lifecycle eligibility
    4. sweep validation (destination / amount / asset)
    5. COMMIT A: conditional PENDING_CLAIM → CLAIMED        ┐
    6. authorize                                            │ saga: failure
    7. transfer                                             ┘ restores step 5
    8. insert ClaimRecord
    9. reclaim reserve (best-effort)
   10. return RedemptionResult

Step 5 is the only linearization point. A concurrent redemption that loses
it observes CLAIMED (ConcurrentUpdate) and takes the replay path, exactly as
if it had arrived after the winner.

Nothing here retries. A caller that gets an error may resubmit the same
credential; the idempotency gate makes that safe.
"""

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from escrowclaim.core.ciphers import SecretCipher
from escrowclaim.core.exceptions import (
    ConcurrentUpdate,
    CredentialInvalid,
    RedemptionInProgress,
)
from escrowclaim.core.models import (
    ALREADY_REDEEMED_MESSAGE,
    AccountStatus,
    ClaimRecord,
    EscrowAccount,
    RedemptionResult,
)
from escrowclaim.core.time import Clock, utc_now, wire_timestamp
from escrowclaim.credentials.codec import CredentialCodec, CredentialPayload, fingerprint
from escrowclaim.lifecycle.state_machine import check_eligibility
from escrowclaim.settlement.saga import Saga
from escrowclaim.store.store import EscrowStore
from escrowclaim.sweeps.authorizer import Authorizer
from escrowclaim.sweeps.executor import SweepExecutor
from escrowclaim.sweeps.validator import SweepRequest, SweepValidator

logger = logging.getLogger(__name__)

EventListener = Callable[[str, dict], None]

SWEEP_COMPLETED = "sweep.completed"
SWEEP_FAILED    = "sweep.failed"


def resolve_credential(
    codec: CredentialCodec,
    store: EscrowStore,
    credential: str,
) -> Tuple[CredentialPayload, EscrowAccount]:
    """
    Verify a credential and load the escrow it was issued for.

    Raises CredentialMalformed / CredentialExpired / CredentialInvalid.
    Storage state is not checked beyond existence.
    """
    payload = codec.verify(credential)
    fp = fingerprint(credential)
    account = store.find_by_fingerprint(fp)
    if account is None:
        logger.warning("No account for credential fingerprint %s...", fp[:12])
        raise CredentialInvalid("Invalid claim credential")
    if account.public_key != payload.public_key:
        logger.warning("Credential identity does not match account %s", account.id)
        raise CredentialInvalid("Invalid claim credential")
    return payload, account


class RedemptionEngine:
    """Redeems claim credentials. One instance serves concurrent callers."""

    def __init__(
        self,
        store: EscrowStore,
        codec: CredentialCodec,
        validator: SweepValidator,
        authorizer: Authorizer,
        executor: SweepExecutor,
        cipher: SecretCipher,
        clock: Clock = utc_now,
        listeners: Iterable[EventListener] = (),
    ):
        self.store      = store
        self.codec      = codec
        self.validator  = validator
        self.authorizer = authorizer
        self.executor   = executor
        self.cipher     = cipher
        self.clock      = clock
        self.listeners: List[EventListener] = list(listeners)

    def add_listener(self, listener: EventListener) -> None:
        self.listeners.append(listener)

    # ── Redeem ────────────────────────────────────────────────

    def redeem(
        self,
        credential: str,
        destination: str,
        amount: Optional[str] = None,
        asset: Optional[str] = None,
    ) -> RedemptionResult:
        """
        Redeem a claim credential to `destination`.

        amount / asset default to the escrow's recorded values; when given
        they must match them exactly.

        A repeat call for an escrow that is already CLAIMED returns the stored
        claim with the "already redeemed" message. While the winning attempt
        is still transferring there is no claim yet, so a concurrent loser
        gets RedemptionInProgress (conflict) instead; callers retry it with
        the same credential to receive the replayed result.
        """
        logger.info("Redeeming claim for destination: %s", destination)

        _, account = resolve_credential(self.codec, self.store, credential)

        if account.status == AccountStatus.CLAIMED:
            return self._replay(account.id)

        now = self.clock()
        check_eligibility(account, now)

        request = SweepRequest(
            account=     account,
            destination= destination,
            amount=      account.amount if amount is None else amount,
            asset=       account.asset if asset is None else asset,
        )
        self.validator.validate(request)

        try:
            outcome = self._sweep_saga(account, request, now).run()
        except ConcurrentUpdate as exc:
            return self._lost_commit(account, exc)
        except Exception as exc:
            self._emit(SWEEP_FAILED, {
                "account_id":  account.id,
                "amount":      account.amount,
                "asset":       account.asset,
                "destination": destination,
                "error":       getattr(exc, "message", str(exc)),
                "timestamp":   wire_timestamp(self.clock()),
            })
            raise

        receipt = outcome["transfer"]
        record = self._record_claim(account, request, receipt.reference, now)

        self.executor.reclaim_reserve(self._secret_of(account), destination)

        logger.info("Claim redeemed successfully: %s", record.id)
        self._emit(SWEEP_COMPLETED, {
            "account_id":         account.id,
            "amount":             record.amount_swept,
            "asset":              record.asset,
            "destination":        record.destination,
            "transfer_reference": record.transfer_reference,
            "claimed_at":         wire_timestamp(record.claimed_at),
            "metadata":           dict(account.metadata),
        })
        return RedemptionResult.from_claim(record)

    # ── Steps ─────────────────────────────────────────────────

    def _sweep_saga(self, account: EscrowAccount, request: SweepRequest, now) -> Saga:
        previous_destination = account.destination
        previous_claimed_at  = account.claimed_at

        def mark_claimed(results):
            def apply(acct: EscrowAccount) -> None:
                acct.status      = AccountStatus.CLAIMED
                acct.destination = request.destination
                acct.claimed_at  = now
            marked = self.store.conditional_update(account.id, AccountStatus.PENDING_CLAIM, apply)
            logger.info("Account %s marked claimed", account.id)
            return marked

        def unmark_claimed(results):
            def restore(acct: EscrowAccount) -> None:
                acct.status      = AccountStatus.PENDING_CLAIM
                acct.destination = previous_destination
                acct.claimed_at  = previous_claimed_at
            self.store.conditional_update(account.id, AccountStatus.CLAIMED, restore)
            logger.info("Account %s claim mark rolled back", account.id)

        def authorize(results):
            return self.authorizer.authorize(account.public_key, request.destination)

        def transfer(results):
            return self.executor.transfer(
                self._secret_of(account),
                request.destination,
                request.amount,
                request.asset,
            )

        return (
            Saga(f"redeem:{account.id}")
            .step("mark_claimed", mark_claimed, compensate=unmark_claimed)
            .step("authorize", authorize)
            .step("transfer", transfer)
        )

    def _record_claim(self, account: EscrowAccount, request: SweepRequest, reference: str, now) -> ClaimRecord:
        created = self.clock()
        record = ClaimRecord(
            id=                 ClaimRecord.new_id(),
            account_id=         account.id,
            destination=        request.destination,
            transfer_reference= reference,
            amount_swept=       request.amount,
            asset=              request.asset,
            claimed_at=         now,
            created_at=         created,
            updated_at=         created,
        )
        try:
            return self.store.insert_claim(record)
        except Exception:
            # Funds have moved; the account stays CLAIMED so no second sweep
            # can start. Needs operator reconciliation against `reference`.
            logger.critical(
                "Transfer %s for account %s succeeded but claim record was not stored",
                reference, account.id, exc_info=True,
            )
            raise

    def _secret_of(self, account: EscrowAccount) -> Callable[[], str]:
        encrypted = account.secret_encrypted
        return lambda: self.cipher.decrypt(encrypted)

    # ── Replay ────────────────────────────────────────────────

    def _replay(self, account_id: str) -> RedemptionResult:
        logger.info("Claim already redeemed for account: %s", account_id)
        record = self.store.find_claim_by_account(account_id)
        if record is None:
            raise RedemptionInProgress(
                "Claim redemption is in progress",
                details={"account_id": account_id},
            )
        return RedemptionResult.from_claim(record, message=ALREADY_REDEEMED_MESSAGE)

    def _lost_commit(self, account: EscrowAccount, exc: ConcurrentUpdate) -> RedemptionResult:
        """The commit point found a status other than PENDING_CLAIM."""
        if exc.observed_status == AccountStatus.CLAIMED:
            return self._replay(account.id)
        # Moved to another state (expired / failed) underneath us.
        check_eligibility(self.store.require_account(account.id), self.clock())
        raise exc

    # ── Events ────────────────────────────────────────────────

    def _emit(self, event: str, payload: dict) -> None:
        for listener in self.listeners:
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Listener failed for %s", event)
