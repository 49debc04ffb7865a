"""
Escrow lifecycle state machine.

    PENDING_PAYMENT ──fund──▶ PENDING_CLAIM ──redeem──▶ CLAIMED
           │                        │
           └──────────┬─────────────┘
                      ▼
               EXPIRED | FAILED

CLAIMED, EXPIRED and FAILED are terminal. Undoing a claim mark after a failed
sweep is a compensation (restore of a snapshot taken before the mark), not a
lifecycle transition, and is performed by the settlement saga.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Union

from escrowclaim.core.exceptions import (
    AccountFailed,
    AlreadyRedeemed,
    CredentialInvalid,
    InvalidState,
    InvalidTransition,
    NotFunded,
)
from escrowclaim.core.models import (
    AccountStatus,
    EscrowAccount,
    coerce_status,
    status_value,
)

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[AccountStatus, FrozenSet[AccountStatus]] = {
    AccountStatus.PENDING_PAYMENT: frozenset({
        AccountStatus.PENDING_CLAIM,
        AccountStatus.EXPIRED,
        AccountStatus.FAILED,
    }),
    AccountStatus.PENDING_CLAIM: frozenset({
        AccountStatus.CLAIMED,
        AccountStatus.EXPIRED,
        AccountStatus.FAILED,
    }),
    AccountStatus.CLAIMED: frozenset(),
    AccountStatus.EXPIRED: frozenset(),
    AccountStatus.FAILED:  frozenset(),
}


def can_transition(current: Union[AccountStatus, str], target: AccountStatus) -> bool:
    current = coerce_status(current)
    allowed = ALLOWED_TRANSITIONS.get(current) if isinstance(current, AccountStatus) else None
    return allowed is not None and target in allowed


def assert_transition(account: EscrowAccount, target: AccountStatus) -> None:
    """Raise InvalidTransition unless account may move to target."""
    if not can_transition(account.status, target):
        raise InvalidTransition(
            f"Cannot move account from {status_value(account.status)} "
            f"to {target.value}",
            details={"account_id": account.id},
        )


# ── Eligibility ───────────────────────────────────────────────

def _claimed(account: EscrowAccount, now: datetime) -> None:
    logger.warning("Account %s has already been claimed", account.id)
    raise AlreadyRedeemed("Claim has already been redeemed")


def _expired(account: EscrowAccount, now: datetime) -> None:
    logger.warning("Account %s has expired", account.id)
    raise CredentialInvalid("Account has expired")


def _pending_payment(account: EscrowAccount, now: datetime) -> None:
    logger.warning("Account %s has not received payment", account.id)
    raise NotFunded("Account has not received payment")


def _failed(account: EscrowAccount, now: datetime) -> None:
    logger.warning("Account %s is in failed state", account.id)
    raise AccountFailed("Account is in failed state")


def _pending_claim(account: EscrowAccount, now: datetime) -> None:
    if now > account.expires_at:
        logger.warning("Account %s expired at %s", account.id, account.expires_at)
        raise CredentialInvalid("Claim has expired")


_ELIGIBILITY = {
    AccountStatus.CLAIMED:         _claimed,
    AccountStatus.EXPIRED:         _expired,
    AccountStatus.PENDING_PAYMENT: _pending_payment,
    AccountStatus.FAILED:          _failed,
    AccountStatus.PENDING_CLAIM:   _pending_claim,
}


def check_eligibility(account: EscrowAccount, now: datetime) -> None:
    """
    Gate for credential verification and redemption.

    Returns None when the account is claimable at `now`, otherwise raises
    the error mapped to its status. A status outside the vocabulary raises
    InvalidState rather than passing silently.
    """
    status = coerce_status(account.status)
    check = _ELIGIBILITY.get(status) if isinstance(status, AccountStatus) else None
    if check is None:
        logger.warning("Unknown account status: %r", account.status)
        raise InvalidState("Invalid account status")
    check(account, now)


def is_eligible(account: EscrowAccount, now: datetime) -> bool:
    try:
        check_eligibility(account, now)
    except (AlreadyRedeemed, CredentialInvalid, NotFunded, AccountFailed, InvalidState):
        return False
    return True
