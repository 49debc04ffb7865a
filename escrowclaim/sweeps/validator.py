"""
Sweep validation.

Pure checks run before any state mutation or network call:

    destination  account-address format + checksum    → InvalidDestination
    amount       equals the recorded amount (string)  → AmountMismatch
    asset        equals the recorded asset            → AssetMismatch
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from escrowclaim.core.crypto import is_valid_account_id
from escrowclaim.core.exceptions import (
    AccountFailed,
    AlreadyRedeemed,
    AmountMismatch,
    AssetMismatch,
    CredentialInvalid,
    InvalidDestination,
    InvalidState,
    NotFunded,
)
from escrowclaim.core.models import EscrowAccount
from escrowclaim.lifecycle.state_machine import check_eligibility

logger = logging.getLogger(__name__)

ACCOUNT_PREFIX = "G"


@dataclass(frozen=True)
class SweepRequest:
    account:     EscrowAccount
    destination: str
    amount:      str
    asset:       str


@dataclass(frozen=True)
class SweepStatus:
    can_sweep: bool
    reason:    Optional[str] = None


_STATUS_REASONS = {
    AlreadyRedeemed:    "Already swept",
    CredentialInvalid:  "Account expired",
    NotFunded:          "Payment not received",
    AccountFailed:      "Account failed",
    InvalidState:       "Invalid account status",
}


class SweepValidator:
    """
    Address rule: `address_length` characters, the first being `prefix`,
    the rest upper-case alphanumerics. With the default "G" prefix the
    strkey version byte and CRC16 checksum must also hold.
    """

    def __init__(self, prefix: str = "G", address_length: int = 56):
        self.prefix = prefix
        self.address_length = address_length
        self._address_re = re.compile(
            rf"^{re.escape(prefix)}[A-Z0-9]{{{address_length - len(prefix)}}}$"
        )

    def is_valid_address(self, address: str) -> bool:
        if not isinstance(address, str) or not self._address_re.match(address):
            return False
        if self.prefix == ACCOUNT_PREFIX:
            return is_valid_account_id(address)
        return True

    def validate_destination(self, destination: str) -> None:
        if not self.is_valid_address(destination):
            raise InvalidDestination(
                f"Invalid destination address format: must start with "
                f"{self.prefix!r} and be {self.address_length} characters"
            )

    def validate(self, request: SweepRequest) -> None:
        account = request.account
        self.validate_destination(request.destination)

        if request.amount != account.amount:
            raise AmountMismatch(
                f"Amount mismatch: expected {account.amount}, got {request.amount}"
            )

        if request.asset != account.asset:
            raise AssetMismatch(
                f"Asset mismatch: expected {account.asset}, got {request.asset}"
            )

        logger.debug("Validation passed for account: %s", account.id)

    def sweep_status(
        self,
        account: EscrowAccount,
        now: datetime,
        destination: str = None,
    ) -> SweepStatus:
        """Read-only preview of whether a sweep could proceed. Never raises."""
        try:
            check_eligibility(account, now)
        except tuple(_STATUS_REASONS) as exc:
            return SweepStatus(can_sweep=False, reason=_STATUS_REASONS[type(exc)])
        if destination is not None and not self.is_valid_address(destination):
            return SweepStatus(can_sweep=False, reason="Invalid destination")
        return SweepStatus(can_sweep=True)
