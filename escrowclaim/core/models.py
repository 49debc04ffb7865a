"""
escrowclaim/core/models.py

Data Model

    EscrowAccount   authoritative record of one escrow. Owned by EscrowStore.
    ClaimRecord     durable proof that a redemption completed. Insert-only.

Result shapes returned across the engine boundary:

    IssuedEscrow, AccountView, ClaimVerification, ClaimDetails,
    RedemptionResult

Amounts are decimal strings at a fixed scale of 7 fractional digits
("100" is stored as "100.0000000"). Comparison is exact string equality.

Assets are "native" or "CODE:ISSUER".

The encrypted ledger secret is excluded from repr() and from every view.
It leaves the record only through EscrowAccount.to_dict() for persistence.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Union

from escrowclaim.core.time import parse_wire_timestamp, wire_timestamp


AMOUNT_SCALE = Decimal("0.0000001")
# int64 stroops
MAX_AMOUNT = Decimal("922337203685.4775807")
NATIVE_ASSET = "native"

_ASSET_CODE_RE = re.compile(r"^[A-Za-z0-9]{1,12}$")


class AccountStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING_CLAIM   = "pending_claim"
    CLAIMED         = "claimed"
    EXPIRED         = "expired"
    FAILED          = "failed"


TERMINAL_STATUSES = frozenset({
    AccountStatus.CLAIMED,
    AccountStatus.EXPIRED,
    AccountStatus.FAILED,
})


def coerce_status(value: Union[str, AccountStatus]) -> Union[str, AccountStatus]:
    """
    Map a persisted value onto AccountStatus.

    Unknown values are returned unchanged so the lifecycle check can reject
    them explicitly instead of failing at load time.
    """
    if isinstance(value, AccountStatus):
        return value
    try:
        return AccountStatus(value)
    except ValueError:
        return value


def status_value(status: Union[str, AccountStatus]) -> str:
    return status.value if isinstance(status, AccountStatus) else str(status)


# ─────────────────────────────────────────────────────────────
# Amount / asset normalization
# ─────────────────────────────────────────────────────────────

def normalize_amount(amount: Union[str, int, Decimal]) -> str:
    """
    Render an amount at the fixed 7-digit scale.

    Raises ValueError for non-numeric, non-finite, non-positive amounts,
    amounts above MAX_AMOUNT or amounts with more than 7 fractional digits.
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"amount is not a decimal: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"amount must be positive: {amount!r}")
    if value > MAX_AMOUNT:
        raise ValueError(f"amount exceeds the ledger maximum of {MAX_AMOUNT}: {amount!r}")
    try:
        quantized = value.quantize(AMOUNT_SCALE)
    except InvalidOperation as exc:
        raise ValueError(f"amount is out of range: {amount!r}") from exc
    if quantized != value:
        raise ValueError(f"amount has more than 7 decimal places: {amount!r}")
    return f"{quantized:.7f}"


def normalize_asset(asset: str, is_address) -> str:
    """
    Accept "native" / "XLM" or "CODE:ISSUER".

    Args:
        asset:      raw asset identifier
        is_address: predicate validating the issuer address
    """
    if not isinstance(asset, str) or not asset:
        raise ValueError("asset is required")
    if asset in (NATIVE_ASSET, "XLM"):
        return NATIVE_ASSET
    parts = asset.split(":")
    if len(parts) != 2:
        raise ValueError(f"asset must be 'native' or 'CODE:ISSUER', got {asset!r}")
    code, issuer = parts
    if not _ASSET_CODE_RE.match(code):
        raise ValueError(f"asset code must be 1-12 alphanumerics, got {code!r}")
    if not is_address(issuer):
        raise ValueError(f"asset issuer is not a valid address: {issuer!r}")
    return f"{code}:{issuer}"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return wire_timestamp(value) if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return parse_wire_timestamp(value) if value else None


# ─────────────────────────────────────────────────────────────
# EscrowAccount
# ─────────────────────────────────────────────────────────────

@dataclass
class EscrowAccount:
    """
    One custodial escrow.

    Invariants:
        public_key unique across the store
        at most one active credential fingerprint
        secret_encrypted never logged, never returned in a view
    """

    id:                     str
    public_key:             str
    secret_encrypted:       str = field(repr=False)
    funding_source:         str
    amount:                 str
    asset:                  str
    status:                 Union[AccountStatus, str]
    expires_at:             datetime
    created_at:             datetime
    updated_at:             datetime
    credential_fingerprint: Optional[str] = None
    destination:            Optional[str] = None
    claimed_at:             Optional[datetime] = None
    expired_at:             Optional[datetime] = None
    metadata:               Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        """Full persisted form, including the encrypted secret."""
        return {
            "id":                     self.id,
            "public_key":             self.public_key,
            "secret_encrypted":       self.secret_encrypted,
            "funding_source":         self.funding_source,
            "amount":                 self.amount,
            "asset":                  self.asset,
            "status":                 status_value(self.status),
            "credential_fingerprint": self.credential_fingerprint,
            "destination":            self.destination,
            "expires_at":             _ts(self.expires_at),
            "claimed_at":             _ts(self.claimed_at),
            "expired_at":             _ts(self.expired_at),
            "created_at":             _ts(self.created_at),
            "updated_at":             _ts(self.updated_at),
            "metadata":               dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscrowAccount":
        return cls(
            id=                     data["id"],
            public_key=             data["public_key"],
            secret_encrypted=       data["secret_encrypted"],
            funding_source=         data["funding_source"],
            amount=                 data["amount"],
            asset=                  data["asset"],
            status=                 coerce_status(data["status"]),
            credential_fingerprint= data.get("credential_fingerprint"),
            destination=            data.get("destination"),
            expires_at=             parse_wire_timestamp(data["expires_at"]),
            claimed_at=             _parse_ts(data.get("claimed_at")),
            expired_at=             _parse_ts(data.get("expired_at")),
            created_at=             parse_wire_timestamp(data["created_at"]),
            updated_at=             parse_wire_timestamp(data["updated_at"]),
            metadata=               data.get("metadata") or {},
        )


# ─────────────────────────────────────────────────────────────
# ClaimRecord
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClaimRecord:
    """Proof of a completed redemption. Never mutated after insert."""

    id:                 str
    account_id:         str
    destination:        str
    transfer_reference: str
    amount_swept:       str
    asset:              str
    claimed_at:         datetime
    created_at:         datetime
    updated_at:         datetime

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":                 self.id,
            "account_id":         self.account_id,
            "destination":        self.destination,
            "transfer_reference": self.transfer_reference,
            "amount_swept":       self.amount_swept,
            "asset":              self.asset,
            "claimed_at":         _ts(self.claimed_at),
            "created_at":         _ts(self.created_at),
            "updated_at":         _ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClaimRecord":
        return cls(
            id=                 data["id"],
            account_id=         data["account_id"],
            destination=        data["destination"],
            transfer_reference= data["transfer_reference"],
            amount_swept=       data["amount_swept"],
            asset=              data["asset"],
            claimed_at=         parse_wire_timestamp(data["claimed_at"]),
            created_at=         parse_wire_timestamp(data["created_at"]),
            updated_at=         parse_wire_timestamp(data["updated_at"]),
        )


# ─────────────────────────────────────────────────────────────
# Views and results
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AccountView:
    """Public projection of an EscrowAccount. Carries no secret."""

    account_id:  str
    public_key:  str
    claim_url:   Optional[str] = field(repr=False)
    amount:      str
    asset:       str
    status:      str
    expires_at:  datetime
    created_at:  datetime
    claimed_at:  Optional[datetime] = None
    destination: Optional[str] = None
    metadata:    Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, account: EscrowAccount, claim_url: Optional[str]) -> "AccountView":
        return cls(
            account_id=  account.id,
            public_key=  account.public_key,
            claim_url=   claim_url,
            amount=      account.amount,
            asset=       account.asset,
            status=      status_value(account.status),
            expires_at=  account.expires_at,
            created_at=  account.created_at,
            claimed_at=  account.claimed_at,
            destination= account.destination,
            metadata=    dict(account.metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id":  self.account_id,
            "public_key":  self.public_key,
            "claim_url":   self.claim_url,
            "amount":      self.amount,
            "asset":       self.asset,
            "status":      self.status,
            "expires_at":  _ts(self.expires_at),
            "created_at":  _ts(self.created_at),
            "claimed_at":  _ts(self.claimed_at),
            "destination": self.destination,
            "metadata":    dict(self.metadata),
        }


@dataclass(frozen=True)
class IssuedEscrow:
    """
    Returned once, at creation. The only object that ever carries the raw
    credential.
    """

    account:           AccountView
    credential:        str = field(repr=False)
    claim_url:         str = field(repr=False)
    funding_reference: str


@dataclass(frozen=True)
class ClaimVerification:
    valid:      bool
    account_id: str
    amount:     str
    asset:      str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid":      self.valid,
            "account_id": self.account_id,
            "amount":     self.amount,
            "asset":      self.asset,
            "expires_at": _ts(self.expires_at),
        }


@dataclass(frozen=True)
class ClaimDetails:
    id:                 str
    account_id:         str
    destination:        str
    amount_swept:       str
    asset:              str
    transfer_reference: str
    claimed_at:         datetime

    @classmethod
    def of(cls, record: ClaimRecord) -> "ClaimDetails":
        return cls(
            id=                 record.id,
            account_id=         record.account_id,
            destination=        record.destination,
            amount_swept=       record.amount_swept,
            asset=              record.asset,
            transfer_reference= record.transfer_reference,
            claimed_at=         record.claimed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":                 self.id,
            "account_id":         self.account_id,
            "destination":        self.destination,
            "amount_swept":       self.amount_swept,
            "asset":              self.asset,
            "transfer_reference": self.transfer_reference,
            "claimed_at":         _ts(self.claimed_at),
        }


ALREADY_REDEEMED_MESSAGE = "Claim was already redeemed"


@dataclass(frozen=True)
class RedemptionResult:
    success:            bool
    transfer_reference: str
    amount_swept:       str
    asset:              str
    destination:        str
    claimed_at:         datetime
    message:            Optional[str] = None

    @classmethod
    def from_claim(cls, record: ClaimRecord, message: Optional[str] = None) -> "RedemptionResult":
        return cls(
            success=            True,
            transfer_reference= record.transfer_reference,
            amount_swept=       record.amount_swept,
            asset=              record.asset,
            destination=        record.destination,
            claimed_at=         record.claimed_at,
            message=            message,
        )

    @property
    def replayed(self) -> bool:
        return self.message == ALREADY_REDEEMED_MESSAGE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success":            self.success,
            "transfer_reference": self.transfer_reference,
            "amount_swept":       self.amount_swept,
            "asset":              self.asset,
            "destination":        self.destination,
            "claimed_at":         _ts(self.claimed_at),
        }
        if self.message is not None:
            data["message"] = self.message
        return data
