"""
escrowclaim Exception Hierarchy

All exceptions inherit from ClaimError for easy catching.

Every class carries a stable `kind` that the boundary maps to a status:
    unauthorized  caller must obtain a fresh credential (or none exists)
    bad_request   caller input or account precondition is wrong
    conflict      the escrow was already redeemed
    not_found     no such account / claim
    internal      an external system rejected the operation
"""


class ClaimError(Exception):
    """Base exception for all escrowclaim errors"""

    kind = "internal"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> dict:
        """Boundary-safe representation. Details stay in the logs."""
        return {
            "error": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
        }


# ── Unauthorized ──────────────────────────────────────────────

class CredentialError(ClaimError):
    """Raised when a claim credential cannot be honoured"""
    kind = "unauthorized"


class CredentialMalformed(CredentialError):
    """Raised on structural or signature failure"""
    pass


class CredentialExpired(CredentialError):
    """Raised when the credential's own expiry has passed"""
    pass


class CredentialInvalid(CredentialError):
    """Raised when the credential is well-formed but not claimable"""
    pass


# ── Bad request ───────────────────────────────────────────────

class BadRequest(ClaimError):
    kind = "bad_request"


class NotFunded(BadRequest):
    """Raised when the escrow has not received payment yet"""
    pass


class AccountFailed(BadRequest):
    """Raised when the escrow is in the failed state"""
    pass


class InvalidState(BadRequest):
    """Raised for a status value outside the lifecycle vocabulary"""
    pass


class InvalidTransition(BadRequest):
    """Raised when a lifecycle transition is not permitted"""
    pass


class InvalidDestination(BadRequest):
    """Raised when the destination is not a valid account address"""
    pass


class AmountMismatch(BadRequest):
    pass


class AssetMismatch(BadRequest):
    pass


class InvalidRequest(BadRequest):
    """Raised when escrow creation parameters are out of range"""
    pass


# ── Conflict ──────────────────────────────────────────────────

class AlreadyRedeemed(ClaimError):
    """Raised when the escrow has already been claimed"""
    kind = "conflict"


class RedemptionInProgress(AlreadyRedeemed):
    """Raised when another redemption holds the escrow but has not finished"""
    pass


class ConcurrentUpdate(ClaimError):
    """Raised when a conditional update observes an unexpected status"""
    kind = "conflict"

    def __init__(self, message: str, observed_status=None, details: dict = None):
        super().__init__(message, details)
        self.observed_status = observed_status


class DuplicateRecord(ClaimError):
    kind = "conflict"


# ── Not found ─────────────────────────────────────────────────

class AccountNotFound(ClaimError):
    kind = "not_found"


class ClaimNotFound(ClaimError):
    kind = "not_found"


# ── Internal ──────────────────────────────────────────────────

class AuthorizationFailed(ClaimError):
    """Raised when the sweep could not be authorized"""
    pass


class TransferFailed(ClaimError):
    """Raised when the ledger rejects the sweep transfer"""

    def __init__(self, reason: str, details: dict = None):
        super().__init__(f"Sweep transfer failed: {reason}", details)
        self.reason = reason


class StoreError(ClaimError):
    """Raised when escrow persistence fails"""
    pass


class LedgerClientError(ClaimError):
    """Raised by ledger clients for network-level rejections"""
    pass


class ConfigError(ClaimError):
    """Raised when configuration is invalid"""
    pass
