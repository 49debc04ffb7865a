"""
escrowclaim/credentials/codec.py

Claim Credential Codec

Wire form:

    credential = base64url( JCS(payload) ) "." base64url( Ed25519(JCS(payload)) )

    payload    = {"publicKey": <escrow account id>,
                  "type":      "claim",
                  "iat":       <epoch seconds>,
                  "exp":       <epoch seconds>}

Verification order (first failure wins):
    1. structure      two base64url segments, JSON object  → CredentialMalformed
    2. signature      Ed25519 over the exact payload bytes → CredentialMalformed
    3. fields         publicKey/type str, iat/exp int      → CredentialMalformed
    4. expiry         now > exp                            → CredentialExpired
    5. type           type != expected                     → CredentialInvalid

now == exp is still valid.

Verification never touches storage. The fingerprint (SHA-256 hex of the
credential text) is what the store indexes; the raw credential is never
persisted.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime

from escrowclaim.core.canonical import canonicalize
from escrowclaim.core.crypto import Ed25519KeyManager, b64url_decode, b64url_encode
from escrowclaim.core.exceptions import (
    CredentialExpired,
    CredentialInvalid,
    CredentialMalformed,
)
from escrowclaim.core.time import (
    Clock,
    epoch_seconds,
    from_epoch_seconds,
    utc_now,
)

logger = logging.getLogger(__name__)

CLAIM_TYPE = "claim"


@dataclass(frozen=True)
class CredentialPayload:
    public_key: str
    type:       str
    issued_at:  int
    expires_at: int

    def to_dict(self) -> dict:
        return {
            "publicKey": self.public_key,
            "type":      self.type,
            "iat":       self.issued_at,
            "exp":       self.expires_at,
        }

    @property
    def expires_at_datetime(self) -> datetime:
        return from_epoch_seconds(self.expires_at)


def fingerprint(credential: str) -> str:
    """
    One-way storage key for a credential.

    Returns:
        64-char lowercase hex SHA-256 of the UTF-8 credential text.
    """
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


class CredentialCodec:
    """
    Issues and verifies claim credentials with the service Ed25519 key.

    Verification uses only the public half, so a verifier can be built from
    a public key hex via CredentialCodec.for_public_key().
    """

    def __init__(
        self,
        key_manager: Ed25519KeyManager = None,
        clock: Clock = utc_now,
        public_key_hex: str = None,
    ):
        if key_manager is None and public_key_hex is None:
            raise ValueError("CredentialCodec needs a key manager or a public key")
        self.key_manager    = key_manager
        self.public_key_hex = public_key_hex or key_manager.public_key_hex
        self.clock          = clock

    @classmethod
    def for_public_key(cls, public_key_hex: str, clock: Clock = utc_now) -> "CredentialCodec":
        """Verify-only codec."""
        return cls(key_manager=None, clock=clock, public_key_hex=public_key_hex)

    # ── Issue ─────────────────────────────────────────────────

    def issue(self, public_key: str, ttl_seconds: int) -> str:
        """
        Sign a claim credential bound to an escrow's public identity.

        Args:
            public_key:  escrow ledger account id
            ttl_seconds: lifetime from now, must be positive
        """
        if self.key_manager is None:
            raise RuntimeError("verify-only codec cannot issue credentials")
        if not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be a positive int, got {ttl_seconds!r}")

        issued_at = epoch_seconds(self.clock())
        payload = CredentialPayload(
            public_key= public_key,
            type=       CLAIM_TYPE,
            issued_at=  issued_at,
            expires_at= issued_at + ttl_seconds,
        )
        body = canonicalize(payload.to_dict())
        signature = self.key_manager.sign(body)
        return f"{b64url_encode(body)}.{signature}"

    # ── Verify ────────────────────────────────────────────────

    def verify(self, credential: str, expected_type: str = CLAIM_TYPE) -> CredentialPayload:
        """Decode and verify. See module docstring for the failure order."""
        body, signature = self._split(credential)

        if not Ed25519KeyManager.verify_detached(body, signature, self.public_key_hex):
            logger.warning("Credential signature rejected")
            raise CredentialMalformed("Invalid credential signature")

        payload = self._parse(body)

        if epoch_seconds(self.clock()) > payload.expires_at:
            logger.warning("Credential expired at %s", payload.expires_at)
            raise CredentialExpired("Credential has expired")

        if payload.type != expected_type:
            logger.warning("Unexpected credential type: %r", payload.type)
            raise CredentialInvalid("Invalid credential type")

        return payload

    @staticmethod
    def _split(credential: str):
        if not isinstance(credential, str) or credential.count(".") != 1:
            raise CredentialMalformed("Credential is not well-formed")
        body_b64, signature = credential.split(".")
        if not body_b64 or not signature:
            raise CredentialMalformed("Credential is not well-formed")
        try:
            body = b64url_decode(body_b64)
        except ValueError as exc:
            raise CredentialMalformed("Credential is not well-formed") from exc
        return body, signature

    @staticmethod
    def _parse(body: bytes) -> CredentialPayload:
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CredentialMalformed("Credential payload is not JSON") from exc
        if not isinstance(data, dict):
            raise CredentialMalformed("Credential payload is not an object")

        public_key = data.get("publicKey")
        token_type = data.get("type")
        iat        = data.get("iat")
        exp        = data.get("exp")
        if not isinstance(public_key, str) or not isinstance(token_type, str):
            raise CredentialMalformed("Credential payload is missing fields")
        # bool is an int subclass
        for value in (iat, exp):
            if not isinstance(value, int) or isinstance(value, bool):
                raise CredentialMalformed("Credential timestamps must be integers")

        return CredentialPayload(
            public_key= public_key,
            type=       token_type,
            issued_at=  iat,
            expires_at= exp,
        )
