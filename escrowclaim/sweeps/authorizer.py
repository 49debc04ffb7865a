"""
Sweep authorization.

An Authorizer attests that funds may move from an escrow identity to a
destination at a given instant:

    authorize(source, destination, at) -> Authorization(authorized, token, authorized_at)

Contract:
    - deterministic for identical (source, destination, at)
    - token is fixed-length and opaque to the caller
    - every failure surfaces as AuthorizationFailed, whatever its origin

HashAttestationAuthorizer  SHA-256 over the canonical attestation. Stands in
                           for an external authority; proves nothing.
SigningAuthorizer          Ed25519 signature over the same attestation, so a
                           third party holding the public key can check it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from escrowclaim.core.canonical import canonical_hash, canonicalize
from escrowclaim.core.crypto import Ed25519KeyManager
from escrowclaim.core.exceptions import AuthorizationFailed
from escrowclaim.core.time import Clock, utc_now, wire_timestamp

logger = logging.getLogger(__name__)

ATTESTATION_TYPE = "sweep_authorization"


@dataclass(frozen=True)
class Authorization:
    authorized:    bool
    token:         str
    authorized_at: datetime


def attestation(source: str, destination: str, at: datetime) -> dict:
    """The exact document an authorizer commits to."""
    return {
        "type":        ATTESTATION_TYPE,
        "source":      source,
        "destination": destination,
        "timestamp":   wire_timestamp(at),
    }


class Authorizer(ABC):
    """
    Base class. Subclasses implement _attest(); authorize() owns the error
    wrapping so every implementation fails the same way.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        address_check: Optional[Callable[[str], bool]] = None,
    ):
        self.clock = clock
        self.address_check = address_check

    def authorize(self, source: str, destination: str, at: datetime = None) -> Authorization:
        at = at or self.clock()
        try:
            if self.address_check is not None:
                for label, address in (("source", source), ("destination", destination)):
                    if not self.address_check(address):
                        raise ValueError(f"malformed {label} address")
            token = self._attest(attestation(source, destination, at))
        except AuthorizationFailed:
            raise
        except Exception as exc:
            logger.error("Sweep authorization failed for %s: %s", source, exc)
            raise AuthorizationFailed(f"Sweep authorization failed: {exc}") from exc

        logger.info("Sweep authorized for %s (token %s...)", source, token[:12])
        return Authorization(authorized=True, token=token, authorized_at=at)

    @abstractmethod
    def _attest(self, document: dict) -> str:
        ...


class HashAttestationAuthorizer(Authorizer):
    """64-hex SHA-256 of the canonical attestation."""

    def _attest(self, document: dict) -> str:
        return canonical_hash(document)


class SigningAuthorizer(Authorizer):
    """86-char base64url Ed25519 signature over the canonical attestation."""

    def __init__(self, key_manager: Ed25519KeyManager, clock: Clock = utc_now, address_check=None):
        super().__init__(clock=clock, address_check=address_check)
        self.key_manager = key_manager

    def _attest(self, document: dict) -> str:
        return self.key_manager.sign(canonicalize(document))

    def verify(self, token: str, source: str, destination: str, at: datetime) -> bool:
        return self.key_manager.verify(
            canonicalize(attestation(source, destination, at)), token
        )
