"""
escrowclaim Claim Credentials

A claim credential is a signed, time-boxed bearer token bound to one escrow's
public identity. Only its fingerprint is stored.
"""

from escrowclaim.credentials.codec import (
    CLAIM_TYPE,
    CredentialCodec,
    CredentialPayload,
    fingerprint,
)

__all__ = ["CLAIM_TYPE", "CredentialCodec", "CredentialPayload", "fingerprint"]
