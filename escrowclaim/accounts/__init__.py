"""
escrowclaim Accounts - escrow issuance and read-side lookups
"""

from escrowclaim.accounts.service import ClaimVerifier, EscrowIssuer, claim_url

__all__ = ["ClaimVerifier", "EscrowIssuer", "claim_url"]
