"""
escrowclaim/__init__.py

escrowclaim: claim-link escrow redemption

An escrow is a single-use ledger account holding funds for a recipient who
proves entitlement with a signed claim credential. Redeeming the credential
sweeps the funds to a destination exactly once.

    issuer, verifier, engine = SettlementConfig().build_services(ledger)
    issued = issuer.create(funder, "100", "native", expires_in=3600)
    issuer.confirm_funding(issued.account.account_id)
    result = engine.redeem(issued.credential, destination)
"""

__version__ = "0.3.0"

from escrowclaim.accounts.service import ClaimVerifier, EscrowIssuer
from escrowclaim.config import SettlementConfig
from escrowclaim.core.crypto import Ed25519KeyManager
from escrowclaim.core.exceptions import ClaimError
from escrowclaim.core.models import (
    AccountStatus,
    AccountView,
    ClaimRecord,
    EscrowAccount,
    RedemptionResult,
)
from escrowclaim.credentials.codec import CredentialCodec, fingerprint
from escrowclaim.network.client import LedgerClient, SimulatedLedgerClient
from escrowclaim.settlement.engine import RedemptionEngine
from escrowclaim.store.store import EscrowStore, JsonlEscrowStore

__all__ = [
    # Services
    "EscrowIssuer",
    "ClaimVerifier",
    "RedemptionEngine",
    "SettlementConfig",
    # Building blocks
    "CredentialCodec",
    "Ed25519KeyManager",
    "EscrowStore",
    "JsonlEscrowStore",
    "LedgerClient",
    "SimulatedLedgerClient",
    # Data
    "AccountStatus",
    "AccountView",
    "ClaimRecord",
    "EscrowAccount",
    "RedemptionResult",
    # Errors
    "ClaimError",
    # Helpers
    "fingerprint",
]
