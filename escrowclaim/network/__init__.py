"""
escrowclaim Network - ledger client boundary
"""

from escrowclaim.network.client import (
    LedgerClient,
    SimulatedLedgerClient,
    TransferReceipt,
)

__all__ = ["LedgerClient", "SimulatedLedgerClient", "TransferReceipt"]
