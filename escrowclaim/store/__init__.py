"""
escrowclaim Store - authoritative escrow state

All lifecycle transitions pass through the store.
"""

from escrowclaim.store.store import EscrowStore, JsonlEscrowStore

__all__ = ["EscrowStore", "JsonlEscrowStore"]
