"""
escrowclaim Settlement

The redemption engine and the compensating-transaction runner it uses.

Critical Invariants:
- At most one sweep per escrow
- A failed sweep restores the escrow to its pre-claim state
- A replayed credential returns the stored claim, with no side effects
"""

from escrowclaim.settlement.engine import RedemptionEngine, resolve_credential
from escrowclaim.settlement.saga import Saga, SagaOutcome

__all__ = ["RedemptionEngine", "Saga", "SagaOutcome", "resolve_credential"]
