"""
escrowclaim Lifecycle

Valid status transitions and the eligibility gate used by credential
verification and redemption.
"""

from escrowclaim.lifecycle.state_machine import (
    ALLOWED_TRANSITIONS,
    assert_transition,
    can_transition,
    check_eligibility,
    is_eligible,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "assert_transition",
    "can_transition",
    "check_eligibility",
    "is_eligible",
]
