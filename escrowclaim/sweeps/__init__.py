"""
escrowclaim Sweeps

validate → authorize → transfer → reclaim
"""

from escrowclaim.sweeps.authorizer import (
    Authorization,
    Authorizer,
    HashAttestationAuthorizer,
    SigningAuthorizer,
)
from escrowclaim.sweeps.executor import SweepExecutor
from escrowclaim.sweeps.validator import SweepRequest, SweepStatus, SweepValidator

__all__ = [
    "Authorization",
    "Authorizer",
    "HashAttestationAuthorizer",
    "SigningAuthorizer",
    "SweepExecutor",
    "SweepRequest",
    "SweepStatus",
    "SweepValidator",
]
