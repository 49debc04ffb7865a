"""
Sweep execution against the ledger client.

    transfer()         single-asset payment escrow → destination.
                       Any ledger rejection becomes TransferFailed(reason).
    reclaim_reserve()  merge the emptied escrow into the destination.
                       Best-effort: failures are logged and reported as None,
                       never raised.

Both take a secret provider rather than the secret itself, so the decrypted
signing material exists only for the duration of the network call.
"""

import logging
from typing import Callable, Optional

from escrowclaim.core.exceptions import ClaimError, TransferFailed
from escrowclaim.network.client import LedgerClient, TransferReceipt

logger = logging.getLogger(__name__)

SecretProvider = Callable[[], str]


class SweepExecutor:

    def __init__(self, ledger_client: LedgerClient):
        self.ledger_client = ledger_client

    def transfer(
        self,
        secret: SecretProvider,
        destination: str,
        amount: str,
        asset: str,
    ) -> TransferReceipt:
        logger.info("Executing sweep transfer of %s %s to %s", amount, asset, destination)
        try:
            receipt = self.ledger_client.transfer(secret(), destination, amount, asset)
        except TransferFailed:
            raise
        except Exception as exc:
            reason = exc.message if isinstance(exc, ClaimError) else str(exc)
            logger.error("Sweep transfer failed: %s", reason)
            raise TransferFailed(reason) from exc

        if not receipt.confirmed:
            logger.error("Sweep transfer %s was not confirmed", receipt.reference)
            raise TransferFailed(
                "transaction not confirmed",
                details={"reference": receipt.reference},
            )

        logger.info("Sweep transfer successful: %s", receipt.reference)
        return receipt

    def reclaim_reserve(self, secret: SecretProvider, destination: str) -> Optional[TransferReceipt]:
        logger.info("Merging escrow into %s to reclaim reserve", destination)
        try:
            receipt = self.ledger_client.merge_into(secret(), destination)
        except Exception as exc:
            reason = exc.message if isinstance(exc, ClaimError) else str(exc)
            logger.warning("Account merge failed (non-critical): %s", reason)
            return None
        logger.info("Account merge successful: %s", receipt.reference)
        return receipt
