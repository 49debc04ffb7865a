"""
Ledger network client contract.

The settlement engine never talks to the network directly. It consumes this
interface:

    generate_identity()                              -> (account_id, secret)
    fund_new_account(account_id, amount, asset, exp) -> reference
    transfer(secret, destination, amount, asset)     -> TransferReceipt
    merge_into(secret, destination)                  -> TransferReceipt
    balance_of(account_id, asset)                    -> amount string

Implementations raise LedgerClientError for any ledger-level rejection and
carry the network's result code in the message.

SimulatedLedgerClient is a deterministic in-process ledger used by the test
suite, the CLI demo store and local development.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from escrowclaim.core.canonical import canonical_hash
from escrowclaim.core.crypto import account_id_from_secret, generate_ledger_keypair
from escrowclaim.core.exceptions import LedgerClientError
from escrowclaim.core.models import NATIVE_ASSET
from escrowclaim.core.time import Clock, utc_now, wire_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferReceipt:
    reference: str
    confirmed: bool
    ledger:    Optional[int] = None
    timestamp: Optional[datetime] = None


class LedgerClient(ABC):
    """Boundary to the public ledger network."""

    @abstractmethod
    def generate_identity(self) -> Tuple[str, str]:
        ...

    @abstractmethod
    def fund_new_account(self, account_id: str, amount: str, asset: str, expires_at: datetime) -> str:
        ...

    @abstractmethod
    def transfer(self, secret: str, destination: str, amount: str, asset: str) -> TransferReceipt:
        ...

    @abstractmethod
    def merge_into(self, secret: str, destination: str) -> TransferReceipt:
        ...

    @abstractmethod
    def balance_of(self, account_id: str, asset: str) -> str:
        ...


def _fmt(value: Decimal) -> str:
    return f"{value:.7f}"


class SimulatedLedgerClient(LedgerClient):
    """
    In-memory ledger.

    Accounts hold per-asset balances. Creating an account seeds it with the
    starting native balance. A native payment must leave base_reserve behind;
    merging moves the remaining native balance and deletes the account, and
    fails with op_has_sub_entries while any non-native balance line exists.

    Test hooks:
        fail_next(op, code)   next call of op ("transfer", "merge", "fund")
                              raises LedgerClientError(code)
        before_transfer       callable(secret, destination) run before a
                              transfer is applied
        transfers / merges    receipts of successful calls, in order
    """

    def __init__(
        self,
        starting_balance: str = "2",
        base_reserve: str = "1",
        clock: Clock = utc_now,
    ):
        self.starting_balance = Decimal(starting_balance)
        self.base_reserve     = Decimal(base_reserve)
        self.clock            = clock
        self._lock            = threading.RLock()
        self._balances: Dict[str, Dict[str, Decimal]] = {}
        self._failures: Dict[str, List[str]] = {}
        self._sequence = 0
        self.before_transfer: Optional[Callable[[str, str], None]] = None
        self.transfers: List[TransferReceipt] = []
        self.merges:    List[TransferReceipt] = []

    # ── Test hooks ────────────────────────────────────────────

    def fail_next(self, op: str, code: str) -> None:
        with self._lock:
            self._failures.setdefault(op, []).append(code)

    def deposit(self, account_id: str, amount: str, asset: str = NATIVE_ASSET) -> None:
        """Simulate an external payment into an account."""
        with self._lock:
            balances = self._require(account_id)
            balances[asset] = balances.get(asset, Decimal(0)) + Decimal(amount)

    def open_account(self, account_id: str, native: str = "0") -> None:
        """Create a bare account, e.g. a destination wallet."""
        with self._lock:
            self._balances.setdefault(account_id, {NATIVE_ASSET: Decimal(native)})

    def exists(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._balances

    # ── LedgerClient ──────────────────────────────────────────

    def generate_identity(self) -> Tuple[str, str]:
        return generate_ledger_keypair()

    def fund_new_account(self, account_id: str, amount: str, asset: str, expires_at: datetime) -> str:
        with self._lock:
            self._maybe_fail("fund")
            if account_id in self._balances:
                raise LedgerClientError("op_already_exists")
            self._balances[account_id] = {NATIVE_ASSET: self.starting_balance}
            return self._next_reference("create_account", {
                "account": account_id,
                "starting_balance": _fmt(self.starting_balance),
                "expires_at": wire_timestamp(expires_at),
            })

    def transfer(self, secret: str, destination: str, amount: str, asset: str) -> TransferReceipt:
        source = self._source(secret)
        if self.before_transfer is not None:
            self.before_transfer(secret, destination)
        with self._lock:
            self._maybe_fail("transfer")
            balances = self._require(source)
            value = Decimal(amount)
            held = balances.get(asset, Decimal(0))
            floor = self.base_reserve if asset == NATIVE_ASSET else Decimal(0)
            if held - value < floor:
                raise LedgerClientError("op_underfunded")
            balances[asset] = held - value
            dest = self._balances.setdefault(destination, {NATIVE_ASSET: Decimal(0)})
            dest[asset] = dest.get(asset, Decimal(0)) + value
            receipt = TransferReceipt(
                reference= self._next_reference("payment", {
                    "source": source, "destination": destination,
                    "amount": _fmt(value), "asset": asset,
                }),
                confirmed= True,
                ledger=    self._sequence,
                timestamp= self.clock(),
            )
            self.transfers.append(receipt)
            return receipt

    def merge_into(self, secret: str, destination: str) -> TransferReceipt:
        source = self._source(secret)
        with self._lock:
            self._maybe_fail("merge")
            balances = self._require(source)
            if any(a != NATIVE_ASSET for a in balances):
                raise LedgerClientError("op_has_sub_entries")
            remaining = balances.get(NATIVE_ASSET, Decimal(0))
            dest = self._balances.setdefault(destination, {NATIVE_ASSET: Decimal(0)})
            dest[NATIVE_ASSET] = dest.get(NATIVE_ASSET, Decimal(0)) + remaining
            del self._balances[source]
            receipt = TransferReceipt(
                reference= self._next_reference("account_merge", {
                    "source": source, "destination": destination,
                }),
                confirmed= True,
                ledger=    self._sequence,
                timestamp= self.clock(),
            )
            self.merges.append(receipt)
            return receipt

    def balance_of(self, account_id: str, asset: str) -> str:
        with self._lock:
            balances = self._require(account_id)
            return _fmt(balances.get(asset, Decimal(0)))

    # ── Internals ─────────────────────────────────────────────

    def _source(self, secret: str) -> str:
        try:
            return account_id_from_secret(secret)
        except ValueError as exc:
            raise LedgerClientError("tx_bad_auth") from exc

    def _require(self, account_id: str) -> Dict[str, Decimal]:
        balances = self._balances.get(account_id)
        if balances is None:
            raise LedgerClientError("op_no_account")
        return balances

    def _maybe_fail(self, op: str) -> None:
        pending = self._failures.get(op)
        if pending:
            raise LedgerClientError(pending.pop(0))

    def _next_reference(self, kind: str, body: dict) -> str:
        self._sequence += 1
        return canonical_hash({"kind": kind, "sequence": self._sequence, **body})
