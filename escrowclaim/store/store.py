"""
Escrow account store.

The store is the only owner of EscrowAccount state. Every read returns a
copy and every write replaces the stored record under one lock, so a caller
never observes a half-applied update.

conditional_update() is the linearization point for redemption: it checks
the stored status and applies the mutation in the same critical section.
Two redemptions of the same credential cannot both pass it.

JsonlEscrowStore adds durability: every committed write is appended to a
journal (one JSON object per line, fsync'd) before the in-memory state
advances, and the journal is replayed on open.
"""

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from escrowclaim.core.exceptions import (
    AccountNotFound,
    ConcurrentUpdate,
    DuplicateRecord,
    StoreError,
)
from escrowclaim.core.models import (
    AccountStatus,
    ClaimRecord,
    EscrowAccount,
    coerce_status,
    status_value,
)
from escrowclaim.core.time import Clock, utc_now

logger = logging.getLogger(__name__)


class EscrowStore:
    """
    Thread-safe in-memory store for escrow accounts and claim records.

    Accounts are keyed by id and indexed by public key and credential
    fingerprint. Claim records are insert-only, at most one per account,
    and are removed with their account.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._lock = threading.RLock()
        self._accounts:       Dict[str, EscrowAccount] = {}
        self._by_public_key:  Dict[str, str] = {}
        self._by_fingerprint: Dict[str, str] = {}
        self._claims:         Dict[str, ClaimRecord] = {}
        self._claim_by_account: Dict[str, str] = {}

    # ── Accounts ──────────────────────────────────────────────

    def insert_account(self, account: EscrowAccount) -> EscrowAccount:
        with self._lock:
            if account.id in self._accounts:
                raise DuplicateRecord(f"Account {account.id} already exists")
            if account.public_key in self._by_public_key:
                raise DuplicateRecord("Public key already registered")
            fp = account.credential_fingerprint
            if fp is not None and fp in self._by_fingerprint:
                raise DuplicateRecord("Credential fingerprint already registered")
            stored = copy.deepcopy(account)
            self._commit_account(stored)
            return copy.deepcopy(stored)

    def get_account(self, account_id: str) -> Optional[EscrowAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            return copy.deepcopy(account) if account is not None else None

    def require_account(self, account_id: str) -> EscrowAccount:
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def find_by_fingerprint(self, fingerprint: str) -> Optional[EscrowAccount]:
        with self._lock:
            account_id = self._by_fingerprint.get(fingerprint)
            return self.get_account(account_id) if account_id else None

    def find_by_public_key(self, public_key: str) -> Optional[EscrowAccount]:
        with self._lock:
            account_id = self._by_public_key.get(public_key)
            return self.get_account(account_id) if account_id else None

    def save_account(self, account: EscrowAccount) -> EscrowAccount:
        """Unconditional overwrite of an existing account."""
        with self._lock:
            current = self._accounts.get(account.id)
            if current is None:
                raise AccountNotFound(f"Account {account.id} not found")
            fp = account.credential_fingerprint
            owner = self._by_fingerprint.get(fp) if fp is not None else None
            if owner is not None and owner != account.id:
                raise DuplicateRecord("Credential fingerprint already registered")
            stored = copy.deepcopy(account)
            stored.updated_at = self.clock()
            self._commit_account(stored)
            return copy.deepcopy(stored)

    def conditional_update(
        self,
        account_id: str,
        expected_status: Union[AccountStatus, Iterable[AccountStatus]],
        mutate: Callable[[EscrowAccount], None],
    ) -> EscrowAccount:
        """
        Apply mutate() to the account iff its stored status is expected.

        Raises:
            AccountNotFound   no such account
            ConcurrentUpdate  stored status differs (observed_status set)
        The stored record is unchanged when mutate() raises.
        """
        if isinstance(expected_status, AccountStatus):
            expected = {expected_status}
        else:
            expected = set(expected_status)

        with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                raise AccountNotFound(f"Account {account_id} not found")
            observed = coerce_status(current.status)
            if observed not in expected:
                raise ConcurrentUpdate(
                    f"Account {account_id} is {status_value(observed)}",
                    observed_status=observed,
                )
            working = copy.deepcopy(current)
            mutate(working)
            working.updated_at = self.clock()
            self._commit_account(working)
            return copy.deepcopy(working)

    def delete_account(self, account_id: str) -> None:
        """Remove an account and cascade to its claim record."""
        with self._lock:
            if account_id not in self._accounts:
                raise AccountNotFound(f"Account {account_id} not found")
            self._journal("delete_account", {"id": account_id})
            self._drop_account(account_id)

    def list_accounts(self) -> List[EscrowAccount]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._accounts.values()]

    # ── Claims ────────────────────────────────────────────────

    def insert_claim(self, record: ClaimRecord) -> ClaimRecord:
        with self._lock:
            if record.account_id not in self._accounts:
                raise AccountNotFound(f"Account {record.account_id} not found")
            if record.account_id in self._claim_by_account:
                raise DuplicateRecord(
                    f"Account {record.account_id} already has a claim record"
                )
            if record.id in self._claims:
                raise DuplicateRecord(f"Claim {record.id} already exists")
            self._journal("claim", record.to_dict())
            self._apply_claim(record)
            return record

    # ClaimRecord is frozen, so claims are returned without copying.

    def get_claim(self, claim_id: str) -> Optional[ClaimRecord]:
        with self._lock:
            return self._claims.get(claim_id)

    def find_claim_by_account(self, account_id: str) -> Optional[ClaimRecord]:
        with self._lock:
            claim_id = self._claim_by_account.get(account_id)
            return self._claims.get(claim_id) if claim_id else None

    def count_claims(self) -> int:
        with self._lock:
            return len(self._claims)

    # ── Internals ─────────────────────────────────────────────

    def _commit_account(self, account: EscrowAccount) -> None:
        # Journal first: in-memory state MUST NOT advance if this raises.
        self._journal("account", account.to_dict())
        self._apply_account(account)

    def _apply_account(self, account: EscrowAccount) -> None:
        previous = self._accounts.get(account.id)
        if previous is not None:
            if previous.credential_fingerprint != account.credential_fingerprint:
                self._by_fingerprint.pop(previous.credential_fingerprint, None)
            if previous.public_key != account.public_key:
                self._by_public_key.pop(previous.public_key, None)
        self._accounts[account.id] = account
        self._by_public_key[account.public_key] = account.id
        if account.credential_fingerprint is not None:
            self._by_fingerprint[account.credential_fingerprint] = account.id

    def _apply_claim(self, record: ClaimRecord) -> None:
        self._claims[record.id] = record
        self._claim_by_account[record.account_id] = record.id

    def _drop_account(self, account_id: str) -> None:
        account = self._accounts.pop(account_id)
        self._by_public_key.pop(account.public_key, None)
        if account.credential_fingerprint is not None:
            self._by_fingerprint.pop(account.credential_fingerprint, None)
        claim_id = self._claim_by_account.pop(account_id, None)
        if claim_id is not None:
            self._claims.pop(claim_id, None)

    def _journal(self, op: str, data: dict) -> None:
        """Durability hook. The in-memory store keeps nothing."""
        pass


class JsonlEscrowStore(EscrowStore):
    """
    EscrowStore backed by an append-only JSONL journal.

    Line format:
        {"op": "account" | "claim" | "delete_account", "data": {...}}

    Replaying the journal in order reproduces the store.
    """

    def __init__(self, path: Path, clock: Clock = utc_now):
        super().__init__(clock=clock)
        self.path = Path(path)
        self._replaying = False
        if self.path.exists():
            self._load()

    def _journal(self, op: str, data: dict) -> None:
        if self._replaying:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps({"op": op, "data": data}, ensure_ascii=False, sort_keys=True)
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise StoreError(f"Failed to write store journal: {exc}") from exc

    def _load(self) -> None:
        self._replaying = True
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                        self._replay(entry["op"], entry["data"])
                    except (ValueError, KeyError, TypeError) as exc:
                        raise StoreError(
                            f"Corrupt store journal at line {line_num}: {exc}"
                        ) from exc
        except OSError as exc:
            raise StoreError(f"Failed to load store journal: {exc}") from exc
        finally:
            self._replaying = False
        logger.info(
            "Loaded store journal %s (%d accounts, %d claims)",
            self.path, len(self._accounts), len(self._claims),
        )

    def _replay(self, op: str, data: dict) -> None:
        if op == "account":
            self._apply_account(EscrowAccount.from_dict(data))
        elif op == "claim":
            self._apply_claim(ClaimRecord.from_dict(data))
        elif op == "delete_account":
            if data["id"] in self._accounts:
                self._drop_account(data["id"])
        else:
            raise ValueError(f"unknown journal op {op!r}")
