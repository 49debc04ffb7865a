"""
tests/conftest.py

Shared fixtures: a frozen clock, one service signing key, an in-memory store,
a simulated ledger and the services wired around them.

Every fixture shares the same FrozenClock, so expiry boundaries can be hit
exactly with clock.advance().
"""

from datetime import datetime, timezone

import pytest

from escrowclaim.accounts.service import ClaimVerifier, EscrowIssuer
from escrowclaim.core.ciphers import FernetSecretCipher
from escrowclaim.core.crypto import Ed25519KeyManager, generate_ledger_keypair
from escrowclaim.core.time import FrozenClock
from escrowclaim.credentials.codec import CredentialCodec
from escrowclaim.logging_config import reset_logging
from escrowclaim.network.client import SimulatedLedgerClient
from escrowclaim.settlement.engine import RedemptionEngine
from escrowclaim.store.store import EscrowStore
from escrowclaim.sweeps.authorizer import SigningAuthorizer
from escrowclaim.sweeps.executor import SweepExecutor
from escrowclaim.sweeps.validator import SweepValidator

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
ONE_HOUR = 3600


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def key():
    """Service signing key for credentials and sweep attestations."""
    return Ed25519KeyManager.generate()


@pytest.fixture
def codec(key, clock):
    return CredentialCodec(key, clock=clock)


@pytest.fixture
def store(clock):
    return EscrowStore(clock=clock)


@pytest.fixture
def ledger(clock):
    return SimulatedLedgerClient(clock=clock)


@pytest.fixture
def cipher():
    return FernetSecretCipher(FernetSecretCipher.generate_key())


@pytest.fixture
def validator():
    return SweepValidator()


@pytest.fixture
def funder(ledger):
    account_id, _ = generate_ledger_keypair()
    ledger.open_account(account_id, native="100000")
    return account_id


@pytest.fixture
def destination():
    account_id, _ = generate_ledger_keypair()
    return account_id


@pytest.fixture
def issuer(store, codec, ledger, cipher, validator, clock):
    return EscrowIssuer(
        store=          store,
        codec=          codec,
        ledger_client=  ledger,
        cipher=         cipher,
        validator=      validator,
        credential_ttl= ONE_HOUR,
        clock=          clock,
    )


@pytest.fixture
def verifier(store, codec, clock):
    return ClaimVerifier(store, codec, clock=clock)


@pytest.fixture
def authorizer(key, clock, validator):
    return SigningAuthorizer(key, clock=clock, address_check=validator.is_valid_address)


@pytest.fixture
def engine(store, codec, validator, authorizer, ledger, cipher, clock):
    return RedemptionEngine(
        store=      store,
        codec=      codec,
        validator=  validator,
        authorizer= authorizer,
        executor=   SweepExecutor(ledger),
        cipher=     cipher,
        clock=      clock,
    )


@pytest.fixture
def make_escrow(issuer, ledger, funder):
    """
    Factory: create an escrow, deposit its amount on the ledger and (by
    default) confirm funding so it is claimable.
    """

    def _make(amount="100", asset="native", expires_in=ONE_HOUR, fund=True, metadata=None):
        issued = issuer.create(funder, amount, asset, expires_in, metadata=metadata)
        if fund:
            ledger.deposit(issued.account.public_key, amount, asset)
            issuer.confirm_funding(issued.account.account_id)
        return issued

    return _make


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()
