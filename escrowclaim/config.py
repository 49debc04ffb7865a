"""
Settlement configuration.

    config = SettlementConfig.from_yaml("escrow.yaml")
    config = SettlementConfig.from_env()

Both loaders validate. Factories turn a config into the runtime pieces:
build_key_manager(), build_cipher(), build_store(), build_ledger_client(),
build_services().
"""

import logging
import os
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional

import yaml

from escrowclaim.core.ciphers import SecretCipher, cipher_for
from escrowclaim.core.crypto import Ed25519KeyManager
from escrowclaim.core.exceptions import ConfigError
from escrowclaim.core.time import Clock, utc_now

logger = logging.getLogger(__name__)

NETWORKS = ("testnet", "mainnet")

# env var → field
ENV_FIELDS = {
    "ESCROW_NETWORK":     "network",
    "CLAIM_TOKEN_EXPIRY": "claim_credential_ttl",
    "CLAIM_BASE_URL":     "claim_base_url",
    "CLAIM_SIGNING_KEY":  "signing_key_path",
    "SECRET_CIPHER":      "secret_cipher",
    "SECRET_CIPHER_KEY":  "cipher_key",
    "ESCROW_STORE_PATH":  "store_path",
    "LOG_LEVEL":          "log_level",
}

_INT_FIELDS = ("claim_credential_ttl", "min_expires_in", "max_expires_in")


@dataclass
class SettlementConfig:
    network:              str = "testnet"
    claim_credential_ttl: int = 2592000
    min_expires_in:       int = 3600
    max_expires_in:       int = 2592000
    claim_base_url:       str = "https://claim.bridgelet.io"
    signing_key_path:     Optional[str] = None
    secret_cipher:        str = "base64"
    cipher_key:           Optional[str] = None
    store_path:           Optional[str] = None
    log_level:            str = "INFO"
    starting_balance:     str = "2"

    def __repr__(self) -> str:
        return (
            f"SettlementConfig(network={self.network!r}, "
            f"secret_cipher={self.secret_cipher!r}, store_path={self.store_path!r})"
        )

    # ── Loading ───────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Mapping) -> "SettlementConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                details={"unknown": unknown},
            )
        values = dict(data)
        for name in _INT_FIELDS:
            if name in values:
                values[name] = _as_int(name, values[name])
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path) -> "SettlementConfig":
        """Load from a YAML mapping. An empty file yields the defaults."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        logger.info("Loaded settlement config from %s", path)
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SettlementConfig":
        environ = os.environ if environ is None else environ
        data = {
            field_name: environ[var]
            for var, field_name in ENV_FIELDS.items()
            if environ.get(var)
        }
        return cls.from_dict(data)

    # ── Validation ────────────────────────────────────────────

    def validate(self) -> None:
        if self.network not in NETWORKS:
            raise ConfigError(f"Unknown network: {self.network!r}")
        if self.claim_credential_ttl <= 0:
            raise ConfigError("claim_credential_ttl must be positive")
        if self.min_expires_in <= 0 or self.min_expires_in > self.max_expires_in:
            raise ConfigError(
                "min_expires_in must be positive and not exceed max_expires_in"
            )
        if self.secret_cipher == "fernet" and not self.cipher_key:
            raise ConfigError("fernet secret cipher requires cipher_key")
        if self.secret_cipher not in ("base64", "fernet"):
            raise ConfigError(f"Unknown secret cipher: {self.secret_cipher!r}")
        try:
            balance = Decimal(str(self.starting_balance))
        except InvalidOperation:
            balance = None
        if balance is None or not balance.is_finite() or balance <= 0:
            raise ConfigError(
                f"starting_balance must be a positive decimal, got {self.starting_balance!r}"
            )

    # ── Factories ─────────────────────────────────────────────

    def build_key_manager(self) -> Ed25519KeyManager:
        """Signing key from signing_key_path, or an ephemeral one."""
        if not self.signing_key_path:
            logger.warning("No signing key configured; using an ephemeral key")
            return Ed25519KeyManager.generate()
        try:
            return Ed25519KeyManager.from_file(Path(self.signing_key_path))
        except (FileNotFoundError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc

    def build_cipher(self) -> SecretCipher:
        return cipher_for(self.secret_cipher, self.cipher_key)

    def build_store(self, clock: Clock = utc_now):
        from escrowclaim.store.store import EscrowStore, JsonlEscrowStore

        if self.store_path:
            return JsonlEscrowStore(Path(self.store_path), clock=clock)
        return EscrowStore(clock=clock)

    def build_ledger_client(self, clock: Clock = utc_now):
        """Simulated ledger seeding new escrow accounts with starting_balance."""
        from escrowclaim.network.client import SimulatedLedgerClient

        return SimulatedLedgerClient(starting_balance=str(self.starting_balance), clock=clock)

    def build_services(self, ledger_client=None, clock: Clock = utc_now, store=None):
        """
        Wire issuer, verifier and redemption engine around one store and one
        signing key. Without a ledger_client the simulated one from
        build_ledger_client() is used.
        """
        from escrowclaim.accounts.service import ClaimVerifier, EscrowIssuer
        from escrowclaim.credentials.codec import CredentialCodec
        from escrowclaim.settlement.engine import RedemptionEngine
        from escrowclaim.sweeps.authorizer import SigningAuthorizer
        from escrowclaim.sweeps.executor import SweepExecutor
        from escrowclaim.sweeps.validator import SweepValidator

        if ledger_client is None:
            ledger_client = self.build_ledger_client(clock)
        key_manager = self.build_key_manager()
        cipher      = self.build_cipher()
        store       = store if store is not None else self.build_store(clock)
        codec       = CredentialCodec(key_manager, clock=clock)
        validator   = SweepValidator()

        issuer = EscrowIssuer(
            store=          store,
            codec=          codec,
            ledger_client=  ledger_client,
            cipher=         cipher,
            validator=      validator,
            credential_ttl= self.claim_credential_ttl,
            min_expires_in= self.min_expires_in,
            max_expires_in= self.max_expires_in,
            claim_base_url= self.claim_base_url,
            clock=          clock,
        )
        engine = RedemptionEngine(
            store=      store,
            codec=      codec,
            validator=  validator,
            authorizer= SigningAuthorizer(
                key_manager, clock=clock, address_check=validator.is_valid_address
            ),
            executor=   SweepExecutor(ledger_client),
            cipher=     cipher,
            clock=      clock,
        )
        return issuer, ClaimVerifier(store, codec, clock=clock), engine


def _as_int(name: str, value) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
