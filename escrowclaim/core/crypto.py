"""
escrowclaim/core/crypto.py

Cryptographic Layer

Two concerns live here:

1. Ed25519KeyManager: the service signing key. Signs claim credentials and
   sweep attestations.

       public_key_hex          : @property → 64-char lowercase hex
       sign(data)              : bytes → base64url str, no padding
       verify_detached(...)    : @staticmethod, verifies with ONLY a pubkey hex

2. Ledger identities: escrow accounts are Ed25519 keypairs rendered in the
   network's strkey form:

       base32( version_byte ‖ 32-byte key ‖ CRC16-XModem(LE) )   → 56 chars

       account id   version 6 << 3   → begins with "G"
       secret seed  version 18 << 3  → begins with "S"
"""

import base64
import struct
from pathlib import Path
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)


ACCOUNT_ID_VERSION  = 6 << 3
SECRET_SEED_VERSION = 18 << 3
STRKEY_LENGTH       = 56


class Ed25519KeyManager:
    """
    Ed25519 key manager.

    Public surface:
        Ed25519KeyManager.generate()                        → new random key
        Ed25519KeyManager.from_file(path)                  → load PEM private key
        Ed25519KeyManager.from_private_bytes(seed)         → load from raw 32-byte seed
        Ed25519KeyManager.verify_detached(data, sig, hex)  → @staticmethod, no instance needed

        key.public_key_hex          (@property) → 64-char lowercase hex
        key.sign(data: bytes)                   → base64url str (no padding)
        key.verify(data, sig)                   → bool
        key.save(path)                          → write PEM private key
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key:    Ed25519PrivateKey = private_key
        self._public_key:     Ed25519PublicKey  = private_key.public_key()
        self._public_key_hex: str = (
            self._public_key
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
            .hex()
        )

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def generate(cls) -> "Ed25519KeyManager":
        """Generate a new random Ed25519 key pair."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_file(cls, path: Path) -> "Ed25519KeyManager":
        """
        Load an Ed25519 private key from a PEM file.
        Raises FileNotFoundError if path does not exist.
        Raises ValueError if the file is not a valid Ed25519 PEM key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        pem_bytes = path.read_bytes()
        try:
            private_key = load_pem_private_key(pem_bytes, password=None)
        except Exception as exc:
            raise ValueError(
                f"Failed to load Ed25519 key from {path}: {exc}"
            ) from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(
                f"Key file {path} does not contain an Ed25519 private key"
            )
        return cls(private_key)

    @classmethod
    def from_private_bytes(cls, seed: bytes) -> "Ed25519KeyManager":
        """
        Load an Ed25519 key from a raw 32-byte seed.
        Raises ValueError if seed is not exactly 32 bytes.
        """
        if len(seed) != 32:
            raise ValueError(
                f"Ed25519 seed must be 32 bytes, got {len(seed)}"
            )
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    # ── Public Key ────────────────────────────────────────────

    @property
    def public_key_hex(self) -> str:
        """64-character lowercase hex string of the Ed25519 public key."""
        return self._public_key_hex

    # ── Signing ───────────────────────────────────────────────

    def sign(self, data: bytes) -> str:
        """
        Sign data with Ed25519. Returns base64url string, no '=' padding.
        Always 86 characters.
        """
        raw_sig = self._private_key.sign(data)
        return b64url_encode(raw_sig)

    def verify(self, data: bytes, signature_b64: str) -> bool:
        """Verify against this key manager's own public key. Never raises."""
        return Ed25519KeyManager.verify_detached(
            data, signature_b64, self._public_key_hex
        )

    @staticmethod
    def verify_detached(
        data:           bytes,
        signature_b64:  str,
        public_key_hex: str,
    ) -> bool:
        """
        Verify an Ed25519 signature using ONLY a public key hex string.

        Returns:
            True if the signature is valid over data with the given public key.
            False for ANY failure: wrong key, bad encoding, wrong length,
            corrupted signature. Never raises.
        """
        try:
            if not isinstance(public_key_hex, str) or len(public_key_hex) != 64:
                return False

            pub     = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
            raw_sig = b64url_decode(signature_b64)

            if len(raw_sig) != 64:
                return False

            pub.verify(raw_sig, data)
            return True

        except Exception:
            return False

    # ── Persistence ───────────────────────────────────────────

    def save(self, path: Path) -> None:
        """
        Write the private key to disk as a PEM file.
        Creates parent directories if needed.
        Raises RuntimeError on write failure.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            pem = self._private_key.private_bytes(
                encoding=             Encoding.PEM,
                format=               PrivateFormat.PKCS8,
                encryption_algorithm= NoEncryption(),
            )
            path.write_bytes(pem)
        except Exception as exc:
            raise RuntimeError(
                f"Failed to save Ed25519 key to {path}: {exc}"
            ) from exc

    def __repr__(self) -> str:
        return (
            f"Ed25519KeyManager(public_key_hex={self._public_key_hex[:16]}...)"
        )


# ── base64url ─────────────────────────────────────────────────

def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """Decode base64url with or without padding. Raises ValueError."""
    if not isinstance(text, str):
        raise ValueError("base64url input must be str")
    padding = 4 - len(text) % 4
    try:
        return base64.urlsafe_b64decode(text + "=" * (padding % 4))
    except Exception as exc:
        raise ValueError(f"invalid base64url: {exc}") from exc


# ── Ledger identities (strkey) ────────────────────────────────

def crc16_xmodem(data: bytes) -> int:
    crc = 0x0000
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def _encode_strkey(version: int, raw: bytes) -> str:
    if len(raw) != 32:
        raise ValueError(f"strkey payload must be 32 bytes, got {len(raw)}")
    payload = bytes([version]) + raw
    checksum = struct.pack("<H", crc16_xmodem(payload))
    return base64.b32encode(payload + checksum).decode("ascii")


def _decode_strkey(version: int, text: str) -> bytes:
    if not isinstance(text, str) or len(text) != STRKEY_LENGTH:
        raise ValueError("strkey must be a 56-character string")
    try:
        decoded = base64.b32decode(text)
    except Exception as exc:
        raise ValueError(f"strkey is not valid base32: {exc}") from exc
    if decoded[0] != version:
        raise ValueError("strkey version byte mismatch")
    payload, checksum = decoded[:-2], decoded[-2:]
    if struct.pack("<H", crc16_xmodem(payload)) != checksum:
        raise ValueError("strkey checksum mismatch")
    return payload[1:]


def encode_account_id(public_key: bytes) -> str:
    return _encode_strkey(ACCOUNT_ID_VERSION, public_key)


def encode_secret_seed(seed: bytes) -> str:
    return _encode_strkey(SECRET_SEED_VERSION, seed)


def decode_account_id(account_id: str) -> bytes:
    return _decode_strkey(ACCOUNT_ID_VERSION, account_id)


def decode_secret_seed(secret: str) -> bytes:
    return _decode_strkey(SECRET_SEED_VERSION, secret)


def is_valid_account_id(account_id: str) -> bool:
    """Full checksum validation. Never raises."""
    try:
        decode_account_id(account_id)
        return True
    except ValueError:
        return False


def generate_ledger_keypair() -> Tuple[str, str]:
    """
    Fresh escrow identity.

    Returns:
        (account_id, secret_seed); the seed must go straight into a
        SecretCipher and never be logged.
    """
    private_key = Ed25519PrivateKey.generate()
    seed = private_key.private_bytes(
        encoding=             Encoding.Raw,
        format=               PrivateFormat.Raw,
        encryption_algorithm= NoEncryption(),
    )
    public = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return encode_account_id(public), encode_secret_seed(seed)


def account_id_from_secret(secret: str) -> str:
    """Derive the account id a secret seed signs for. Raises ValueError."""
    seed = decode_secret_seed(secret)
    key  = Ed25519PrivateKey.from_private_bytes(seed)
    public = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return encode_account_id(public)
