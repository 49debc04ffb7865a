"""
Secret ciphers for escrow signing material.

The escrow's ledger secret is stored encrypted on the account record and
decrypted only inside a single transfer / reclaim call.

    Base64SecretCipher   reversible encoding, NOT encryption. Kept for
                         compatibility with records written by early builds.
    FernetSecretCipher   AES-128-CBC + HMAC-SHA256 envelope (cryptography).
"""

import base64
import binascii
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken

from escrowclaim.core.exceptions import ConfigError, StoreError


class SecretCipher(ABC):
    """Encrypts / decrypts ledger secrets for storage."""

    name = "abstract"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        ...


class Base64SecretCipher(SecretCipher):
    """Placeholder cipher. Offers no confidentiality."""

    name = "base64"

    def encrypt(self, secret: str) -> str:
        return base64.b64encode(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return base64.b64decode(ciphertext, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise StoreError("Stored secret could not be decoded") from exc


class FernetSecretCipher(SecretCipher):
    """
    Fernet envelope around the secret.

    The key is a urlsafe-base64 32-byte Fernet key, usually provided via
    SECRET_CIPHER_KEY. Use FernetSecretCipher.generate_key() to mint one.
    """

    name = "fernet"

    def __init__(self, key):
        if isinstance(key, str):
            key = key.encode("ascii")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise ConfigError("Invalid Fernet key for secret cipher") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, secret: str) -> str:
        return self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            # Never echo the ciphertext.
            raise StoreError("Stored secret failed authentication") from exc


def cipher_for(name: str, key: str = None) -> SecretCipher:
    """Build a cipher by its configured name."""
    if name == Base64SecretCipher.name:
        return Base64SecretCipher()
    if name == FernetSecretCipher.name:
        if not key:
            raise ConfigError("fernet secret cipher requires cipher_key")
        return FernetSecretCipher(key)
    raise ConfigError(f"Unknown secret cipher: {name!r}")
