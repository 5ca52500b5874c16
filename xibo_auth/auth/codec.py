"""Authenticated encryption for stored secrets.

Secrets are sealed with AES-256-GCM:
- A fresh random 16-byte IV per call
- A fixed associated-data tag binding ciphertexts to this application
- A key stretched from the caller's passphrase with scrypt and a fixed salt

The sealed form is three hex strings (``iv``, ``data``, ``authTag``).
Changing the passphrase makes every previously sealed secret undecryptable;
there is no re-keying.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import DecryptFailure

logger = logging.getLogger(__name__)

# Associated data bound to every ciphertext
ASSOCIATED_DATA = b"xibo-mcp-token"

# scrypt parameters
KDF_SALT = b"salt"
KDF_N = 2**14
KDF_R = 8
KDF_P = 1
KEY_LENGTH = 32

IV_LENGTH = 16
TAG_LENGTH = 16


@dataclass(frozen=True)
class Sealed:
    """An encrypted secret.

    Attributes:
        iv: Hex-encoded initialization vector
        data: Hex-encoded ciphertext
        auth_tag: Hex-encoded GCM authentication tag
    """

    iv: str
    data: str
    auth_tag: str

    def to_dict(self) -> dict[str, str]:
        """Serialize to the on-disk layout."""
        return {"iv": self.iv, "data": self.data, "authTag": self.auth_tag}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Sealed":
        """Deserialize from the on-disk layout.

        Raises:
            DecryptFailure: If a field is missing or not a string
        """
        try:
            iv, ciphertext, tag = data["iv"], data["data"], data["authTag"]
        except (KeyError, TypeError) as e:
            raise DecryptFailure(f"Malformed sealed secret: {e}") from e
        if not all(isinstance(v, str) for v in (iv, ciphertext, tag)):
            raise DecryptFailure("Malformed sealed secret: fields must be hex strings")
        return cls(iv=iv, data=ciphertext, auth_tag=tag)


def derive_key(passphrase: str) -> bytes:
    """Stretch a passphrase into a 256-bit key with scrypt."""
    if not passphrase:
        raise ValueError("Passphrase must not be empty")
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=KDF_N, r=KDF_R, p=KDF_P)
    return kdf.derive(passphrase.encode("utf-8"))


class SecretCodec:
    """Seal and open secrets with a key derived once from a passphrase.

    Key derivation is slow, so a codec instance should be
    reused for every secret sealed under the same passphrase.
    """

    def __init__(self, passphrase: str):
        self._aead = AESGCM(derive_key(passphrase))

    def encrypt(self, plaintext: str) -> Sealed:
        """Seal a plaintext string."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), ASSOCIATED_DATA)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return Sealed(iv=iv.hex(), data=ciphertext.hex(), auth_tag=tag.hex())

    def decrypt(self, sealed: Sealed) -> str:
        """Open a sealed secret.

        Raises:
            DecryptFailure: On tag mismatch, malformed hex, or wrong key
        """
        try:
            iv = bytes.fromhex(sealed.iv)
            ciphertext = bytes.fromhex(sealed.data)
            tag = bytes.fromhex(sealed.auth_tag)
        except (ValueError, TypeError) as e:
            raise DecryptFailure(f"Sealed secret is not valid hex: {e}") from e

        if len(tag) != TAG_LENGTH or len(iv) == 0:
            raise DecryptFailure("Sealed secret has an invalid IV or tag length")

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, ASSOCIATED_DATA)
        except (InvalidTag, ValueError) as e:
            raise DecryptFailure(
                "Failed to decrypt secret. The passphrase may have changed or the data is corrupted."
            ) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptFailure("Decrypted secret is not valid UTF-8") from e


def encrypt(plaintext: str, passphrase: str) -> Sealed:
    """Seal ``plaintext`` under ``passphrase``."""
    return SecretCodec(passphrase).encrypt(plaintext)


def decrypt(sealed: Sealed, passphrase: str) -> str:
    """Open ``sealed`` with ``passphrase``.

    Raises:
        DecryptFailure: If the secret cannot be opened with this passphrase
    """
    try:
        codec = SecretCodec(passphrase)
    except ValueError as e:
        raise DecryptFailure(str(e)) from e
    return codec.decrypt(sealed)
