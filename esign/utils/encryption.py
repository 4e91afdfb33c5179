"""Encryption of stored access tokens.

Tokens are looked up by digest, but reminders need the original value to
rebuild a signing link. The encrypted copy is kept for that purpose only.
"""

import base64
import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


# =============================================================================
# Constants
# =============================================================================

ALGORITHM = "AES-256-GCM"
KEY_SIZE = 32  # 256 bits
IV_SIZE = 12   # 96 bits for GCM
TAG_SIZE = 16  # 128 bits authentication tag


class DecryptionError(Exception):
    """Raised when a stored value cannot be decrypted."""

    pass


def derive_key(secret: str) -> bytes:
    """
    Turn a configured secret into a 256-bit key.

    Accepts either a urlsafe-base64 encoded 32-byte key or any passphrase,
    which is stretched with SHA-256.
    """
    try:
        raw = base64.urlsafe_b64decode(secret.encode("ascii") + b"==")
        if len(raw) == KEY_SIZE:
            return raw
    except (ValueError, UnicodeEncodeError):
        pass
    return hashlib.sha256(secret.encode("utf-8")).digest()


# =============================================================================
# Token Cipher
# =============================================================================

class TokenCipher:
    """
    AES-256-GCM encryption for short secrets.

    Output format is ``{key_id}:{iv}:{ciphertext}:{tag}`` with base64 parts,
    where ``key_id`` fingerprints the key so a rotated key is detected.
    """

    def __init__(self, secret: str):
        self._key = derive_key(secret)
        self.key_id = hashlib.sha256(self._key).hexdigest()[:16]
        self._backend = default_backend()

    def encrypt(self, plaintext: str, associated_data: Optional[bytes] = None) -> str:
        iv = os.urandom(IV_SIZE)

        cipher = Cipher(algorithms.AES(self._key), modes.GCM(iv), backend=self._backend)
        encryptor = cipher.encryptor()

        if associated_data:
            encryptor.authenticate_additional_data(associated_data)

        ciphertext = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()

        return ":".join(
            [
                self.key_id,
                base64.b64encode(iv).decode("ascii"),
                base64.b64encode(ciphertext).decode("ascii"),
                base64.b64encode(encryptor.tag).decode("ascii"),
            ]
        )

    def decrypt(self, encrypted: str, associated_data: Optional[bytes] = None) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Raises:
            DecryptionError: malformed input, a different key, or a failed tag check
        """
        parts = (encrypted or "").split(":")
        if len(parts) != 4:
            raise DecryptionError("Invalid encrypted data format")

        key_id, encoded_iv, encoded_ciphertext, encoded_tag = parts
        if key_id != self.key_id:
            raise DecryptionError(f"Value was encrypted with unknown key {key_id}")

        try:
            iv = base64.b64decode(encoded_iv)
            ciphertext = base64.b64decode(encoded_ciphertext)
            tag = base64.b64decode(encoded_tag)
        except ValueError as e:
            raise DecryptionError(f"Failed to parse encrypted data: {e}")

        cipher = Cipher(
            algorithms.AES(self._key),
            modes.GCM(iv, tag),
            backend=self._backend,
        )
        decryptor = cipher.decryptor()

        if associated_data:
            decryptor.authenticate_additional_data(associated_data)

        try:
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch")

        return plaintext.decode("utf-8")
