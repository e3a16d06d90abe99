"""
The Vault -- storage credentials encrypted at rest.

The access key pair never touches disk in the clear. It is serialised
to JSON and sealed with a key derived from the user's password:

    password --PBKDF2-HMAC-SHA256(salt, N)--> 32-byte key
    key + JSON --Fernet (AES-128-CBC + HMAC-SHA256)--> token

The blob written to disk is a small JSON envelope carrying the salt,
iteration count and token, so it is plain text and self-describing.

Fernet authenticates the ciphertext, so a wrong password, a flipped
byte and a truncated file all fail the HMAC check and surface as one
InvalidPassword error. Nothing half-decrypted is ever returned.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError

from . import SYNC_HOME
from .models import CredentialRecord

logger = logging.getLogger("syncdirs3.vault")

VAULT_FILENAME = "credentials.enc"
VAULT_VERSION = 1
KDF_NAME = "pbkdf2-sha256"
DEFAULT_ITERATIONS = 390_000
MAX_ITERATIONS = 10_000_000
SALT_BYTES = 16


class VaultError(Exception):
    """Base class for credential vault failures."""


class InvalidPassword(VaultError):
    """Raised when the vault cannot be decrypted with the given password."""


class CredentialsNotFound(VaultError, FileNotFoundError):
    """Raised when no vault file exists yet."""


def _derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    """Derive a Fernet key from a password.

    Args:
        password: User-supplied password.
        salt: Random per-vault salt.
        iterations: PBKDF2 work factor.

    Returns:
        URL-safe base64 key suitable for Fernet.
    """
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))


def encrypt(
    password: str,
    record: CredentialRecord,
    iterations: int = DEFAULT_ITERATIONS,
) -> str:
    """Seal a credential record under a password.

    Args:
        password: Password protecting the record.
        record: Credentials to encrypt.
        iterations: PBKDF2 work factor, stored in the envelope.

    Returns:
        JSON envelope text, safe to write to a text file.
    """
    salt = os.urandom(SALT_BYTES)
    key = _derive_key(password, salt, iterations)
    token = Fernet(key).encrypt(record.model_dump_json().encode("utf-8"))
    envelope = {
        "version": VAULT_VERSION,
        "kdf": KDF_NAME,
        "iterations": iterations,
        "salt": base64.b64encode(salt).decode("ascii"),
        "token": token.decode("ascii"),
    }
    return json.dumps(envelope, indent=2)


def decrypt(password: str, blob: str) -> CredentialRecord:
    """Open a sealed credential record.

    Args:
        password: Password the record was sealed with.
        blob: Envelope text produced by encrypt().

    Returns:
        The decrypted CredentialRecord.

    Raises:
        InvalidPassword: Wrong password, or a corrupted/truncated blob.
    """
    try:
        envelope = json.loads(blob)
        salt = base64.b64decode(envelope["salt"], validate=True)
        iterations = int(envelope["iterations"])
        token = envelope["token"].encode("ascii")
        if envelope.get("kdf") != KDF_NAME or not 1 <= iterations <= MAX_ITERATIONS:
            raise ValueError("unsupported key derivation")
        key = _derive_key(password, salt, iterations)
        plaintext = Fernet(key).decrypt(token)
        return CredentialRecord.model_validate_json(plaintext)
    except (
        InvalidToken,
        ValidationError,
        ValueError,
        OverflowError,
        KeyError,
        TypeError,
        AttributeError,
    ) as exc:
        logger.debug("Vault decryption failed: %s", type(exc).__name__)
        raise InvalidPassword("Password was invalid.") from None


class CredentialVault:
    """Reads and writes the encrypted credentials file.

    One vault per host user, at a fixed path under the sync home.
    Overwritten wholesale on every save.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        iterations: int = DEFAULT_ITERATIONS,
    ):
        """Initialize the vault.

        Args:
            path: Vault file. Defaults to ~/.sync-dir-s3/credentials.enc.
            iterations: PBKDF2 work factor for new saves.
        """
        self.path = (
            path or Path(SYNC_HOME) / VAULT_FILENAME
        ).expanduser()
        self.iterations = iterations

    def exists(self) -> bool:
        """Whether a vault file is present."""
        try:
            return self.path.is_file()
        except OSError:
            return False

    def encrypt(self, password: str, record: CredentialRecord) -> str:
        return encrypt(password, record, iterations=self.iterations)

    def decrypt(self, password: str, blob: str) -> CredentialRecord:
        return decrypt(password, blob)

    def save(self, password: str, record: CredentialRecord) -> Path:
        """Encrypt and atomically replace the vault file.

        The envelope goes to a temp file in the same directory which is
        then renamed over the vault, so a crash leaves either the old
        vault or the new one.

        Args:
            password: Password protecting the record.
            record: Credentials to store.

        Returns:
            Path to the written vault.
        """
        blob = self.encrypt(password, record)
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=".credentials-", suffix=".tmp"
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(blob)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.info("Credentials saved to %s", self.path)
        return self.path

    def load(self, password: str) -> CredentialRecord:
        """Read and decrypt the vault.

        Raises:
            CredentialsNotFound: No vault file exists.
            InvalidPassword: The password does not open the vault.
        """
        try:
            blob = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise CredentialsNotFound(
                f"No credentials found at {self.path}"
            ) from None
        except UnicodeDecodeError:
            raise InvalidPassword("Password was invalid.") from None

        record = self.decrypt(password, blob)
        logger.debug("Credentials loaded from %s", self.path)
        return record

    def delete(self) -> bool:
        """Remove the vault file.

        Returns:
            True if a file was removed.
        """
        if not self.exists():
            return False
        self.path.unlink()
        logger.info("Credentials removed from %s", self.path)
        return True
