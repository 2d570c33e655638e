from __future__ import annotations

import base64
import os
import threading
from pathlib import Path
from typing import Final, Optional

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from dbstudio.exceptions.errors import VaultError
from dbstudio.logging.logger import get_logger

log = get_logger("vault.keys")

KEY_SALT: Final[bytes] = b"dbstudio-connection-vault"
KEY_LENGTH: Final[int] = 32
SCRYPT_N: Final[int] = 2**14
SCRYPT_R: Final[int] = 8
SCRYPT_P: Final[int] = 1

DEFAULT_KEY_FILE = str(Path("data") / "vault.key")


def derive_key(secret: str) -> bytes:
    """scrypt(secret, fixed salt) -> 32-byte AES key."""
    kdf = Scrypt(salt=KEY_SALT, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


class KeyProvider:
    """Resolves the vault master key once per process.

    Precedence:
      1. ``passphrase`` (normally ``DB_STUDIO_MASTER_KEY``)
      2. contents of ``key_file`` when it exists
      3. a fresh random secret written to ``key_file`` with mode 0600

    Whatever the source, the 32-byte key is derived with scrypt and cached.
    """

    def __init__(self, passphrase: Optional[str] = None, key_file: str = DEFAULT_KEY_FILE):
        self._passphrase = passphrase or None
        self.key_file = Path(key_file)
        self._key: Optional[bytes] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"KeyProvider(key_file={str(self.key_file)!r}, passphrase={'set' if self._passphrase else 'unset'})"

    def master_key(self) -> bytes:
        if self._key is not None:
            return self._key
        with self._lock:
            if self._key is None:
                self._key = derive_key(self._load_secret())
        return self._key

    def _load_secret(self) -> str:
        if self._passphrase:
            log.info("Using master key from environment")
            return self._passphrase

        if self.key_file.exists():
            try:
                raw = self.key_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise VaultError(f"Cannot read vault key file {self.key_file}: {e}") from e
            if not raw:
                raise VaultError("Vault key file is empty.")
            return raw

        return self._generate()

    def _generate(self) -> str:
        secret = base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")
        try:
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            # O_EXCL: never clobber a key another process wrote in the meantime.
            fd = os.open(self.key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(secret)
        except FileExistsError:
            raw = self.key_file.read_text(encoding="utf-8").strip()
            if not raw:
                raise VaultError("Vault key file is empty.")
            return raw
        except OSError as e:
            raise VaultError(f"Cannot create vault key file {self.key_file}: {e}") from e

        try:
            os.chmod(self.key_file, 0o600)
        except OSError:
            log.warning("Could not set permissions on vault key file", extra={"path": str(self.key_file)})
        log.info("Generated new vault key file", extra={"path": str(self.key_file)})
        return secret
