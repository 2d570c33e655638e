from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dbstudio.exceptions.errors import DecryptionError, EnvelopeFormatError
from dbstudio.vault.keys import KeyProvider

NONCE_SIZE: Final[int] = 12
TAG_SIZE: Final[int] = 16


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str, part: str) -> bytes:
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeFormatError(f"Invalid encrypted payload format: bad {part}.") from e
    # Canonical encoding only: unused padding bits must round-trip too.
    if _b64(data) != text:
        raise EnvelopeFormatError(f"Invalid encrypted payload format: bad {part}.")
    return data


@dataclass(frozen=True)
class CipherEnvelope:
    """``b64(nonce):b64(tag):b64(ciphertext)``; the text stored in the vault."""

    nonce: bytes
    tag: bytes
    ciphertext: bytes

    def __str__(self) -> str:
        return ":".join((_b64(self.nonce), _b64(self.tag), _b64(self.ciphertext)))

    def __repr__(self) -> str:
        return f"CipherEnvelope(ciphertext_len={len(self.ciphertext)})"

    @classmethod
    def parse(cls, text: str) -> "CipherEnvelope":
        parts = (text or "").split(":")
        if len(parts) != 3 or not parts[0] or not parts[1]:
            raise EnvelopeFormatError("Invalid encrypted payload format.")
        nonce = _unb64(parts[0], "nonce")
        tag = _unb64(parts[1], "tag")
        ciphertext = _unb64(parts[2], "ciphertext")
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise EnvelopeFormatError("Invalid encrypted payload format.")
        return cls(nonce=nonce, tag=tag, ciphertext=ciphertext)


class SecretCipher:
    """AES-256-GCM over UTF-8 text with the vault master key."""

    def __init__(self, keys: KeyProvider):
        self.keys = keys

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(self.keys.master_key()).encrypt(nonce, plaintext.encode("utf-8"), None)
        return str(CipherEnvelope(nonce=nonce, tag=sealed[-TAG_SIZE:], ciphertext=sealed[:-TAG_SIZE]))

    def decrypt(self, envelope: str) -> str:
        env = CipherEnvelope.parse(envelope)
        try:
            plain = AESGCM(self.keys.master_key()).decrypt(env.nonce, env.ciphertext + env.tag, None)
        except InvalidTag:
            raise DecryptionError("Stored credentials could not be decrypted (wrong key or tampered data).") from None
        return plain.decode("utf-8")
