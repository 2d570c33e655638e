from __future__ import annotations

import os
import stat
import threading

import pytest

from dbstudio.exceptions.errors import VaultError
from dbstudio.vault.keys import KEY_LENGTH, KeyProvider, derive_key


def test_passphrase_wins_over_key_file(tmp_path) -> None:
    key_file = tmp_path / "vault.key"
    key_file.write_text("file-secret", encoding="utf-8")

    provider = KeyProvider(passphrase="env-secret", key_file=str(key_file))
    assert provider.master_key() == derive_key("env-secret")


def test_existing_key_file_is_used(tmp_path) -> None:
    key_file = tmp_path / "vault.key"
    key_file.write_text("  file-secret\n", encoding="utf-8")

    assert KeyProvider(key_file=str(key_file)).master_key() == derive_key("file-secret")


def test_empty_key_file_is_an_error(tmp_path) -> None:
    key_file = tmp_path / "vault.key"
    key_file.write_text("   ", encoding="utf-8")

    with pytest.raises(VaultError, match="empty"):
        KeyProvider(key_file=str(key_file)).master_key()


@pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
def test_generated_key_file_is_owner_only(tmp_path) -> None:
    key_file = tmp_path / "nested" / "dir" / "vault.key"
    provider = KeyProvider(key_file=str(key_file))

    key = provider.master_key()

    assert key_file.exists()
    assert stat.S_IMODE(key_file.stat().st_mode) == 0o600
    secret = key_file.read_text(encoding="utf-8")
    assert len(secret) >= 40
    assert key == derive_key(secret)
    # A new provider reading the same file derives the same key.
    assert KeyProvider(key_file=str(key_file)).master_key() == key


def test_key_is_derived_not_raw(tmp_path) -> None:
    key = KeyProvider(passphrase="short", key_file=str(tmp_path / "k")).master_key()
    assert len(key) == KEY_LENGTH
    assert key != b"short".ljust(KEY_LENGTH, b"\0")


def test_concurrent_first_use_initialises_once(tmp_path) -> None:
    key_file = tmp_path / "vault.key"
    provider = KeyProvider(key_file=str(key_file))
    keys = []

    def grab() -> None:
        keys.append(provider.master_key())

    threads = [threading.Thread(target=grab) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(keys)) == 1
    assert keys[0] == derive_key(key_file.read_text(encoding="utf-8"))


def test_repr_hides_passphrase(tmp_path) -> None:
    provider = KeyProvider(passphrase="hunter2", key_file=str(tmp_path / "k"))
    assert "hunter2" not in repr(provider)
