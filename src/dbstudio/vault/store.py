from __future__ import annotations

import json
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dbstudio.config.settings import Settings
from dbstudio.exceptions.errors import DbStudioError, NotFoundError, ValidationError, VaultError
from dbstudio.logging.logger import get_logger
from dbstudio.schema.models import MONGO_STANDARD, ConnectionDescriptor, ConnectionSummary, EngineKind
from dbstudio.vault.crypto import SecretCipher
from dbstudio.vault.keys import KeyProvider

log = get_logger("vault.store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS connections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    host TEXT NOT NULL,
    protocol TEXT,
    search TEXT,
    port INTEGER,
    user TEXT NOT NULL,
    database TEXT NOT NULL,
    encrypted_credentials TEXT NOT NULL,
    created_at INTEGER NOT NULL
)
"""

_SUMMARY_COLUMNS = "id, name, type, host, protocol, search, port, user, database, created_at"


def validate_descriptor(descriptor: ConnectionDescriptor) -> ConnectionDescriptor:
    """Required-field checks applied before anything is persisted."""
    if not descriptor.engine:
        raise ValidationError("Connection type is required.")
    for attr, label in (
        ("name", "Connection name"),
        ("host", "Host"),
        ("user", "User"),
        ("database", "Database"),
        ("password", "Password"),
    ):
        if not getattr(descriptor, attr):
            raise ValidationError(f"{label} is required.")
    if descriptor.engine is EngineKind.MONGO and not descriptor.protocol:
        descriptor.protocol = MONGO_STANDARD
    return descriptor


def _summary(row: sqlite3.Row) -> ConnectionSummary:
    return ConnectionSummary(
        id=row["id"],
        name=row["name"],
        engine=EngineKind.parse(row["type"]),
        host=row["host"],
        user=row["user"],
        database=row["database"],
        port=row["port"],
        protocol=row["protocol"],
        search=row["search"],
        created_at=row["created_at"],
    )


class ConnectionVault:
    """Connection descriptors at rest in sqlite, secrets sealed by :class:`SecretCipher`.

    The sqlite handle is opened on first use and shared; call :meth:`close`
    on shutdown.
    """

    def __init__(self, path: str, cipher: SecretCipher):
        self.path = Path(path)
        self.cipher = cipher
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # -- lifecycle ---------------------------------------------------------

    def _db(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        with self._lock:
            if self._conn is None:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    conn = sqlite3.connect(str(self.path), check_same_thread=False)
                    conn.row_factory = sqlite3.Row
                    conn.execute("PRAGMA journal_mode=WAL")
                    conn.execute(_SCHEMA)
                    conn.commit()
                except (OSError, sqlite3.Error) as e:
                    raise VaultError(f"Cannot open connection vault at {self.path}: {e}") from e
                log.info("Connection vault opened", extra={"path": str(self.path)})
                self._conn = conn
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ConnectionVault":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _seal(self, password: str, filepath: str) -> str:
        return self.cipher.encrypt(json.dumps({"password": password or "", "filepath": filepath or ""}))

    # -- operations --------------------------------------------------------

    def store(self, descriptor: ConnectionDescriptor) -> ConnectionSummary:
        d = validate_descriptor(descriptor)
        conn_id = str(uuid.uuid4())
        created_at = int(time.time() * 1000)
        sealed = self._seal(d.password, d.filepath)

        with self._lock:
            db = self._db()
            db.execute(
                f"INSERT INTO connections ({_SUMMARY_COLUMNS}, encrypted_credentials) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    conn_id,
                    d.name,
                    d.engine.value,
                    d.host,
                    d.protocol,
                    d.search,
                    d.port,
                    d.user,
                    d.database,
                    created_at,
                    sealed,
                ),
            )
            db.commit()

        log.info("Connection stored", extra={"connection_id": conn_id, "engine": d.engine.value})
        d.id = conn_id
        d.created_at = created_at
        return d.summary()

    def list(self) -> List[ConnectionSummary]:
        with self._lock:
            rows = self._db().execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM connections ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [_summary(r) for r in rows]

    def summary(self, conn_id: str) -> Optional[ConnectionSummary]:
        with self._lock:
            row = self._db().execute(f"SELECT {_SUMMARY_COLUMNS} FROM connections WHERE id = ?", (conn_id,)).fetchone()
        return _summary(row) if row else None

    def get(self, conn_id: str) -> ConnectionDescriptor:
        """Full descriptor with plaintext secrets; keep it for one operation only."""
        with self._lock:
            row = self._db().execute(
                f"SELECT {_SUMMARY_COLUMNS}, encrypted_credentials FROM connections WHERE id = ?", (conn_id,)
            ).fetchone()
        if not row:
            raise NotFoundError("Connection not found.")

        try:
            secrets = json.loads(self.cipher.decrypt(row["encrypted_credentials"]))
        except json.JSONDecodeError as e:
            raise VaultError("Stored credentials are corrupt.") from e
        if not isinstance(secrets, dict):
            raise VaultError("Stored credentials are corrupt.")

        s = _summary(row)
        return ConnectionDescriptor(
            id=s.id,
            name=s.name,
            engine=s.engine,
            host=s.host,
            user=s.user,
            database=s.database,
            port=s.port,
            protocol=s.protocol,
            search=s.search,
            created_at=s.created_at,
            password=str(secrets.get("password") or ""),
            filepath=str(secrets.get("filepath") or ""),
        )

    def delete(self, conn_id: str) -> bool:
        with self._lock:
            db = self._db()
            cur = db.execute("DELETE FROM connections WHERE id = ?", (conn_id,))
            db.commit()
        removed = cur.rowcount > 0
        log.info("Connection removed", extra={"connection_id": conn_id, "removed": removed})
        return removed

    def rotate_secret(self, conn_id: str, password: str, filepath: str = "") -> None:
        """Replace the whole sealed envelope; the old one is never partially reused."""
        if not password:
            raise ValidationError("Password is required.")
        sealed = self._seal(password, filepath)
        with self._lock:
            db = self._db()
            cur = db.execute("UPDATE connections SET encrypted_credentials = ? WHERE id = ?", (sealed, conn_id))
            db.commit()
        if cur.rowcount == 0:
            raise NotFoundError("Connection not found.")
        log.info("Connection secret rotated", extra={"connection_id": conn_id})

    def import_legacy(self, records: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
        """Seal plaintext descriptors exported from the old client-side store.

        Returns ``{"imported": [summaries], "failed": [{"index", "reason"}]}``;
        one bad record does not stop the rest.
        """
        imported: List[ConnectionSummary] = []
        failed: List[Dict[str, Any]] = []
        for i, raw in enumerate(records):
            if not isinstance(raw, dict):
                failed.append({"index": i, "reason": "Record is not an object."})
                continue
            try:
                imported.append(self.store(ConnectionDescriptor.from_dict(raw)))
            except DbStudioError as e:
                failed.append({"index": i, "reason": str(e)})
        log.info("Legacy import finished", extra={"imported": len(imported), "failed": len(failed)})
        return {"imported": imported, "failed": failed}


def open_vault(settings: Settings) -> ConnectionVault:
    keys = KeyProvider(passphrase=settings.master_key, key_file=settings.master_key_file)
    return ConnectionVault(settings.vault_path, SecretCipher(keys))
