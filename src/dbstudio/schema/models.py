from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from dbstudio.exceptions.errors import ValidationError


class EngineKind(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgresql"
    MONGO = "mongodb"

    @property
    def is_relational(self) -> bool:
        return self is not EngineKind.MONGO

    @classmethod
    def parse(cls, raw: Any) -> "EngineKind":
        if isinstance(raw, EngineKind):
            return raw
        t = str(raw or "").strip().lower()
        aliases = {
            "mysql": cls.MYSQL,
            "relational-mysql": cls.MYSQL,
            "postgres": cls.POSTGRES,
            "postgresql": cls.POSTGRES,
            "pg": cls.POSTGRES,
            "relational-postgres": cls.POSTGRES,
            "mongo": cls.MONGO,
            "mongodb": cls.MONGO,
            "document-mongo": cls.MONGO,
        }
        if t not in aliases:
            raise ValidationError(f"Unsupported database type: {raw}")
        return aliases[t]


MONGO_STANDARD = "mongodb"
MONGO_SRV = "mongodb+srv"


@dataclass(frozen=True)
class ConnectionSummary:
    """Connection metadata safe to list and display; carries no secrets."""

    id: str
    name: str
    engine: EngineKind
    host: str
    user: str
    database: str
    port: Optional[int] = None
    protocol: Optional[str] = None
    search: Optional[str] = None
    created_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.engine.value
        del d["engine"]
        return {k: v for k, v in d.items() if v is not None}


@dataclass
class ConnectionDescriptor:
    """A live connection description.

    ``password`` and ``filepath`` are the secret fields. A descriptor built by
    the vault holds them in plaintext for the duration of one operation; the
    vault itself only ever persists them inside an encrypted envelope.
    """

    name: str
    engine: EngineKind
    host: str
    user: str
    database: str
    port: Optional[int] = None
    password: str = field(default="", repr=False)
    filepath: str = field(default="", repr=False)
    protocol: Optional[str] = None
    search: Optional[str] = None
    ssl: bool = False
    id: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def is_srv(self) -> bool:
        return (self.protocol or MONGO_STANDARD) == MONGO_SRV

    def summary(self) -> ConnectionSummary:
        return ConnectionSummary(
            id=self.id or "",
            name=self.name,
            engine=self.engine,
            host=self.host,
            user=self.user,
            database=self.database,
            port=self.port,
            protocol=self.protocol,
            search=self.search,
            created_at=self.created_at,
        )

    def with_secrets(self, password: str, filepath: str = "") -> "ConnectionDescriptor":
        return replace(self, password=password, filepath=filepath)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ConnectionDescriptor":
        """Build from a loose mapping (CLI input, legacy exports).

        Accepts ``type`` or ``engine`` for the engine kind; unknown keys are ignored.
        """
        raw = dict(payload or {})
        engine = EngineKind.parse(raw.pop("type", None) or raw.pop("engine", None))
        known = {f.name for f in fields(cls)} - {"engine"}
        kwargs = {k: v for k, v in raw.items() if k in known and v is not None}
        port = kwargs.get("port")
        if port in ("", 0, "0"):
            kwargs.pop("port")
        elif port is not None:
            try:
                kwargs["port"] = int(port)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid port: {port}") from e
        ssl = kwargs.get("ssl", False)
        if isinstance(ssl, str):
            ssl = ssl.strip().lower() in ("1", "true", "yes", "on")
        kwargs["ssl"] = bool(ssl)
        for key in ("name", "host", "user", "database", "password", "filepath"):
            if key in kwargs:
                kwargs[key] = str(kwargs[key])
        kwargs.setdefault("name", "")
        kwargs.setdefault("host", "")
        kwargs.setdefault("user", "")
        kwargs.setdefault("database", "")
        return cls(engine=engine, **kwargs)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    native_type: str
    nullable: bool
    key_role: str = ""
    default_value: Optional[Any] = None
    extra: str = ""


@dataclass(frozen=True)
class TableSchema:
    table_name: str
    columns: List[ColumnInfo] = field(default_factory=list)

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def primary_key(self) -> Optional[str]:
        for c in self.columns:
            if c.key_role == "PRI":
                return c.name
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tableName": self.table_name,
            "columns": [
                {
                    "columnName": c.name,
                    "dataType": c.native_type,
                    "isNullable": c.nullable,
                    "columnKey": c.key_role,
                    "defaultValue": c.default_value,
                    "extra": c.extra,
                }
                for c in self.columns
            ],
        }


@dataclass(frozen=True)
class ColumnDefinition:
    """Column options for CREATE TABLE / ADD COLUMN."""

    name: str
    type: str = "text"
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    auto_increment: bool = False
    default: Optional[str] = None
    check: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ColumnDefinition":
        return cls(
            name=str(raw.get("name") or ""),
            type=str(raw.get("type") or "text"),
            nullable=bool(raw.get("nullable", raw.get("isNullable", True))),
            primary_key=bool(raw.get("primary_key", raw.get("isPrimaryKey", False))),
            unique=bool(raw.get("unique", raw.get("isUnique", False))),
            auto_increment=bool(raw.get("auto_increment", raw.get("autoincrement", False))),
            default=(str(raw["default"]) if raw.get("default") not in (None, "") else None),
            check=(str(raw["check"]) if raw.get("check") not in (None, "") else None),
        )


@dataclass(frozen=True)
class TableInfo:
    name: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "count": self.count}
