from __future__ import annotations

from typing import Dict, Optional

from dbstudio.config.settings import Settings
from dbstudio.db.base import EngineAdapter
from dbstudio.db.mongo import MongoAdapter
from dbstudio.db.mysql import MySqlAdapter
from dbstudio.db.postgres import PostgresAdapter
from dbstudio.exceptions.errors import ValidationError
from dbstudio.schema.models import EngineKind


def adapter_for(kind: EngineKind, connect_timeout_s: int = 10, mongo_app_name: str = "dbstudio") -> EngineAdapter:
    kind = EngineKind.parse(kind)
    if kind is EngineKind.MYSQL:
        return MySqlAdapter(connect_timeout_s)
    if kind is EngineKind.POSTGRES:
        return PostgresAdapter(connect_timeout_s)
    if kind is EngineKind.MONGO:
        return MongoAdapter(connect_timeout_s, app_name=mongo_app_name)
    raise ValidationError(f"Unsupported database type: {kind}")


def default_adapters(settings: Optional[Settings] = None) -> Dict[EngineKind, EngineAdapter]:
    timeout = settings.connect_timeout_s if settings else 10
    app_name = settings.mongo_app_name if settings else "dbstudio"
    return {kind: adapter_for(kind, timeout, app_name) for kind in EngineKind}
