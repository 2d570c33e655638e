from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OperationResult:
    """Uniform reply for every facade operation.

    ``to_dict()`` emits the camelCase response shape and drops unset fields, so
    a read carries ``data/schema/totalPages/page/pageSize`` and a mutation
    carries ``message/matchedCount/modifiedCount`` only where they apply.
    """

    success: bool
    message: Optional[str] = None
    data: Any = None
    schema: Optional[Dict[str, Any]] = None
    total_pages: Optional[int] = None
    total: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    matched_count: Optional[int] = None
    modified_count: Optional[int] = None
    inserted_id: Optional[str] = None
    tables: Optional[List[Dict[str, Any]]] = None
    connection: Optional[Dict[str, Any]] = None
    connections: Optional[List[Dict[str, Any]]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: Optional[str] = None, **kwargs: Any) -> "OperationResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, message: str, **kwargs: Any) -> "OperationResult":
        return cls(success=False, message=message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "schema": self.schema,
            "totalPages": self.total_pages,
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "matchedCount": self.matched_count,
            "modifiedCount": self.modified_count,
            "insertedId": self.inserted_id,
            "tables": self.tables,
            "connection": self.connection,
            "connections": self.connections,
        }
        out.update(self.extra)
        return {k: v for k, v in out.items() if v is not None}
