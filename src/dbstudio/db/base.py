from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from dbstudio.exceptions.errors import ConnectionFailedError, UnsupportedOperationError
from dbstudio.logging.logger import get_logger, redact
from dbstudio.query.filters import FilterPredicate
from dbstudio.query.pagination import PageRequest, PageWindow
from dbstudio.schema.models import (
    ColumnDefinition,
    ConnectionDescriptor,
    EngineKind,
    TableInfo,
    TableSchema,
)

log = get_logger("db.base")


class TlsPolicy(str, Enum):
    DISABLED = "disabled"
    UNVERIFIED = "unverified"
    VERIFY_CA = "verify_ca"
    VERIFY_IDENTITY = "verify_identity"


def resolve_tls(ssl_mode: Optional[str], ssl_flag: Optional[str], descriptor_ssl: bool = False) -> Optional[TlsPolicy]:
    """Turn the TLS keys pulled out of the extra params into one policy.

    ``None`` means nothing was asked for and the driver default applies.
    An explicit mode wins over the ``ssl=true`` flag and the descriptor flag.
    """
    policy: Optional[TlsPolicy] = TlsPolicy.UNVERIFIED if descriptor_ssl else None
    if ssl_mode:
        mode = ssl_mode.strip().upper().replace("-", "_")
        if mode in ("DISABLED", "DISABLE", "FALSE", "0", "OFF"):
            return TlsPolicy.DISABLED
        if mode == "VERIFY_CA":
            return TlsPolicy.VERIFY_CA
        if mode in ("VERIFY_IDENTITY", "VERIFY_FULL"):
            return TlsPolicy.VERIFY_IDENTITY
        return TlsPolicy.UNVERIFIED
    if ssl_flag and ssl_flag.strip().lower() == "true":
        return TlsPolicy.UNVERIFIED
    return policy


@dataclass(frozen=True)
class PageResult:
    records: List[Dict[str, Any]]
    window: PageWindow
    schema: Optional[TableSchema] = None


@dataclass(frozen=True)
class MutationOutcome:
    matched: int
    modified: int
    inserted_id: Optional[str] = None


@dataclass(frozen=True)
class RawResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: Optional[int] = None


def scrub(message: str, descriptor: ConnectionDescriptor) -> str:
    """Remove the descriptor's secrets from a driver message."""
    out = message or ""
    for secret in (descriptor.password, descriptor.filepath):
        if secret:
            out = out.replace(secret, "***")
    return redact(out)


class EngineAdapter(ABC):
    """One backend family behind a uniform CRUD surface.

    Every operation takes an open handle obtained from :meth:`connect`, which
    guarantees release on all exit paths. Adapters raise ``DbStudioError``
    subclasses or let driver exceptions propagate; turning them into results
    is the facade's job.
    """

    kind: EngineKind

    def __init__(self, connect_timeout_s: int = 10):
        self.connect_timeout_s = connect_timeout_s

    # -- connection lifecycle ---------------------------------------------

    @abstractmethod
    def _open(self, descriptor: ConnectionDescriptor) -> Any:
        ...

    @abstractmethod
    def _close(self, handle: Any) -> None:
        ...

    @contextmanager
    def connect(self, descriptor: ConnectionDescriptor) -> Iterator[Any]:
        try:
            handle = self._open(descriptor)
        except ConnectionFailedError:
            raise
        except Exception as e:
            log.warning(
                "Connection failed",
                extra={"engine": self.kind.value, "host": descriptor.host, "error": scrub(str(e), descriptor)},
            )
            raise ConnectionFailedError(
                f"Failed to connect to {self.kind.value}: {scrub(str(e), descriptor)}"
            ) from None
        try:
            yield handle
        finally:
            try:
                self._close(handle)
            except Exception:
                log.exception("Error closing %s connection", self.kind.value)

    def ping(self, handle: Any) -> None:
        """Opening the handle already proved reachability; engines may do more."""

    # -- operations --------------------------------------------------------

    @abstractmethod
    def translate_filter(self, predicates: Sequence[FilterPredicate]) -> Any:
        ...

    @abstractmethod
    def list_tables(self, handle: Any, descriptor: ConnectionDescriptor, schema: Optional[str] = None) -> List[TableInfo]:
        ...

    @abstractmethod
    def describe(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> TableSchema:
        ...

    @abstractmethod
    def fetch_page(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        request: PageRequest,
        predicates: Sequence[FilterPredicate],
        schema: Optional[str] = None,
    ) -> PageResult:
        ...

    @abstractmethod
    def insert(
        self, handle: Any, descriptor: ConnectionDescriptor, table: str, values: Mapping[str, Any], schema: Optional[str] = None
    ) -> MutationOutcome:
        ...

    @abstractmethod
    def update(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        values: Mapping[str, Any],
        schema: Optional[str] = None,
    ) -> MutationOutcome:
        ...

    @abstractmethod
    def delete(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        key_column: Optional[str],
        key_value: Any,
        schema: Optional[str] = None,
    ) -> int:
        ...

    @abstractmethod
    def raw_query(self, handle: Any, descriptor: ConnectionDescriptor, text: str) -> RawResult:
        ...

    @abstractmethod
    def create_table(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        columns: Sequence[ColumnDefinition],
        schema: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def drop_table(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def truncate_table(self, handle: Any, descriptor: ConnectionDescriptor, table: str, schema: Optional[str] = None) -> None:
        ...

    def add_columns(
        self,
        handle: Any,
        descriptor: ConnectionDescriptor,
        table: str,
        columns: Sequence[ColumnDefinition],
        schema: Optional[str] = None,
    ) -> None:
        raise UnsupportedOperationError(f"Adding columns is not supported for {self.kind.value}.")

    def unset_field(self, handle: Any, descriptor: ConnectionDescriptor, table: str, doc_id: str, field_path: str) -> int:
        raise UnsupportedOperationError(f"Removing a field is not supported for {self.kind.value}.")
