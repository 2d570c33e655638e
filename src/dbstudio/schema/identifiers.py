from __future__ import annotations

from dataclasses import dataclass
import re

from dbstudio.exceptions.errors import ValidationError


@dataclass(frozen=True)
class IdentifierValidator:
    """Allow-list check applied before a name is spliced into query text.

    Values never go through here; they are always bound as parameters.
    """

    pattern: "re.Pattern[str]"
    label: str

    def is_valid(self, name: object) -> bool:
        return isinstance(name, str) and bool(self.pattern.fullmatch(name))

    def require(self, name: object, what: str = "identifier") -> str:
        if not self.is_valid(name):
            shown = name if isinstance(name, str) and name else "(empty)"
            raise ValidationError(f"Invalid {what}: {shown}")
        return name  # type: ignore[return-value]


# Tables, columns and schemas.
RELATIONAL = IdentifierValidator(re.compile(r"[A-Za-z_][A-Za-z0-9_]*"), "relational")

# Collection names and dotted document paths (filters, $unset).
FIELD_PATH = IdentifierValidator(re.compile(r"[A-Za-z0-9_.]+"), "field-path")


def validate(name: object) -> bool:
    return RELATIONAL.is_valid(name)
