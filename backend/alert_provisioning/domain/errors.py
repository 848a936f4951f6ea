from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, List


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PROVENANCE_CONFLICT = "provenance_conflict"
    STORE = "store"


@dataclass
class DomainError(Exception):
    """Base of the closed error set returned by the alert rule service.

    Callers branch on ``kind`` rather than on the concrete class.
    """

    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None
    kind: ClassVar[ErrorKind]

    def __str__(self) -> str:
        return self.detail


@dataclass
class ValidationError(DomainError):
    title: str = "Invalid Alert Rule"
    type: str = "https://example.com/problems/alert-rule-validation"
    kind: ClassVar[ErrorKind] = ErrorKind.VALIDATION


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = "https://example.com/problems/not-found"
    kind: ClassVar[ErrorKind] = ErrorKind.NOT_FOUND


@dataclass
class ProvenanceConflictError(DomainError):
    title: str = "Provenance Conflict"
    type: str = "https://example.com/problems/provenance-conflict"
    current: str = ""
    requested: str = ""
    kind: ClassVar[ErrorKind] = ErrorKind.PROVENANCE_CONFLICT


@dataclass
class StoreError(DomainError):
    title: str = "Operation Failed"
    type: str = "https://example.com/problems/store-error"
    operation: str | None = field(default=None)
    kind: ClassVar[ErrorKind] = ErrorKind.STORE
