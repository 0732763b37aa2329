from dataclasses import dataclass
from typing import ClassVar, List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str | None = None
    errors: List[dict] | None = None

    status_code: ClassVar[int] = 400
    problem: ClassVar[str] = "domain-error"

    def __str__(self) -> str:
        return self.detail


@dataclass
class ValidationError(DomainError):
    title: str = "Validation Error"

    problem: ClassVar[str] = "validation-error"


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"

    status_code: ClassVar[int] = 404
    problem: ClassVar[str] = "not-found"


@dataclass
class ConflictError(DomainError):
    title: str = "Conflict"

    status_code: ClassVar[int] = 409
    problem: ClassVar[str] = "conflict"


@dataclass
class ConfigurationError(DomainError):
    """A business setting is missing or malformed; pricing fails closed."""

    title: str = "Configuration Error"

    status_code: ClassVar[int] = 500
    problem: ClassVar[str] = "configuration-error"
