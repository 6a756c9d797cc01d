from dataclasses import dataclass, field
from typing import Any, List


@dataclass
class ApplicationError(Exception):
    message: str
    type: str = "application_error"
    status_code: int = 500
    details: List[str] | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def as_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {"type": self.type, "message": self.message}
        if self.details is not None:
            error["details"] = list(self.details)
        return {"error": error}


@dataclass
class FeatureFlagError(ApplicationError):
    type: str = "feature_flag_error"
    status_code: int = 400


@dataclass
class NotFoundError(ApplicationError):
    type: str = "not_found"
    status_code: int = 404


class FeatureFlagNotFoundError(NotFoundError):
    def __init__(self, flag_id: object) -> None:
        super().__init__(f"Feature flag '{flag_id}' not found")


@dataclass
class ValidationError(ApplicationError):
    type: str = "validation_error"
    status_code: int = 422
    details: List[str] | None = field(default_factory=list)

    @classmethod
    def from_messages(cls, messages: list[str] | str) -> "ValidationError":
        details = list(messages) if isinstance(messages, (list, tuple)) else [str(messages)]
        return cls(", ".join(details), details=details)


@dataclass
class ArgumentError(ApplicationError):
    type: str = "argument_error"
    status_code: int = 400


def error_payload(type_: str, message: str, details: list[str] | None = None) -> dict[str, Any]:
    """Envelope for errors that are not ApplicationError instances (framework exceptions)."""
    error: dict[str, Any] = {"type": type_, "message": message}
    if details is not None:
        error["details"] = details
    return {"error": error}
