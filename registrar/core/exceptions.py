from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """Malformed or missing input (e.g. justification required but blank)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    """Entity does not exist or belongs to another tenant."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """Illegal state transition."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


@dataclass
class UnmetCondition:
    """One blocking item of a closure checklist."""

    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class PreconditionFailure(ServiceError):
    """Closure blocked. Carries every unmet condition, not just the first one."""

    def __init__(self, message: str, failures: List[UnmetCondition]) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.failures = failures

    @property
    def detail(self) -> Dict[str, Any]:
        return {"message": self.message, "failures": [f.to_dict() for f in self.failures]}


@dataclass
class SideEffectFailure:
    """Non-fatal failure of post-commit work. Reported, never raised to the caller."""

    name: str
    reason: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "reason": self.reason, "details": self.details or {}}
