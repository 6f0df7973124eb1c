"""Error taxonomy and result types shared by the progression services.

Pure calculators never raise: they return zeroed results carrying an error
string. Orchestrators return a ``ServiceResult`` for sub-step failures and
raise ``NotFound`` / ``UpstreamFailure`` only when the initial data fetch
cannot proceed. The HTTP layer maps ``status_code`` straight to a response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class ProgressionError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(ProgressionError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource", details: Optional[dict[str, Any]] = None):
        super().__init__(f"{resource} not found", details)
        self.resource = resource


class ValidationFailure(ProgressionError):
    code = "VALIDATION_ERROR"
    status_code = 400


class UpstreamFailure(ProgressionError):
    """A data-store error, surfaced with the original message kept verbatim."""

    code = "DATABASE_ERROR"
    status_code = 500

    @classmethod
    def wrap(cls, exc: BaseException, operation: str) -> "UpstreamFailure":
        return cls(
            f"Data store operation failed: {operation}",
            {"operation": operation, "original_error": str(exc), "type": type(exc).__name__},
        )


class ComputationDegraded(ProgressionError):
    code = "COMPUTATION_DEGRADED"
    status_code = 500


class ConcurrentUpdate(ProgressionError):
    """Raised when a progress write loses a compare-and-swap on ``version``."""

    code = "CONCURRENT_UPDATE"
    status_code = 409


@dataclass
class ServiceResult:
    """Explicit success/failure envelope returned by orchestration entry points."""

    success: bool
    data: Any = None
    error: Optional[ProgressionError] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ProgressionError) -> "ServiceResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
            return {"success": True, "data": data}
        payload = {"success": False}
        if self.error is not None:
            payload.update(self.error.to_dict())
        return payload


@dataclass
class AchievementOutcome:
    """Newly unlocked achievements, or the failure that prevented awarding them."""

    unlocked: list = field(default_factory=list)
    xp_awarded: int = 0
    error: Optional[ProgressionError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


ERROR_MESSAGES: dict[str, dict[str, str]] = {
    "pt": {
        "INTERNAL_ERROR": "Erro interno do servidor",
        "VALIDATION_ERROR": "Dados inválidos",
        "NOT_FOUND": "Recurso não encontrado",
        "DATABASE_ERROR": "Erro no banco de dados",
        "COMPUTATION_DEGRADED": "Cálculo parcial, valores padrão aplicados",
        "CONCURRENT_UPDATE": "Progresso alterado por outra requisição, tente novamente",
    },
    "en": {
        "INTERNAL_ERROR": "Internal server error",
        "VALIDATION_ERROR": "Invalid data",
        "NOT_FOUND": "Resource not found",
        "DATABASE_ERROR": "Database error",
        "COMPUTATION_DEGRADED": "Partial computation, defaults applied",
        "CONCURRENT_UPDATE": "Progress was changed by another request, please retry",
    },
    "es": {
        "INTERNAL_ERROR": "Error interno del servidor",
        "VALIDATION_ERROR": "Datos inválidos",
        "NOT_FOUND": "Recurso no encontrado",
        "DATABASE_ERROR": "Error de base de datos",
        "COMPUTATION_DEGRADED": "Cálculo parcial, valores predeterminados aplicados",
        "CONCURRENT_UPDATE": "El progreso fue modificado por otra solicitud, inténtalo de nuevo",
    },
}


def localized_message(code: str, lang: str) -> str:
    messages = ERROR_MESSAGES.get(lang) or ERROR_MESSAGES["pt"]
    return messages.get(code) or messages["INTERNAL_ERROR"]
