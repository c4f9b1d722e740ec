"""
=============================================================================
ARENA - Taxonomía de Errores del Dominio
=============================================================================
Errores tipados que el núcleo entrega a los adaptadores de transporte.
El núcleo NUNCA formatea textos para el usuario final: cada error lleva un
código estable y detalles estructurados; el adaptador traduce.
=============================================================================
"""

from typing import Any, Dict, Optional


class ArenaError(Exception):
    """Error base de dominio."""

    code = "ARENA_ERROR"
    http_status = 400

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ArenaError):
    """Entrada mal formada o fuera de rango (apuesta, elección, jugada)."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ArenaError):
    """Usuario o partida inexistente."""
    code = "NOT_FOUND"
    http_status = 404


class ForbiddenError(ArenaError):
    """El usuario no es participante legítimo de la partida."""
    code = "FORBIDDEN"
    http_status = 403


class InvalidStateError(ArenaError):
    """La partida está en un estado que no permite la operación."""
    code = "INVALID_STATE"
    http_status = 409


class InsufficientFundsError(ArenaError):
    """Saldo insuficiente para el débito solicitado."""
    code = "INSUFFICIENT_FUNDS"
    http_status = 402


class ExpiredError(ArenaError):
    """La ventana para unirse a la partida expiró."""
    code = "EXPIRED"
    http_status = 410


class LimitExceededError(ArenaError):
    """El usuario alcanzó el máximo de partidas simultáneas."""
    code = "LIMIT_EXCEEDED"
    http_status = 429


class InternalError(ArenaError):
    """Falla inesperada de persistencia. Nunca expone detalles internos."""
    code = "INTERNAL_ERROR"
    http_status = 500
