"""Error hierarchy for the game engine.

Validation and lookup failures are reported to the acting player only and
never leave a session half-mutated. External service failures are caught by
the engine. An InvariantViolation is a defect and is never caught.
"""

from typing import Any, Dict, Optional

__all__ = [
    "GameError",
    "ValidationError",
    "NotFoundError",
    "ExternalServiceError",
    "InvariantViolation",
]


class GameError(Exception):
    """Base exception for all engine errors.

    Attributes:
        code: Machine-readable error code sent to clients
        message: Human-readable error description
        context: Additional context for logs
    """
    code: str = "GAME_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
        }


class ValidationError(GameError):
    """Command is illegal for the current phase, role or preconditions."""
    code: str = "VALIDATION_ERROR"


class NotFoundError(GameError):
    """Room or claim does not exist."""
    code: str = "NOT_FOUND"


class ExternalServiceError(GameError):
    """Delegated verifier or relayer is unavailable or rejected the call."""
    code: str = "EXTERNAL_SERVICE_ERROR"


class InvariantViolation(GameError):
    """Session state broke an invariant that validation should guarantee."""
    code: str = "INVARIANT_VIOLATION"
