"""Error taxonomy for the meal planning pipeline.

Every error surfaced to a caller carries a machine-readable code, a
human-readable message and a ``retryable`` flag so clients can decide whether
to offer a retry.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

AI_PARSE_FAILED = "AI_PARSE_FAILED"
AI_TIMEOUT = "AI_TIMEOUT"
AI_QUOTA_EXCEEDED = "AI_QUOTA_EXCEEDED"
AI_PLAN_INFEASIBLE = "AI_PLAN_INFEASIBLE"
AI_PLAN_FAILED = "AI_PLAN_FAILED"
VALIDATION_ERROR = "VALIDATION_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"
CANCELLED = "CANCELLED"

# Retryability is a property of the code, not of the call site
RETRYABLE_CODES = frozenset({AI_TIMEOUT, AI_QUOTA_EXCEEDED, NETWORK_ERROR})

ERROR_CODES = frozenset(
    {
        AI_PARSE_FAILED,
        AI_TIMEOUT,
        AI_QUOTA_EXCEEDED,
        AI_PLAN_INFEASIBLE,
        AI_PLAN_FAILED,
        VALIDATION_ERROR,
        NETWORK_ERROR,
        UNKNOWN_ERROR,
        CANCELLED,
    }
)


def is_retryable_code(code: str) -> bool:
    """Return True when errors with this code may succeed on a later attempt."""
    return code in RETRYABLE_CODES


class NutritionApiError(Exception):
    """Typed error raised at the pipeline boundary.

    Args:
        code: One of the ``ERROR_CODES`` constants
        message: Human-readable explanation
        retryable: Overrides the default retryability derived from ``code``
        details: Optional structured context (offending values, attempts...)
    """

    def __init__(
        self,
        code: str,
        message: str,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = is_retryable_code(code) if retryable is None else retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"NutritionApiError({self.code!r}, {self.message!r}, retryable={self.retryable})"
