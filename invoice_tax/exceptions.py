"""
Invoice tax exceptions.

Structural errors are raised before any network call is made; engine
errors carry whatever payload the tax engine sent back so it can be
recorded in the audit trail.
"""

from __future__ import annotations

from typing import Any, Optional


class TaxComputationError(Exception):
    """
    Base error for tax computation.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional context about the failure
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or "TAX_COMPUTATION_ERROR"
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class StructuralError(TaxComputationError):
    """Malformed taxable batch (adjustment/reference mismatch, over-return)."""

    def __init__(
        self, message: str, context: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(message, "STRUCTURAL_ERROR", context=context)


class TaxEngineError(TaxComputationError):
    """The external tax engine rejected the call or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, "TAX_ENGINE_ERROR", context=context)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        data["response_body"] = self.response_body
        return data


class TaxEngineNotConfiguredError(TaxEngineError):
    """The client has no engine URL configured."""

    def __init__(self) -> None:
        super().__init__(
            "Tax engine client is not configured: url is required"
        )
        self.error_code = "TAX_ENGINE_NOT_CONFIGURED"


class AuditStoreError(TaxComputationError):
    """Reading or writing the audit trail failed."""

    def __init__(
        self, message: str, context: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(message, "AUDIT_STORE_ERROR", context=context)
