"""
Error taxonomy for the order engine.

Guard errors (`PreconditionFailed`, `InvalidArgument`, `PermissionDenied`,
`NotFound`) abort an operation before any side effect and surface as HTTP
errors. `Conflict` and `ExternalProcessorError` are expected outcomes of a
transition and render to the `{error: {message, target}}` envelope.
"""
from typing import Any, Dict, Optional


class OrderEngineError(Exception):
    """Base exception for all order engine errors."""

    http_status = 500
    code = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_envelope(self) -> Dict[str, Any]:
        return {"error": {"message": self.message}}


class PreconditionFailed(OrderEngineError):
    """The caller is not authenticated."""

    http_status = 401
    code = "failed-precondition"


class InvalidArgument(OrderEngineError):
    http_status = 400
    code = "invalid-argument"


class PermissionDenied(OrderEngineError):
    """The actor does not own the target provider or order."""

    http_status = 403
    code = "permission-denied"


class NotFound(OrderEngineError):
    http_status = 404
    code = "not-found"


class Conflict(OrderEngineError):
    """
    The requested transition is illegal from the current state.

    Raised before any write, which is what makes a duplicate call a no-op.
    """

    http_status = 409
    code = "conflict"

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target

    def to_envelope(self) -> Dict[str, Any]:
        return {"error": {"message": self.message, "target": self.target}}


class TransactionAborted(Conflict):
    """The store kept aborting the ledger transaction through the last attempt."""

    code = "aborted"


class ExternalProcessorError(OrderEngineError):
    """Wraps a classified payment processor error."""

    http_status = 502
    code = "external-processor"

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        processor_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.target = target
        self.processor_code = processor_code

    def to_envelope(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"message": self.message, "target": self.target}
        if self.processor_code:
            error["code"] = self.processor_code
        return {"error": error}
