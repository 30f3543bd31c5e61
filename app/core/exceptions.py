from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind = "error"
    retryable = False

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_detail(self) -> Dict[str, Any]:
        """Payload for HTTPException.detail: stable kind tag plus readable message."""
        return {"kind": self.kind, "message": self.message}


class ConflictError(ServiceError):
    """Uniqueness or invariant violation. Retry after re-fetching current state."""

    kind = "conflict"
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class ValidationError(ServiceError):
    """Malformed payload, unknown slot id, out-of-range duration."""

    kind = "validation"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    kind = "not_found"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class StateError(ServiceError):
    """Action not valid for the record's current status."""

    kind = "state"

    def __init__(self, message: str, current_status: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)
        self.current_status = current_status

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["current_status"] = self.current_status
        return detail


class ForbiddenError(ServiceError):
    kind = "forbidden"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)
