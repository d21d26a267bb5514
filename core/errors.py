# Error taxonomy for contract and escrow operations
# Raised by the services and surfaced by FastAPI as-is.

from fastapi import HTTPException, status


class MarketplaceError(HTTPException):
    """Base error: carries a stable code and a human-readable reason."""

    code = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail=self.to_dict(),
        )

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}

    def __str__(self) -> str:
        return self.message


class ValidationError(MarketplaceError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(MarketplaceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(MarketplaceError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(MarketplaceError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class Forbidden(MarketplaceError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class PreconditionFailed(Forbidden):
    code = "precondition_failed"
