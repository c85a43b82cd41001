from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base for expected errors; the status code is fixed per error kind."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None):
        super().__init__(
            status_code=self.status_code, detail=message or self.default_message
        )

    @property
    def message(self) -> str:
        return str(self.detail)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired access token"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden!"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Already exists"


class InvalidState(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current state"


class InvalidSignature(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid payment signature"


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"


class UpstreamError(AppError):
    """Cache, store, gateway, media host or mail unavailable."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Upstream service unavailable"
