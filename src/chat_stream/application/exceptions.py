from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class AuthenticationError(AppError):
    """No valid session for an action that needs one."""


class ExternalServiceError(AppError):
    """Backend unreachable, misconfigured or answering with a failure."""

    def __init__(self, detail: str = "", *, status: int | None = None, retryable: bool = True) -> None:
        super().__init__(detail)
        self.status = status
        self.retryable = retryable


class ProtocolError(AppError):
    """Malformed or out-of-sequence stream frame."""


class CancellationError(AppError):
    """User-initiated abort. Not a failure."""
