"""Domain errors raised by the services and translated at the request boundary."""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class AuthError(AppError):
    status_code = 401
    default_message = "Invalid email or password"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Unauthorized"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class ExpiredError(AppError):
    # Same wording as a wrong code so callers can't tell the two apart
    status_code = 400
    default_message = "OTP invalid or expired"


class UpstreamError(AppError):
    status_code = 502
    default_message = "Upstream service unavailable"
