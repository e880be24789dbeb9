"""Service-level exceptions and their HTTP mapping."""

from fastapi import status


class ServiceError(Exception):
    """Base exception for every expected failure raised by the services.

    Each subclass carries the HTTP status and machine-readable code that the
    top-level handler renders as ``{"detail": message, "code": code}``.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


# 400
class InvalidInput(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    message = "Validation failed"


class AlreadyVerified(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "already_verified"
    message = "Email already verified"


class InvalidVerificationToken(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_token"
    message = "Invalid verification token"


class InvalidOrExpiredToken(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_or_expired_token"
    message = "Invalid or expired token"


# 409 (the signup contract answers duplicate email/username with 400)
class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    message = "Duplicate entry"


class EmailInUse(Conflict):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "email_in_use"
    message = "Email already in use"


class UsernameInUse(Conflict):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "username_in_use"
    message = "Username already in use"


# 401
class Unauthenticated(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    message = "Not authenticated"


class InvalidCredentials(Unauthenticated):
    code = "invalid_credentials"
    message = "Invalid email or password"


class EmailNotVerified(Unauthenticated):
    code = "email_not_verified"
    message = "Email not verified"


class InvalidToken(Unauthenticated):
    code = "invalid_token"
    message = "Invalid token"


class ExpiredToken(Unauthenticated):
    code = "token_expired"
    message = "Token expired"


# 403
class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    message = "Insufficient permissions"


# 404
class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Resource not found"


class UserNotFound(NotFound):
    code = "user_not_found"
    message = "User not found"


# 500
class SigningError(ServiceError):
    code = "signing_error"
    message = "Token signing is misconfigured"


class MailDeliveryError(ServiceError):
    code = "mail_delivery_failed"
    message = "Failed to send email"
