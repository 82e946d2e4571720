"""
auth/errors.py -- Failure taxonomy for the credential/session core.

Every flow-level failure leaves AuthService as one of these classes. Each
carries a machine-readable code, the HTTP status the API layer should use,
and a caller-safe message. api/main.py turns them into the standard error
envelope; nothing here knows about HTTP beyond the status number.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    status_code = 400
    message = "Request could not be processed."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationFailure(AuthError):
    code = "validation_error"
    status_code = 400
    message = "Request validation failed."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    message = "Resource not found."


class InvalidCredentials(AuthError):
    # Unknown email and wrong password share this exact message [E1].
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."


class InvalidOrExpiredOtp(AuthError):
    code = "invalid_otp"
    status_code = 400
    message = "Invalid or expired OTP."


class Conflict(AuthError):
    code = "conflict"
    status_code = 409
    message = "Email or username already taken."


class Unauthorized(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Authentication required."


class InvalidToken(Unauthorized):
    code = "invalid_token"
    message = "Invalid or expired token."


class Revoked(Unauthorized):
    code = "token_revoked"
    message = "Token has been revoked."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    message = "Insufficient permissions."


class InternalFailure(AuthError):
    code = "internal_error"
    status_code = 500
    message = "An unexpected error occurred."
