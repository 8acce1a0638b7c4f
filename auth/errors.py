"""
auth/errors.py -- Exception taxonomy for the auth subsystem.

Every expected failure is an AuthError subclass carrying a machine-readable
code, a user-safe message, and the HTTP status the API layer should use.
Messages never reveal whether an account exists, is inactive, or whether a
token expired versus never existed.

  Unauthenticated      no session, or a session that failed verification
  NotAuthorized        identity unknown or inactive in this realm
  TokenInvalid         magic-link token expired, consumed, or malformed
  TwoFactorInvalid     wrong or malformed TOTP code
  TransientStoreError  backing store unavailable; safe to retry
  DeliveryFailure      verification email could not be sent
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication failed."
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class Unauthenticated(AuthError):
    code = "unauthorized"
    message = "Authentication required."
    status_code = 401


class NotAuthorized(AuthError):
    # Same wording as a generic failure: no existence disclosure.
    code = "not_authorized"
    message = "Unable to sign in."
    status_code = 403


class TokenInvalid(AuthError):
    code = "token_invalid"
    message = "The sign-in link is invalid or has expired."
    status_code = 400


class TwoFactorInvalid(AuthError):
    code = "two_factor_invalid"
    message = "Invalid verification code."
    status_code = 400


class TransientStoreError(AuthError):
    code = "service_unavailable"
    message = "The service is temporarily unavailable. Please try again."
    status_code = 503


class DeliveryFailure(AuthError):
    code = "delivery_failed"
    message = "Failed to send verification email. Please try again."
    status_code = 502
