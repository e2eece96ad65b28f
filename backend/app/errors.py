"""
errors.py — AppError base class and error code registry.

Every error returned by the Trusioo API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (wrong principal kind / role).
  - Card-detection upstream failures use their own numeric taxonomy
    (app/carddetection/errors.py); they are mapped to HTTP in app/__init__.py.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        """
        Failure envelope: {"code": <http status>, "message": ..., "error": <registry code>}.
        `field` is only present when a single request field is to blame.
        """
        payload = {
            "code":    self.http_status,
            "message": self.message,
            "error":   self.code,
        }
        if self.field is not None:
            payload["field"] = self.field
        return payload

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    BAD_REQUEST                = "BAD_REQUEST"
    VALIDATION                 = "VALIDATION"

    # ── Principal / credential errors (400) ────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    ADMIN_NOT_FOUND            = "ADMIN_NOT_FOUND"
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"
    INVALID_ADMIN_CREDENTIALS  = "INVALID_ADMIN_CREDENTIALS"
    EMAIL_EXISTS               = "EMAIL_EXISTS"
    PHONE_EXISTS               = "PHONE_EXISTS"
    EMAIL_NOT_VERIFIED         = "EMAIL_NOT_VERIFIED"
    USER_INACTIVE              = "USER_INACTIVE"
    ADMIN_INACTIVE             = "ADMIN_INACTIVE"

    # ── Verification code errors (400) ─────────────────────────────────────
    CODE_NOT_FOUND             = "CODE_NOT_FOUND"
    CODE_EXPIRED               = "CODE_EXPIRED"
    CODE_ALREADY_USED          = "CODE_ALREADY_USED"
    INVALID_CODE               = "INVALID_CODE"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_NOT_FOUND            = "TOKEN_NOT_FOUND"        # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    UNAUTHORIZED               = "UNAUTHORIZED"           # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403
    INSUFFICIENT_PERMISSIONS   = "INSUFFICIENT_PERMISSIONS"  # 403

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    NOT_FOUND                  = "NOT_FOUND"

    # ── Throttling / availability ──────────────────────────────────────────
    RATE_LIMITED               = "RATE_LIMITED"           # 429
    PAYLOAD_TOO_LARGE          = "PAYLOAD_TOO_LARGE"      # 413
    SERVICE_UNAVAILABLE        = "SERVICE_UNAVAILABLE"    # 503

    # ── Card detection (status depends on numeric code) ────────────────────
    CARD_DETECTION_ERROR       = "CARD_DETECTION_ERROR"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_SERVER            = "INTERNAL_SERVER"
