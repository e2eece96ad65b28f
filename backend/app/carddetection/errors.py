"""
carddetection/errors.py — numeric error taxonomy for the upstream client.

Codes are stable and appear in API responses:

  1001 INVALID_CONFIG       host / app id / app secret missing
  1002 INVALID_REQUEST      request failed local validation
  1003 ENCRYPTION_FAILED
  1004 DECRYPTION_FAILED
  1005 SIGNATURE_FAILED
  1006 API_REQUEST          transport-level failure
  1007 API_RESPONSE         unparseable body or non-200 upstream code
  1008 TIMEOUT
  1009 UNSUPPORTED_REGION
  1010 INVALID_CARD_FORMAT
"""

from __future__ import annotations


class CardDetectionErrorCode:
    INVALID_CONFIG      = 1001
    INVALID_REQUEST     = 1002
    ENCRYPTION_FAILED   = 1003
    DECRYPTION_FAILED   = 1004
    SIGNATURE_FAILED    = 1005
    API_REQUEST         = 1006
    API_RESPONSE        = 1007
    TIMEOUT             = 1008
    UNSUPPORTED_REGION  = 1009
    INVALID_CARD_FORMAT = 1010


class CardDetectionError(Exception):

    def __init__(self, code: int, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.code    = code
        self.message = message
        self.cause   = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"CardDetection Error {self.code}: {self.message} (caused by: {self.cause})"
        return f"CardDetection Error {self.code}: {self.message}"

    def __repr__(self) -> str:
        return f"CardDetectionError(code={self.code}, message={self.message!r})"


def wrap_error(cause: BaseException, code: int, message: str) -> CardDetectionError:
    return CardDetectionError(code, message, cause)


def is_card_detection_error(err: BaseException | None) -> bool:
    return isinstance(err, CardDetectionError)


def get_error_code(err: BaseException | None) -> int:
    """Numeric code of a CardDetectionError, 0 for anything else."""
    if isinstance(err, CardDetectionError):
        return err.code
    return 0


# ── Predefined errors ──────────────────────────────────────────────────────
# Factories rather than shared instances: exceptions carry tracebacks.

def missing_host() -> CardDetectionError:
    return CardDetectionError(CardDetectionErrorCode.INVALID_CONFIG, "missing host configuration")


def missing_app_id() -> CardDetectionError:
    return CardDetectionError(CardDetectionErrorCode.INVALID_CONFIG, "missing app ID configuration")


def missing_app_secret() -> CardDetectionError:
    return CardDetectionError(CardDetectionErrorCode.INVALID_CONFIG, "missing app secret configuration")


def invalid_product_mark() -> CardDetectionError:
    return CardDetectionError(CardDetectionErrorCode.INVALID_REQUEST, "invalid product mark")


def unsupported_region() -> CardDetectionError:
    return CardDetectionError(CardDetectionErrorCode.UNSUPPORTED_REGION, "unsupported region for this product")


def invalid_request(message: str) -> CardDetectionError:
    return CardDetectionError(CardDetectionErrorCode.INVALID_REQUEST, message)
