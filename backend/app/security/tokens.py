"""
security/tokens.py — signed access / refresh token codec (PyJWT, HS256).

Two token classes share one claim shape:
    user_id, email, role, user_type ("user" | "admin"),
    iat, nbf (= iat), exp, iss ("trusioo_api"), jti

Access and refresh tokens are signed with DIFFERENT secrets, so an access
token never decodes as a refresh token and vice versa.

Decoding raises AppError(TOKEN_INVALID, 401) for every failure. Expiry and
malformation are told apart in the log only; callers see one error.

The issuer claim is written but not enforced on decode; a mismatch is logged.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from backend.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

USER_TYPE_USER  = "user"
USER_TYPE_ADMIN = "admin"


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    role: str
    user_type: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime
    issuer: str


class TokenCodec:
    """Stateless encoder/decoder. Built once per app from config."""

    def __init__(
            self,
            access_secret: str,
            refresh_secret: str,
            access_ttl: int,
            refresh_ttl: int,
            issuer: str = "trusioo_api",
            algorithm: str = "HS256",
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("Both access and refresh signing secrets are required.")
        self.access_secret  = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl     = access_ttl
        self.refresh_ttl    = refresh_ttl
        self.issuer         = issuer
        self.algorithm      = algorithm

    @classmethod
    def from_config(cls, config) -> "TokenCodec":
        return cls(
            access_secret=config["JWT_ACCESS_SECRET"],
            refresh_secret=config["JWT_REFRESH_SECRET"],
            access_ttl=int(config["JWT_ACCESS_EXPIRE"]),
            refresh_ttl=int(config["JWT_REFRESH_EXPIRE"]),
            issuer=config.get("JWT_ISSUER", "trusioo_api"),
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
        )

    # ── Encoding ───────────────────────────────────────────────────────────

    def encode_access(self, user_id: int, email: str, role: str, user_type: str) -> str:
        return self._encode(user_id, email, role, user_type, self.access_secret, self.access_ttl)

    def encode_refresh(self, user_id: int, email: str, role: str, user_type: str) -> str:
        return self._encode(user_id, email, role, user_type, self.refresh_secret, self.refresh_ttl)

    # ── Decoding ───────────────────────────────────────────────────────────

    def decode_access(self, token: str) -> TokenClaims:
        return self._decode(token, self.access_secret, "access")

    def decode_refresh(self, token: str) -> TokenClaims:
        return self._decode(token, self.refresh_secret, "refresh")

    # ── Private helpers ────────────────────────────────────────────────────

    def _encode(
            self,
            user_id: int,
            email: str,
            role: str,
            user_type: str,
            secret: str,
            ttl: int,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "email": email,
            "role": role,
            "user_type": user_type,
            "iat": now,
            "nbf": now,
            "exp": now + timedelta(seconds=ttl),
            "iss": self.issuer,
            # Two tokens issued for the same principal in the same second still differ.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def _decode(self, token: str, secret: str, token_class: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "nbf"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("%s token rejected: expired", token_class)
            raise _invalid(token_class)
        except jwt.InvalidTokenError as exc:
            logger.info("%s token rejected: %s", token_class, exc)
            raise _invalid(token_class)

        try:
            user_id = int(payload["user_id"])
            email = str(payload["email"])
            role = str(payload["role"])
            user_type = str(payload["user_type"])
        except (KeyError, TypeError, ValueError):
            logger.info("%s token rejected: malformed claims", token_class)
            raise _invalid(token_class)

        if user_type not in (USER_TYPE_USER, USER_TYPE_ADMIN):
            logger.info("%s token rejected: unknown user_type %r", token_class, user_type)
            raise _invalid(token_class)

        issuer = payload.get("iss", "")
        if issuer != self.issuer:
            logger.warning("%s token carries unexpected issuer %r", token_class, issuer)

        return TokenClaims(
            user_id=user_id,
            email=email,
            role=role,
            user_type=user_type,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            not_before=datetime.fromtimestamp(payload["nbf"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            issuer=issuer,
        )


def _invalid(token_class: str) -> AppError:
    return AppError(
        ErrorCode.TOKEN_INVALID,
        f"The {token_class} token is invalid or has expired.",
        401,
    )
