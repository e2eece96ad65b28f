"""
services/context.py — collaborators the auth services need, built once per app.

Replaces reading current_app.config from inside services: the factory builds
one AuthContext from config and routes pass it down as a plain argument.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend.app.security.tokens import TokenCodec
from backend.app.services.ipinfo import IPInfoClient
from backend.app.services.rate_limit import CodeRateLimiter


@dataclass(frozen=True)
class AuthContext:
    codec: TokenCodec
    code_ttl: int = 600
    bcrypt_rounds: int = 12
    rate_limiter: CodeRateLimiter | None = None
    ipinfo: IPInfoClient | None = None

    @classmethod
    def from_config(cls, config) -> "AuthContext":
        return cls(
            codec=TokenCodec.from_config(config),
            code_ttl=int(config.get("VERIFICATION_CODE_TTL", 600)),
            bcrypt_rounds=int(config.get("BCRYPT_LOG_ROUNDS", 12)),
            rate_limiter=CodeRateLimiter.from_config(config),
            ipinfo=IPInfoClient.from_config(config),
        )
