"""
services/rate_limit.py — Redis-backed throttling for verification codes.

Two independent limits per (target, purpose):
  - send cool-down: one code per VERIFICATION_SEND_COOLDOWN seconds
  - failed attempts: at most VERIFICATION_MAX_FAILED_ATTEMPTS wrong codes per
    VERIFICATION_FAILED_WINDOW seconds; a successful verify resets the counter

Exceeding either raises AppError(RATE_LIMITED, 429) before the code store is
touched. Only built when REDIS_URL is set. Redis outages degrade open: the
request proceeds and a warning is logged.
"""

from __future__ import annotations

import logging

import redis

from backend.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


class CodeRateLimiter:

    def __init__(
            self,
            client: redis.Redis,
            send_cooldown: int = 60,
            max_failed_attempts: int = 5,
            failed_window: int = 900,
    ) -> None:
        self.client = client
        self.send_cooldown = send_cooldown
        self.max_failed_attempts = max_failed_attempts
        self.failed_window = failed_window

    @classmethod
    def from_config(cls, config) -> "CodeRateLimiter | None":
        url = config.get("REDIS_URL")
        if not url:
            return None
        return cls(
            client=redis.Redis.from_url(url),
            send_cooldown=int(config.get("VERIFICATION_SEND_COOLDOWN", 60)),
            max_failed_attempts=int(config.get("VERIFICATION_MAX_FAILED_ATTEMPTS", 5)),
            failed_window=int(config.get("VERIFICATION_FAILED_WINDOW", 900)),
        )

    # ── Issuance ───────────────────────────────────────────────────────────

    def acquire_send_slot(self, target: str, purpose: str) -> None:
        """Claims the cool-down slot for (target, purpose) or raises RATE_LIMITED."""
        key = _send_key(target, purpose)
        try:
            acquired = self.client.set(key, 1, nx=True, ex=self.send_cooldown)
        except redis.RedisError:
            logger.warning("rate limiter unavailable; allowing send for %s/%s", target, purpose, exc_info=True)
            return

        if not acquired:
            logger.info("verification send throttled for %s/%s", target, purpose)
            raise AppError(
                ErrorCode.RATE_LIMITED,
                f"A code was sent recently. Please wait {self.send_cooldown} seconds before requesting another.",
                429,
            )

    # ── Verification attempts ──────────────────────────────────────────────

    def ensure_attempts_left(self, target: str, purpose: str) -> None:
        key = _failed_key(target, purpose)
        try:
            raw = self.client.get(key)
        except redis.RedisError:
            logger.warning("rate limiter unavailable; allowing verify for %s/%s", target, purpose, exc_info=True)
            return

        count = int(raw) if raw else 0
        if count >= self.max_failed_attempts:
            logger.warning(
                "verification attempts exhausted for %s/%s (count=%d, limit=%d)",
                target, purpose, count, self.max_failed_attempts,
            )
            raise AppError(
                ErrorCode.RATE_LIMITED,
                "Too many invalid codes. Please try again later.",
                429,
            )

    def record_failure(self, target: str, purpose: str) -> None:
        key = _failed_key(target, purpose)
        try:
            count = self.client.incr(key)
            if count == 1:
                # First failure in this window starts the clock.
                self.client.expire(key, self.failed_window)
        except redis.RedisError:
            logger.warning("rate limiter unavailable; failure not counted for %s/%s", target, purpose, exc_info=True)

    def reset_failures(self, target: str, purpose: str) -> None:
        try:
            self.client.delete(_failed_key(target, purpose))
        except redis.RedisError:
            logger.warning("rate limiter unavailable; counter not reset for %s/%s", target, purpose, exc_info=True)


def _send_key(target: str, purpose: str) -> str:
    return f"verification:send:{purpose}:{target.lower()}"


def _failed_key(target: str, purpose: str) -> str:
    return f"verification:failed:{purpose}:{target.lower()}"
