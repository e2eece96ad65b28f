"""
Unit tests for verification_service with a mocked session and rate limiter.

Expiry and one-time use are enforced by the conditional UPDATE itself and
are exercised against a real database in integration/test_verification.py.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.models.verification import Verification
from backend.app.services import verification_service


def _session(rowcount: int = 1, user=None) -> MagicMock:
    session = MagicMock()
    session.execute.return_value.rowcount = rowcount
    session.execute.return_value.scalar_one_or_none.return_value = user
    return session


class TestIssueCode:

    def test_code_is_six_digits_and_expires_after_ttl(self):
        session = _session()

        row = verification_service.issue_code("a@example.com", "user_login", session, ttl=600)

        assert isinstance(row, Verification)
        assert len(row.code) == 6 and row.code.isdigit()
        assert row.is_used is False
        assert (row.expires_at - row.sent_at).total_seconds() == 600
        session.add.assert_called_once_with(row)
        session.flush.assert_called_once()

    def test_codes_are_not_constant(self):
        codes = {
            verification_service.issue_code("a@example.com", "user_login", _session()).code
            for _ in range(20)
        }
        assert len(codes) > 1

    def test_unknown_purpose_is_rejected(self):
        session = _session()

        with pytest.raises(AppError) as exc_info:
            verification_service.issue_code("a@example.com", "password_hint", session)

        assert exc_info.value.code == ErrorCode.INVALID_FIELD
        assert exc_info.value.field == "type"
        session.add.assert_not_called()

    def test_cooldown_blocks_before_anything_is_written(self):
        session = _session()
        limiter = MagicMock()
        limiter.acquire_send_slot.side_effect = AppError(ErrorCode.RATE_LIMITED, "wait", 429)

        with pytest.raises(AppError):
            verification_service.issue_code("a@example.com", "user_login", session, rate_limiter=limiter)

        session.add.assert_not_called()


class TestVerifyCode:

    def test_consumed_when_update_touches_one_row(self):
        assert verification_service.verify_code("a@example.com", "user_login", "123456", _session(1)) is True

    def test_miss_when_update_touches_nothing(self):
        assert verification_service.verify_code("a@example.com", "user_login", "123456", _session(0)) is False

    def test_success_resets_failure_counter(self):
        limiter = MagicMock()

        verification_service.verify_code("a@example.com", "user_login", "123456", _session(1), rate_limiter=limiter)

        limiter.ensure_attempts_left.assert_called_once_with("a@example.com", "user_login")
        limiter.reset_failures.assert_called_once_with("a@example.com", "user_login")
        limiter.record_failure.assert_not_called()

    def test_miss_records_failure(self):
        limiter = MagicMock()

        verification_service.verify_code("a@example.com", "user_login", "123456", _session(0), rate_limiter=limiter)

        limiter.record_failure.assert_called_once_with("a@example.com", "user_login")
        limiter.reset_failures.assert_not_called()

    def test_exhausted_attempts_skip_the_update(self):
        session = _session(1)
        limiter = MagicMock()
        limiter.ensure_attempts_left.side_effect = AppError(ErrorCode.RATE_LIMITED, "later", 429)

        with pytest.raises(AppError):
            verification_service.verify_code("a@example.com", "user_login", "123456", session, rate_limiter=limiter)

        session.execute.assert_not_called()


def test_sweep_expired_returns_rowcount():
    assert verification_service.sweep_expired(_session(rowcount=3)) == 3


class TestSendAndConfirm:

    def test_register_send_requires_existing_user(self):
        with pytest.raises(AppError) as exc_info:
            verification_service.send_verification("ghost@example.com", "register", _session(user=None))

        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND
        assert exc_info.value.field == "target"

    def test_register_send_links_user(self):
        session = _session(user=SimpleNamespace(id=5))

        result = verification_service.send_verification("a@example.com", "register", session, ttl=300)

        assert result["expires_in"] == 300
        row = session.add.call_args.args[0]
        assert row.user_id == 5
        assert row.type == "register"

    def test_confirm_with_wrong_code_is_invalid_code(self):
        with pytest.raises(AppError) as exc_info:
            verification_service.confirm_verification("a@example.com", "forgot_password", "000000", _session(0))

        assert exc_info.value.code == ErrorCode.INVALID_CODE
        assert exc_info.value.field == "code"

    def test_confirm_register_activates_user(self):
        user = SimpleNamespace(id=5, status="inactive", email_verified=False)

        verification_service.confirm_verification("a@example.com", "register", "123456", _session(1, user=user))

        assert user.status == "active"
        assert user.email_verified is True


@pytest.mark.parametrize("purpose", ["user_login", "admin_login"])
def test_login_purposes_are_not_public(purpose):
    session = _session(1)

    for call in (
        lambda: verification_service.send_verification("a@example.com", purpose, session),
        lambda: verification_service.confirm_verification("a@example.com", purpose, "123456", session),
    ):
        with pytest.raises(AppError) as exc_info:
            call()
        assert exc_info.value.code == ErrorCode.INVALID_FIELD
        assert exc_info.value.field == "type"

    session.add.assert_not_called()
    session.execute.assert_not_called()


def test_login_purposes_still_issue_internally():
    session = _session()

    row = verification_service.issue_code("a@example.com", "admin_login", session)

    assert row.type == "admin_login"
