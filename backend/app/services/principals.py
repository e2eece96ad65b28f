"""
services/principals.py — per-kind wiring for the shared auth pipeline.

Users and admins go through the same login / refresh / reset flow. Everything
that differs between them lives in one PrincipalKind value: which tables to
use, which verification purposes to issue, which error codes to raise and
what the journal writes as a failure reason.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend.app.errors import ErrorCode
from backend.app.models.admin import Admin
from backend.app.models.login_session import AdminLoginSession, UserLoginSession
from backend.app.models.refresh_token import AdminRefreshToken, UserRefreshToken
from backend.app.models.user import User
from backend.app.security.tokens import USER_TYPE_ADMIN, USER_TYPE_USER

PURPOSE_REGISTER        = "register"
PURPOSE_USER_LOGIN      = "user_login"
PURPOSE_ADMIN_LOGIN     = "admin_login"
PURPOSE_FORGOT_PASSWORD = "forgot_password"
PURPOSE_RESET_PASSWORD  = "reset_password"

ALL_PURPOSES = (
    PURPOSE_REGISTER,
    PURPOSE_USER_LOGIN,
    PURPOSE_ADMIN_LOGIN,
    PURPOSE_FORGOT_PASSWORD,
    PURPOSE_RESET_PASSWORD,
)


@dataclass(frozen=True)
class PrincipalKind:
    name: str                     # token user_type claim
    model: type
    refresh_model: type
    session_model: type
    login_purpose: str
    reset_purpose: str
    # Unknown email at login: users get the generic credentials error.
    login_missing_code: str
    login_missing_message: str
    not_found_code: str
    bad_credentials_code: str
    inactive_code: str
    not_found_reason: str
    inactive_reason: str
    # Admins get email_verified=true on their first successful login.
    verify_email_on_login: bool


USER = PrincipalKind(
    name=USER_TYPE_USER,
    model=User,
    refresh_model=UserRefreshToken,
    session_model=UserLoginSession,
    login_purpose=PURPOSE_USER_LOGIN,
    reset_purpose=PURPOSE_FORGOT_PASSWORD,
    login_missing_code=ErrorCode.INVALID_CREDENTIALS,
    login_missing_message="The email or password is incorrect.",
    not_found_code=ErrorCode.USER_NOT_FOUND,
    bad_credentials_code=ErrorCode.INVALID_CREDENTIALS,
    inactive_code=ErrorCode.USER_INACTIVE,
    not_found_reason="用户不存在",
    inactive_reason="账户未激活",
    verify_email_on_login=False,
)

ADMIN = PrincipalKind(
    name=USER_TYPE_ADMIN,
    model=Admin,
    refresh_model=AdminRefreshToken,
    session_model=AdminLoginSession,
    login_purpose=PURPOSE_ADMIN_LOGIN,
    reset_purpose=PURPOSE_RESET_PASSWORD,
    login_missing_code=ErrorCode.ADMIN_NOT_FOUND,
    login_missing_message="No administrator account exists for this email.",
    not_found_code=ErrorCode.ADMIN_NOT_FOUND,
    bad_credentials_code=ErrorCode.INVALID_ADMIN_CREDENTIALS,
    inactive_code=ErrorCode.ADMIN_INACTIVE,
    not_found_reason="user not found",
    inactive_reason="管理员账户未激活",
    verify_email_on_login=True,
)

BY_NAME: dict[str, PrincipalKind] = {
    USER.name: USER,
    ADMIN.name: ADMIN,
}

REASON_BAD_PASSWORD = "密码错误"
REASON_INVALID_CODE = "验证码无效"
REASON_LOGIN_OK     = "登录成功"
