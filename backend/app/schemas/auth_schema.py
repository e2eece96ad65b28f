"""
schemas/auth_schema.py — Marshmallow schemas for the user, admin and
verification endpoints.

Validation responsibility:
  - This file: field presence, types, lengths, email format, code shape.
  - services/: EMAIL_EXISTS / PHONE_EXISTS, purpose tags, credential and
    code checks (all need a DB lookup, not a schema concern).

IMPORTANT: All schemas inherit from marshmallow.Schema directly so unit
           tests can load them without an application context.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates

# Six ASCII digits. Used by every schema that carries a verification code.
_CODE_VALIDATOR = validate.Regexp(r"^[0-9]{6}$", error="Verification code must be 6 digits.")


class RegisterSchema(Schema):
    """
    POST /auth/register

    Uniqueness of email / phone is enforced in auth_service.register_user.
    """

    email = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(required=True, load_only=True)
    name = fields.Str(load_default=None, validate=validate.Length(max=100))
    phone = fields.Str(load_default=None, validate=validate.Length(max=20))

    @validates("password")
    def validate_password_length(self, value: str, **kwargs) -> None:
        if len(value) < 6:
            raise ValidationError("Password must be at least 6 characters long.")


class LoginSchema(Schema):
    """
    POST /auth/login, POST /admin/auth/login

    Step 1 of the two-step login. Credential correctness is checked in
    auth_service.login.
    """

    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True)


class LoginVerifySchema(Schema):
    """POST /auth/login/verify, POST /admin/auth/login/verify"""

    email = fields.Email(required=True)
    code = fields.Str(required=True, validate=_CODE_VALIDATOR)


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh, /auth/logout and the admin equivalents.

    Token validity (revoked, expired, not found) is checked in auth_service.
    """

    refresh_token = fields.Str(required=True, validate=validate.Length(min=1))


class ForgotPasswordSchema(Schema):
    email = fields.Email(required=True)


class ResetPasswordSchema(Schema):
    """POST /auth/reset-password, POST /admin/auth/reset-password"""

    email = fields.Email(required=True)
    code = fields.Str(required=True, validate=_CODE_VALIDATOR)
    password = fields.Str(required=True, load_only=True)

    @validates("password")
    def validate_password_length(self, value: str, **kwargs) -> None:
        if len(value) < 6:
            raise ValidationError("Password must be at least 6 characters long.")


class SendVerificationSchema(Schema):
    """
    POST /verification/send

    `type` is the purpose tag; unknown tags are rejected by
    verification_service with INVALID_FIELD.
    """

    target = fields.Email(required=True)
    type = fields.Str(required=True, validate=validate.Length(min=1, max=32))


class VerifyCodeSchema(SendVerificationSchema):
    """POST /verification/verify"""

    code = fields.Str(required=True, validate=_CODE_VALIDATOR)


class UserListQuerySchema(Schema):
    """GET /admin/users (query string)"""

    class Meta:
        unknown = EXCLUDE

    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    page_size = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))
    status = fields.Str(
        load_default=None,
        validate=validate.OneOf(["active", "inactive", "all"]),
    )
    email = fields.Str(load_default=None)
    phone = fields.Str(load_default=None)
