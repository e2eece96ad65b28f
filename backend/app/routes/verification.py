"""
routes/verification.py — Stand-alone verification code endpoints.

Endpoints (url_prefix=/api/v1/verification):
  POST   /send    → 200  {message, expires_in}
  POST   /verify  → 200  {message}; a register code activates the account

`type` is one of register, forgot_password, reset_password. Login codes are
only issued by the login endpoints after the password check.
"""

from __future__ import annotations

from flask import Blueprint

from backend.app.extensions import db, get_auth_context
from backend.app.responses import json_body, success
from backend.app.schemas.auth_schema import SendVerificationSchema, VerifyCodeSchema
from backend.app.services import verification_service

verification_bp = Blueprint("verification", __name__)


@verification_bp.route("/send", methods=["POST"])
def send():
    data = SendVerificationSchema().load(json_body())
    ctx = get_auth_context()
    result = verification_service.send_verification(
        data["target"],
        data["type"],
        db.session,
        ttl=ctx.code_ttl,
        rate_limiter=ctx.rate_limiter,
    )
    db.session.commit()
    return success(result)


@verification_bp.route("/verify", methods=["POST"])
def verify():
    data = VerifyCodeSchema().load(json_body())
    result = verification_service.confirm_verification(
        data["target"],
        data["type"],
        data["code"],
        db.session,
        rate_limiter=get_auth_context().rate_limiter,
    )
    db.session.commit()
    return success(result)
