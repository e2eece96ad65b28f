"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to import the models without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging and initialise SQLAlchemy via init_app()
  3. Build the per-process collaborators (AuthContext, card-detection client)
     and park them in app.extensions
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError, CardDetectionError,
     ValidationError, oversized body, Exception → 500)
  6. Register CORS headers and the maintenance CLI commands
  7. Wrap the WSGI app in werkzeug ProxyFix when TRUSTED_PROXIES > 0, so
     X-Forwarded-For is only believed behind a known number of proxies

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic or db.create_all() inspects it.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify, request
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.middleware.proxy_fix import ProxyFix

from backend.config import config_by_name, validate_production_config

logger = logging.getLogger(__name__)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    app.json.sort_keys = False
    app.json.ensure_ascii = False

    proxies = int(app.config.get("TRUSTED_PROXIES") or 0)
    if proxies > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies, x_proto=proxies)

    from backend.app.logging_config import setup_logging
    setup_logging(app.config.get("LOG_LEVEL", "INFO"))

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # The imports are intentionally unused by name — side effect is the point.
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            admin,
            card_detection,
            login_session,
            refresh_token,
            user,
            verification,
        )

    _register_collaborators(app)

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)
    _register_commands(app)

    return app


def _register_collaborators(app: Flask) -> None:
    """
    Builds the token codec / rate limiter / IP lookup bundle and the
    card-detection client once per app. The client is absent when the
    feature is disabled; routes then answer SERVICE_UNAVAILABLE.
    """
    from backend.app.carddetection.client import CardDetectionClient
    from backend.app.carddetection.types import ClientConfig
    from backend.app.extensions import AUTH_CONTEXT_KEY, CARD_CLIENT_KEY
    from backend.app.services.context import AuthContext

    app.extensions[AUTH_CONTEXT_KEY] = AuthContext.from_config(app.config)

    if app.config.get("CARD_DETECTION_ENABLED"):
        app.extensions[CARD_CLIENT_KEY] = CardDetectionClient(ClientConfig.from_config(app.config))
        logger.info("card detection enabled against %s", app.config.get("CARD_DETECTION_HOST"))


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource.
    """
    from backend.app.routes.admin_auth import admin_bp
    from backend.app.routes.auth import auth_bp
    from backend.app.routes.card_detection import card_detection_bp
    from backend.app.routes.health import health_bp
    from backend.app.routes.verification import verification_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp,           url_prefix="/api/v1/auth")
    app.register_blueprint(admin_bp,          url_prefix="/api/v1/admin")
    app.register_blueprint(verification_bp,   url_prefix="/api/v1/verification")
    app.register_blueprint(card_detection_bp, url_prefix="/api/v1/card-detection")


# HTTP status for each card-detection error code; anything else is a 500.
_CARD_DETECTION_STATUS = {
    1002: 400,
    1009: 400,
    1010: 400,
    1004: 502,
    1006: 502,
    1007: 502,
    1008: 502,
}


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError           → failure envelope with the error's HTTP status
      CardDetectionError → envelope carrying the numeric 1001–1010 code
      ValidationError    → marshmallow errors as MISSING_FIELD / INVALID_FIELD (400)
      RequestEntityTooLarge → PAYLOAD_TOO_LARGE (413)
      HTTPException      → werkzeug's status (404 route, 405 method, ...)
      Exception          → INTERNAL_SERVER (500); traceback logged, never returned
    """
    from backend.app.carddetection.errors import CardDetectionError
    from backend.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(CardDetectionError)
    def handle_card_detection_error(error: CardDetectionError):
        status = _CARD_DETECTION_STATUS.get(error.code, 500)
        if status >= 500:
            logger.warning("card detection error: %s", error)
        return jsonify({
            "code": error.code,
            "message": error.message,
            "error": ErrorCode.CARD_DETECTION_ERROR,
        }), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST field error is reported: one error, not many.
        """
        messages = error.messages  # e.g. {"email": ["Not a valid email address."]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                elif isinstance(field_errors, dict):
                    # Nested (List / Nested fields): {index: [messages]}
                    first = next(iter(field_errors.values()), ["Invalid value."])
                    raw_message = first[0] if isinstance(first, list) and first else str(first)
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."

        if str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD

        payload = {"code": 400, "message": str(raw_message), "error": code}
        if field is not None:
            payload["field"] = field
        return jsonify(payload), 400

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(error: RequestEntityTooLarge):
        return jsonify({
            "code": 413,
            "message": "The request body is too large.",
            "error": ErrorCode.PAYLOAD_TOO_LARGE,
        }), 413

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        status = error.code or 500
        code = ErrorCode.NOT_FOUND if status == 404 else ErrorCode.BAD_REQUEST
        return jsonify({
            "code": status,
            "message": error.description or error.name,
            "error": code,
        }), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        The full traceback is logged. Stack traces NEVER leave the server in
        the response body.
        """
        logger.exception("Unhandled exception: %s", error)
        return jsonify({
            "code": 500,
            "message": "An unexpected error occurred. Please try again later.",
            "error": ErrorCode.INTERNAL_SERVER,
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for configured origins.

    CORS_ALLOW_ALL (or DEBUG) reflects any Origin; otherwise only origins
    listed in CORS_ORIGINS are echoed back.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if not origin:
            return response

        allow_all = bool(app.config.get("CORS_ALLOW_ALL") or app.config.get("DEBUG"))
        if allow_all or origin in app.config.get("CORS_ORIGINS", []):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Credentials"] = "true"

        return response


def _register_commands(app: Flask) -> None:
    """Maintenance commands: `flask cleanup-verifications`, `flask reap-detections`."""

    @app.cli.command("cleanup-verifications")
    def cleanup_verifications():
        """Delete expired verification codes."""
        from backend.app.extensions import db
        from backend.app.services import verification_service

        removed = verification_service.sweep_expired(db.session)
        db.session.commit()
        click.echo(f"Removed {removed} expired verification codes.")

    @app.cli.command("reap-detections")
    @click.option("--older-than-minutes", default=30, show_default=True, type=int)
    def reap_detections(older_than_minutes: int):
        """Mark abandoned pending detection records as failed."""
        from backend.app.extensions import db
        from backend.app.services import card_detection_service

        reaped = card_detection_service.reap_abandoned(db.session, older_than_minutes)
        db.session.commit()
        click.echo(f"Marked {reaped} abandoned detection records as failed.")
