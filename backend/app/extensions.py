"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy as a module-level object so it can be imported
anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` from here wherever needed.

    from backend.app.extensions import db

Collaborators that are not Flask extensions (AuthContext with the token
codec / rate limiter / IP lookup, and the card-detection client) are built
once in the factory and parked in app.extensions under the keys below.
Routes fetch them through the accessors and hand them to services as plain
arguments.

IMPORTANT — schema inheritance rule:
  All validation Schema classes (in app/schemas/) inherit from
  marshmallow.Schema directly, so unit tests can load them without an
  application context.
"""

from __future__ import annotations

from flask import current_app
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

AUTH_CONTEXT_KEY = "trusioo.auth_context"
CARD_CLIENT_KEY  = "trusioo.card_detection_client"


def get_auth_context():
    return current_app.extensions[AUTH_CONTEXT_KEY]


def get_card_client():
    """Returns None when card detection is disabled in config."""
    return current_app.extensions.get(CARD_CLIENT_KEY)
