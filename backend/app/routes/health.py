"""
routes/health.py — Liveness probe.

GET /health → {"status": "ok"} (bare, no envelope; load balancers read it).
"""

from __future__ import annotations

from flask import Blueprint, jsonify

health_bp = Blueprint("health", __name__)


@health_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"}), 200
