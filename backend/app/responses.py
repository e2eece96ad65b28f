"""
responses.py — success envelope and caller metadata shared by all routes.

Success: {"code": 200, "message": "success", "data": ...}
Failures are rendered by the global handlers in app/__init__.py.
"""

from __future__ import annotations

from flask import jsonify, request

from backend.app.services.session_journal import ClientInfo


def success(data=None, status: int = 200):
    return jsonify({"code": status, "message": "success", "data": data}), status


def client_info() -> ClientInfo:
    """
    Caller IP and User-Agent. X-Forwarded-For is only honoured through the
    ProxyFix installed by create_app when TRUSTED_PROXIES > 0.
    """
    ip = request.remote_addr or ""
    return ClientInfo(ip=ip, user_agent=request.headers.get("User-Agent", ""))


def json_body() -> dict:
    return request.get_json(force=True, silent=True) or {}
