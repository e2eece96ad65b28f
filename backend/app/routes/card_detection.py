"""
routes/card_detection.py — Card-detection route handlers.

Every endpoint requires a user token; every query is scoped to g.user_id.

Submission endpoints commit in a `finally`: the service already committed
the pending rows, and the terminal update (completed or failed) must be
kept whether or not the upstream call raised.

Endpoints (url_prefix=/api/v1/card-detection):
  POST   /check         → upstream envelope {code, msg, data}
  POST   /result        → decoded card result
  GET    /history       → {records, pagination, summary}
  GET    /records/<id>  → one record (404 when not owned)
  GET    /stats         → {summary, product_stats, monthly_stats, recent_checks}
  GET    /summary
  GET    /cd_products
  GET    /cd_regions    ?product_mark=
  GET    /regions       ?productMark=   (built-in region tables)
  GET    /status
"""

from __future__ import annotations

from flask import Blueprint, g, request

from backend.app.extensions import db, get_card_client
from backend.app.middleware.auth_middleware import require_auth
from backend.app.responses import json_body, success
from backend.app.schemas.card_detection_schema import (
    CDRegionsQuerySchema,
    CheckCardResultSchema,
    CheckCardSchema,
    HistoryQuerySchema,
    RegionsQuerySchema,
)
from backend.app.services import card_detection_service

card_detection_bp = Blueprint("card_detection", __name__)


@card_detection_bp.route("/check", methods=["POST"])
@require_auth("user")
def check():
    req = CheckCardSchema().load(json_body())
    try:
        result = card_detection_service.check_cards(g.user_id, req, get_card_client(), db.session)
    finally:
        db.session.commit()
    return success(result)


@card_detection_bp.route("/result", methods=["POST"])
@require_auth("user")
def result():
    req = CheckCardResultSchema().load(json_body())
    try:
        payload = card_detection_service.check_card_result(g.user_id, req, get_card_client(), db.session)
    finally:
        db.session.commit()
    return success(payload)


@card_detection_bp.route("/history", methods=["GET"])
@require_auth("user")
def history():
    query = HistoryQuerySchema().load(request.args)
    payload = card_detection_service.get_history(g.user_id, db.session, **query)
    return success(payload)


@card_detection_bp.route("/records/<int:record_id>", methods=["GET"])
@require_auth("user")
def record_detail(record_id: int):
    return success(card_detection_service.get_record_detail(g.user_id, record_id, db.session))


@card_detection_bp.route("/stats", methods=["GET"])
@require_auth("user")
def stats():
    return success(card_detection_service.get_stats(g.user_id, db.session))


@card_detection_bp.route("/summary", methods=["GET"])
@require_auth("user")
def summary():
    return success(card_detection_service.get_summary(g.user_id, db.session))


@card_detection_bp.route("/cd_products", methods=["GET"])
@require_auth("user")
def cd_products():
    return success(card_detection_service.list_cd_products(db.session))


@card_detection_bp.route("/cd_regions", methods=["GET"])
@require_auth("user")
def cd_regions():
    query = CDRegionsQuerySchema().load(request.args)
    return success(card_detection_service.list_cd_regions(db.session, query["product_mark"]))


@card_detection_bp.route("/regions", methods=["GET"])
@require_auth("user")
def regions():
    query = RegionsQuerySchema().load(request.args)
    return success(card_detection_service.supported_regions(query["product_mark"]))


@card_detection_bp.route("/status", methods=["GET"])
@require_auth("user")
def status():
    return success(card_detection_service.get_service_status(get_card_client()))
