"""
services/card_detection_service.py — records every card-detection attempt
and serves the caller's history.

Responsibilities:
  - Submit / result-fetch: pre-insert pending records, call the upstream
    client, move each record exactly once to completed or failed
  - History, detail, summary and stats queries, always scoped to one user
  - Read-only views over the cd_products / cd_regions catalog
  - Reaping pending rows abandoned by crashed or cancelled requests

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or current_app
  - The client arrives as an argument (None when the feature is disabled)

Transactions:
  Unlike the other services, check_cards / check_card_result commit once
  right after inserting the pending rows, so the attempt is on disk before
  the upstream call starts. The terminal update is flushed; the route
  commits it whether the call succeeded or not.

Terminal update:
  UPDATE ... WHERE id IN (...) AND check_status = 'pending'. A record that
  already left pending (e.g. reaped) is never overwritten.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from datetime import date, datetime, time as dt_time, timedelta, timezone

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.carddetection.client import (
    CardDetectionClient,
    validate_check_card_request,
    validate_check_card_result_request,
)
from backend.app.carddetection.errors import CardDetectionError, get_error_code, is_card_detection_error
from backend.app.carddetection.types import CheckCardRequest, CheckCardResultRequest, regions_for
from backend.app.clock import utcnow
from backend.app.errors import AppError, ErrorCode
from backend.app.models.card_detection import (
    CHECK_STATUS_COMPLETED,
    CHECK_STATUS_FAILED,
    CHECK_STATUS_PENDING,
    CardDetectionRecord,
    CDProduct,
    CDRegion,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_CHECKS = 5
SERVICE_NAME = "Card Detection API"


# ── Private helpers ────────────────────────────────────────────────────────

def _require_client(client: CardDetectionClient | None) -> CardDetectionClient:
    if client is None:
        raise AppError(
            ErrorCode.SERVICE_UNAVAILABLE,
            "Card detection service is not available.",
            503,
        )
    return client


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


def _insert_pending(rows: list[CardDetectionRecord], session: Session) -> list[int]:
    session.add_all(rows)
    session.flush()
    ids = [row.id for row in rows]
    session.commit()
    return ids


def _finish(
        record_ids: list[int],
        session: Session,
        status: str,
        response_code: int,
        response_time: int,
        check_result: str | None = None,
        error_message: str | None = None,
) -> int:
    """Moves pending records to a terminal state. Returns the rows touched."""
    now = utcnow()
    result = session.execute(
        update(CardDetectionRecord)
        .where(
            CardDetectionRecord.id.in_(record_ids),
            CardDetectionRecord.check_status == CHECK_STATUS_PENDING,
        )
        .values(
            check_status=status,
            response_code=response_code,
            response_time=response_time,
            check_result=check_result,
            error_message=error_message,
            checked_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    touched = result.rowcount or 0
    if touched != len(record_ids):
        logger.warning(
            "card detection: %d of %d records were no longer pending",
            len(record_ids) - touched, len(record_ids),
        )
    session.flush()
    return touched


def _fail(record_ids: list[int], session: Session, exc: Exception, elapsed: int) -> None:
    code = get_error_code(exc) if is_card_detection_error(exc) else 500
    try:
        _finish(record_ids, session, CHECK_STATUS_FAILED, code, elapsed, error_message=str(exc))
    except SQLAlchemyError:
        logger.exception("card detection: failed to mark records %s as failed", record_ids)


def record_dict(record: CardDetectionRecord) -> dict:
    """Public projection. check_result is decoded when it holds JSON."""
    check_result = None
    if record.check_result:
        try:
            check_result = json.loads(record.check_result)
        except ValueError:
            check_result = record.check_result

    return {
        "id": record.id,
        "request_id": record.request_id,
        "card_number": record.card_number,
        "pin_code": record.pin_code,
        "product_mark": record.product_mark,
        "region_id": record.region_id,
        "region_name": record.region_name,
        "auto_type": record.auto_type,
        "check_status": record.check_status,
        "check_result": check_result,
        "error_message": record.error_message,
        "response_code": record.response_code,
        "response_time": record.response_time,
        "checked_at": _iso(record.checked_at),
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
    }


def _success_rate(success: int, total: int) -> float:
    return round(success / total * 100, 2) if total else 0.0


def _parse_day(value: str | date | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            f"Invalid date '{value}', expected YYYY-MM-DD.",
            400,
        )


def _day_start(day: date) -> datetime:
    return datetime.combine(day, dt_time.min, tzinfo=timezone.utc)


# ── Submission ─────────────────────────────────────────────────────────────

def check_cards(
        user_id: int,
        req: CheckCardRequest,
        client: CardDetectionClient | None,
        session: Session,
) -> dict:
    """
    Submits the batch upstream as given and records one row per distinct
    card; a card repeated in the batch shares its record.

    Nothing is written when the request or client config is invalid.

    Raises:
      AppError(SERVICE_UNAVAILABLE, 503) — feature disabled
      CardDetectionError                  — validation or upstream failure;
                                            the records end up 'failed'

    Returns: the upstream envelope {code, msg, data}
    """
    client = _require_client(client)
    client.validate_config()
    validate_check_card_request(req)

    cards = list(dict.fromkeys(req.cards))
    request_id = str(uuid.uuid4())
    now = utcnow()

    rows = [
        CardDetectionRecord(
            user_id=user_id,
            request_id=request_id,
            card_number=card,
            product_mark=req.product_mark,
            region_id=req.region_id or None,
            region_name=req.region_name or None,
            auto_type=req.auto_type or None,
            check_status=CHECK_STATUS_PENDING,
            created_at=now,
            updated_at=now,
        )
        for card in cards
    ]
    record_ids = _insert_pending(rows, session)

    started = time.monotonic()
    try:
        resp = client.check_card(req)
    except Exception as exc:
        elapsed = _elapsed_ms(started)
        _fail(record_ids, session, exc, elapsed)
        logger.warning(
            "card detection %s failed: user=%s product=%s cards=%d elapsed=%dms error=%s",
            request_id, user_id, req.product_mark, len(req.cards), elapsed, exc,
        )
        raise

    elapsed = _elapsed_ms(started)
    payload = resp.to_dict()
    _finish(
        record_ids, session, CHECK_STATUS_COMPLETED, resp.code, elapsed,
        check_result=json.dumps(payload, ensure_ascii=False),
    )
    logger.info(
        "card detection %s: user=%s product=%s cards=%d code=%s elapsed=%dms",
        request_id, user_id, req.product_mark, len(req.cards), resp.code, elapsed,
    )
    return payload


def check_card_result(
        user_id: int,
        req: CheckCardResultRequest,
        client: CardDetectionClient | None,
        session: Session,
) -> dict:
    """
    Fetches one card's result upstream, recorded as a single row.

    Raises: as check_cards.
    Returns: the decoded CardResult projection (cardNo, status, statusText, ...)
    """
    client = _require_client(client)
    client.validate_config()
    validate_check_card_result_request(req)

    request_id = str(uuid.uuid4())
    now = utcnow()
    row = CardDetectionRecord(
        user_id=user_id,
        request_id=request_id,
        card_number=req.card_no,
        pin_code=req.pin_code or None,
        product_mark=req.product_mark,
        check_status=CHECK_STATUS_PENDING,
        created_at=now,
        updated_at=now,
    )
    record_ids = _insert_pending([row], session)

    started = time.monotonic()
    try:
        result = client.check_card_result(req)
    except Exception as exc:
        elapsed = _elapsed_ms(started)
        _fail(record_ids, session, exc, elapsed)
        logger.warning(
            "card result %s failed: user=%s product=%s elapsed=%dms error=%s",
            request_id, user_id, req.product_mark, elapsed, exc,
        )
        raise

    elapsed = _elapsed_ms(started)
    payload = result.to_dict()
    _finish(
        record_ids, session, CHECK_STATUS_COMPLETED, 200, elapsed,
        check_result=json.dumps(payload, ensure_ascii=False),
    )
    logger.info(
        "card result %s: user=%s product=%s status=%s elapsed=%dms",
        request_id, user_id, req.product_mark, result.status, elapsed,
    )
    return payload


def reap_abandoned(session: Session, older_than_minutes: int = 30) -> int:
    """
    Marks pending records older than the grace period as failed.
    Returns how many rows were reaped.
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    now = utcnow()
    result = session.execute(
        update(CardDetectionRecord)
        .where(
            CardDetectionRecord.check_status == CHECK_STATUS_PENDING,
            CardDetectionRecord.created_at < cutoff,
        )
        .values(
            check_status=CHECK_STATUS_FAILED,
            error_message="abandoned: no terminal update before the grace period",
            checked_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    reaped = result.rowcount or 0
    if reaped:
        logger.info("reaped %d abandoned card detection records", reaped)
    return reaped


# ── Queries ────────────────────────────────────────────────────────────────

def get_history(
        user_id: int,
        session: Session,
        page: int | None = None,
        page_size: int | None = None,
        status: str | None = None,
        product_mark: str | None = None,
        card_number: str | None = None,
        start_date: str | date | None = None,
        end_date: str | date | None = None,
) -> dict:
    """
    Paginated history, newest first. Filters combine with AND.

    card_number is an exact match and returns every matching row unpaginated;
    total is then the number of rows returned.

    Returns: {"records": [...], "pagination": {...}, "summary": {...}}
    """
    page = page if page and page > 0 else 1
    if not page_size or page_size < 1 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE

    conditions = [CardDetectionRecord.user_id == user_id]
    if status:
        conditions.append(CardDetectionRecord.check_status == status)
    if product_mark:
        conditions.append(CardDetectionRecord.product_mark == product_mark)
    start = _parse_day(start_date)
    if start is not None:
        conditions.append(CardDetectionRecord.created_at >= _day_start(start))
    end = _parse_day(end_date)
    if end is not None:
        conditions.append(CardDetectionRecord.created_at < _day_start(end + timedelta(days=1)))

    ordered = (
        select(CardDetectionRecord)
        .order_by(CardDetectionRecord.created_at.desc(), CardDetectionRecord.id.desc())
    )

    if card_number:
        records = session.execute(
            ordered.where(*conditions, CardDetectionRecord.card_number == card_number)
        ).scalars().all()
        total = len(records)
    else:
        total = session.execute(
            select(func.count(CardDetectionRecord.id)).where(*conditions)
        ).scalar_one()
        records = session.execute(
            ordered.where(*conditions).limit(page_size).offset((page - 1) * page_size)
        ).scalars().all()

    total_pages = math.ceil(total / page_size) if total else 0
    return {
        "records": [record_dict(record) for record in records],
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_previous": page > 1,
        },
        "summary": get_summary(user_id, session),
    }


def get_record_detail(user_id: int, record_id: int, session: Session) -> dict:
    """
    Raises:
      AppError(NOT_FOUND, 404) — no such record, or it belongs to someone else
    """
    record = session.execute(
        select(CardDetectionRecord).where(
            CardDetectionRecord.id == record_id,
            CardDetectionRecord.user_id == user_id,
        )
    ).scalar_one_or_none()
    if record is None:
        raise AppError(ErrorCode.NOT_FOUND, f"Detection record {record_id} not found.", 404)
    return record_dict(record)


def get_summary(user_id: int, session: Session) -> dict:
    row = session.execute(
        select(
            func.count(CardDetectionRecord.id),
            func.sum(case((CardDetectionRecord.check_status == CHECK_STATUS_COMPLETED, 1), else_=0)),
            func.sum(case((CardDetectionRecord.check_status == CHECK_STATUS_FAILED, 1), else_=0)),
            func.sum(case((CardDetectionRecord.check_status == CHECK_STATUS_PENDING, 1), else_=0)),
            func.max(CardDetectionRecord.created_at),
        ).where(CardDetectionRecord.user_id == user_id)
    ).one()

    total, success, failed, pending, last_check_at = row
    total = int(total or 0)
    success = int(success or 0)
    return {
        "total_checks": total,
        "success_checks": success,
        "failed_checks": int(failed or 0),
        "pending_checks": int(pending or 0),
        "success_rate": _success_rate(success, total),
        "last_check_at": _iso(last_check_at),
    }


def get_stats(user_id: int, session: Session) -> dict:
    """
    Summary plus per-product and per-month (YYYY-MM, UTC) breakdowns and
    the five most recent records.
    """
    by_product = session.execute(
        select(
            CardDetectionRecord.product_mark,
            func.count(CardDetectionRecord.id),
            func.sum(case((CardDetectionRecord.check_status == CHECK_STATUS_COMPLETED, 1), else_=0)),
            func.sum(case((CardDetectionRecord.check_status == CHECK_STATUS_FAILED, 1), else_=0)),
            func.max(CardDetectionRecord.created_at),
        )
        .where(CardDetectionRecord.user_id == user_id)
        .group_by(CardDetectionRecord.product_mark)
        .order_by(CardDetectionRecord.product_mark)
    ).all()

    product_stats = []
    for product_mark, total, success, failed, last_check_at in by_product:
        total = int(total or 0)
        success = int(success or 0)
        product_stats.append({
            "product_mark": product_mark,
            "total_checks": total,
            "success_checks": success,
            "failed_checks": int(failed or 0),
            "success_rate": _success_rate(success, total),
            "last_check_at": _iso(last_check_at),
        })

    # Month bucketing differs per SQL dialect, so it is done here.
    months: dict[str, dict] = {}
    rows = session.execute(
        select(CardDetectionRecord.created_at, CardDetectionRecord.check_status)
        .where(CardDetectionRecord.user_id == user_id)
    ).all()
    for created_at, check_status in rows:
        bucket = months.setdefault(
            created_at.strftime("%Y-%m"),
            {"total_checks": 0, "success_checks": 0, "failed_checks": 0},
        )
        bucket["total_checks"] += 1
        if check_status == CHECK_STATUS_COMPLETED:
            bucket["success_checks"] += 1
        elif check_status == CHECK_STATUS_FAILED:
            bucket["failed_checks"] += 1

    monthly_stats = [
        {
            "month": month,
            **counts,
            "success_rate": _success_rate(counts["success_checks"], counts["total_checks"]),
        }
        for month, counts in sorted(months.items(), reverse=True)
    ]

    recent = session.execute(
        select(CardDetectionRecord)
        .where(CardDetectionRecord.user_id == user_id)
        .order_by(CardDetectionRecord.created_at.desc(), CardDetectionRecord.id.desc())
        .limit(RECENT_CHECKS)
    ).scalars().all()

    return {
        "summary": get_summary(user_id, session),
        "product_stats": product_stats,
        "monthly_stats": monthly_stats,
        "recent_checks": [record_dict(record) for record in recent],
    }


# ── Catalog / status ───────────────────────────────────────────────────────

def get_service_status(client: CardDetectionClient | None) -> dict:
    status = {"enabled": client is not None, "service": SERVICE_NAME}
    if client is not None:
        try:
            client.validate_config()
            status["config_valid"] = True
        except CardDetectionError as exc:
            status["config_valid"] = False
            status["config_error"] = str(exc)
        status["host"] = client.config.host
        status["timeout"] = client.config.timeout
    return status


def list_cd_products(session: Session) -> dict:
    products = session.execute(
        select(CDProduct).where(CDProduct.status == "active").order_by(CDProduct.id)
    ).scalars().all()
    items = [
        {
            "id": product.id,
            "product_mark": product.product_mark,
            "product_name": product.product_name,
            "requires_region": bool(product.requires_region),
            "requires_pin": bool(product.requires_pin),
            "card_format": product.card_format,
            "card_length_min": product.card_length_min,
            "card_length_max": product.card_length_max,
            "pin_length": product.pin_length,
            "validation_pattern": product.validation_pattern,
            "supports_auto_type": bool(product.supports_auto_type),
            "status": product.status,
        }
        for product in products
    ]
    return {"products": items, "total": len(items)}


def list_cd_regions(session: Session, product_mark: str | None = None) -> dict:
    """
    Raises:
      AppError(NOT_FOUND, 404) — product_mark given but not in cd_products
    """
    conditions = [CDRegion.status == "active"]
    if product_mark:
        product = session.execute(
            select(CDProduct).where(CDProduct.product_mark == product_mark)
        ).scalar_one_or_none()
        if product is None:
            raise AppError(ErrorCode.NOT_FOUND, f"Product '{product_mark}' not found.", 404)
        conditions.append(CDRegion.product_mark == product.product_mark)

    regions = session.execute(
        select(CDRegion).where(*conditions).order_by(CDRegion.sort_order, CDRegion.id)
    ).scalars().all()
    items = [
        {
            "id": region.id,
            "product_mark": region.product_mark,
            "region_id": region.region_id,
            "region_name": region.region_name,
            "region_name_en": region.region_name_en,
            "status": region.status,
            "sort_order": region.sort_order,
        }
        for region in regions
    ]
    payload = {"regions": items, "total": len(items)}
    if product_mark:
        payload["product_mark"] = product_mark
    return payload


def supported_regions(product_mark: str) -> dict:
    """
    Built-in region tables used by request validation.

    Raises:
      AppError(INVALID_FIELD, 400) — product has no region table
    """
    regions = regions_for(product_mark)
    if not regions:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "Unsupported product mark.",
            400,
            field="productMark",
        )
    return {"productMark": product_mark, "regions": regions}
