"""
services/session_journal.py — login journal writer.

Every login step writes exactly one row, success or failure, into the
journal table of the principal's kind. Rows are never updated.

Enrichment:
  - device_type / os / browser / platform come from a keyword scan of the
    User-Agent header
  - country / city / region / timezone / organization / location come from
    the optional IPInfoClient; without it those columns stay NULL
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from backend.app.clock import utcnow
from backend.app.services.ipinfo import IPInfoClient
from backend.app.services.principals import PrincipalKind

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED  = "failed"


@dataclass(frozen=True)
class ClientInfo:
    """What the transport layer knows about the caller."""
    ip: str = ""
    user_agent: str = ""


@dataclass(frozen=True)
class DeviceInfo:
    device_type: str
    os: str
    browser: str
    platform: str


def parse_user_agent(user_agent: str) -> DeviceInfo:
    ua = (user_agent or "").lower()

    if "tablet" in ua or "ipad" in ua:
        device_type = "tablet"
    elif "mobile" in ua or "android" in ua or "iphone" in ua:
        device_type = "mobile"
    else:
        device_type = "desktop"

    # Mobile platforms first: their UAs also mention Linux / Mac OS X.
    if "android" in ua:
        os_name = "Android"
    elif "iphone" in ua or "ipad" in ua or "ios" in ua:
        os_name = "iOS"
    elif "windows" in ua:
        os_name = "Windows"
    elif "mac" in ua or "darwin" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    if "edg" in ua:
        browser = "Edge"
    elif "opr" in ua or "opera" in ua:
        browser = "Opera"
    elif "chrome" in ua:
        browser = "Chrome"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "safari" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    platform = "mobile" if device_type in ("mobile", "tablet") else "web"
    return DeviceInfo(device_type=device_type, os=os_name, browser=browser, platform=platform)


def record(
        kind: PrincipalKind,
        owner_id: int,
        status: str,
        reason: str,
        client: ClientInfo,
        session: Session,
        ipinfo: IPInfoClient | None = None,
):
    """Inserts one journal row for `kind` and returns it (flushed, not committed)."""
    device = parse_user_agent(client.user_agent)
    row = kind.session_model(
        owner_id=owner_id,
        ip_address=client.ip or None,
        user_agent=client.user_agent or None,
        device_type=device.device_type,
        os=device.os,
        browser=device.browser,
        platform=device.platform,
        login_method="password",
        is_trusted=False,
        status=status,
        reason=reason,
        created_at=utcnow(),
    )

    if ipinfo is not None and client.ip:
        info = ipinfo.lookup(client.ip)
        if info is not None:
            row.country = info.country or None
            row.city = info.city or None
            row.region = info.region or None
            row.timezone = info.timezone or None
            row.organization = info.org or None
            row.location = info.loc or None

    session.add(row)
    session.flush()

    if status == STATUS_FAILED:
        logger.info("%s login failed (owner=%s, ip=%s): %s", kind.name, owner_id, client.ip, reason)
    return row


def to_dict(row) -> dict:
    """Projection returned in the login envelope as `login_session`."""
    return {
        "ip": row.ip_address or "",
        "country": row.country or "",
        "city": row.city or "",
        "region": row.region or "",
        "timezone": row.timezone or "",
        "organization": row.organization or "",
        "location": row.location or "",
        "device_type": row.device_type or "",
        "os": row.os or "",
        "browser": row.browser or "",
        "is_trusted": bool(row.is_trusted),
    }
