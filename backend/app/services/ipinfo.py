"""
services/ipinfo.py — ipinfo.io-compatible geolocation lookups for the login journal.

Enrichment is best effort: any failure returns None and the session row is
written without geo fields. Private and loopback addresses are never sent out.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IPInfo:
    ip: str
    city: str = ""
    region: str = ""
    country: str = ""
    loc: str = ""
    org: str = ""
    timezone: str = ""


class IPInfoClient:

    def __init__(
            self,
            base_url: str = "https://ipinfo.io",
            token: str = "",
            timeout: float = 5.0,
            http_client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._http = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config) -> "IPInfoClient | None":
        if not config.get("IPINFO_ENABLED"):
            return None
        return cls(
            base_url=config.get("IPINFO_BASE_URL") or "https://ipinfo.io",
            token=config.get("IPINFO_TOKEN") or "",
            timeout=float(config.get("IPINFO_TIMEOUT") or 5),
        )

    def lookup(self, ip: str) -> IPInfo | None:
        if not _is_public(ip):
            return None

        params = {"token": self.token} if self.token else None
        try:
            response = self._http.get(f"{self.base_url}/{ip}", params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("ip lookup failed for %s: %s", ip, exc)
            return None

        if not isinstance(payload, dict):
            return None
        return IPInfo(
            ip=str(payload.get("ip") or ip),
            city=str(payload.get("city") or ""),
            region=str(payload.get("region") or ""),
            country=str(payload.get("country") or ""),
            loc=str(payload.get("loc") or ""),
            org=str(payload.get("org") or ""),
            timezone=str(payload.get("timezone") or ""),
        )


def _is_public(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (address.is_private or address.is_loopback or address.is_reserved or address.is_link_local)
