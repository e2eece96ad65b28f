"""
carddetection/types.py — request/response shapes and static region tables.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any


class ProductMark:
    SEPHORA = "sephora"
    RAZER   = "Razer"
    ITUNES  = "iTunes"
    AMAZON  = "amazon"
    XBOX    = "xBox"
    NIKE    = "nike"
    ND      = "nd"

    ALL = (SEPHORA, RAZER, ITUNES, AMAZON, XBOX, NIKE, ND)

    # Result lookups for these products must carry the card PIN.
    PIN_REQUIRED = (SEPHORA, NIKE, ND)


class CardStatus:
    WAITING    = 0
    TESTING    = 1
    VALID      = 2
    INVALID    = 3
    REDEEMED   = 4
    FAILED     = 5
    LOW_POINTS = 6

    _NAMES = {
        0: "等待检测",
        1: "测卡中",
        2: "有效",
        3: "无效",
        4: "已兑换",
        5: "检测失败",
        6: "点数不足",
    }

    @classmethod
    def describe(cls, status: int) -> str:
        return cls._NAMES.get(status, "未知状态")


@dataclass(frozen=True)
class RegionInfo:
    id: int
    name: str


ITUNES_REGIONS: tuple[RegionInfo, ...] = (
    RegionInfo(1, "英国"), RegionInfo(2, "美国"), RegionInfo(3, "德国"), RegionInfo(4, "澳大利亚"),
    RegionInfo(5, "加拿大"), RegionInfo(6, "日本"), RegionInfo(8, "西班牙"), RegionInfo(9, "意大利"),
    RegionInfo(10, "法国"), RegionInfo(11, "爱尔兰"), RegionInfo(12, "墨西哥"),
)

AMAZON_REGIONS: tuple[RegionInfo, ...] = (
    RegionInfo(2, "美亚/加亚"), RegionInfo(1, "欧盟区"),
)

RAZER_REGIONS: tuple[RegionInfo, ...] = (
    RegionInfo(12, "美国"), RegionInfo(6, "澳大利亚"), RegionInfo(13, "巴西"), RegionInfo(26, "柬埔寨"),
    RegionInfo(20, "加拿大"), RegionInfo(25, "智利"), RegionInfo(22, "哥伦比亚"), RegionInfo(17, "香港特别行政区"),
    RegionInfo(4, "印度"), RegionInfo(7, "印度尼西亚"), RegionInfo(27, "日本"), RegionInfo(1, "马来西亚"),
    RegionInfo(19, "缅甸"), RegionInfo(15, "新西兰"), RegionInfo(29, "巴基斯坦"), RegionInfo(8, "菲律宾"),
    RegionInfo(5, "新加坡"), RegionInfo(18, "土耳其"), RegionInfo(33, "越南"), RegionInfo(2, "其他"),
    RegionInfo(28, "其他（中文）"), RegionInfo(21, "墨西哥"),
)

XBOX_REGIONS: tuple[str, ...] = (
    "美国", "加拿大", "英国", "澳大利亚", "新西兰", "新加坡",
    "韩国", "墨西哥", "瑞典", "哥伦比亚", "阿根廷", "尼日利亚",
    "香港特别行政区", "挪威", "波兰", "德国",
)


def regions_for(product_mark: str) -> list[dict]:
    """Built-in region table for a product as [{id, name}], empty when none applies."""
    if product_mark == ProductMark.ITUNES:
        return [{"id": r.id, "name": r.name} for r in ITUNES_REGIONS]
    if product_mark == ProductMark.AMAZON:
        return [{"id": r.id, "name": r.name} for r in AMAZON_REGIONS]
    if product_mark == ProductMark.RAZER:
        return [{"id": r.id, "name": r.name} for r in RAZER_REGIONS]
    if product_mark == ProductMark.XBOX:
        return [{"id": index + 1, "name": name} for index, name in enumerate(XBOX_REGIONS)]
    return []


# ── Requests ───────────────────────────────────────────────────────────────

@dataclass
class CheckCardRequest:
    cards: list[str]
    product_mark: str
    region_id: int = 0
    region_name: str = ""
    # iTunes only: 0 = explicit region, 1 = upstream detects the region.
    auto_type: int = 0


@dataclass
class CheckCardResultRequest:
    product_mark: str
    card_no: str
    pin_code: str = ""


# ── Responses ──────────────────────────────────────────────────────────────

@dataclass
class CheckCardResponse:
    code: int
    msg: str
    data: bool

    def to_dict(self) -> dict:
        return {"code": self.code, "msg": self.msg, "data": self.data}


@dataclass
class CardResult:
    card_no: str = ""
    status: int = CardStatus.WAITING
    pin_code: str = ""
    message: str = ""
    # The upstream sends either a formatted string or a unix timestamp.
    check_time: Any = None
    region_name: str = ""
    region_id: int = 0

    @classmethod
    def from_dict(cls, payload: dict) -> "CardResult":
        return cls(
            card_no=str(payload.get("cardNo") or ""),
            status=int(payload.get("status") or 0),
            pin_code=str(payload.get("pinCode") or ""),
            message=str(payload.get("message") or ""),
            check_time=payload.get("checkTime"),
            region_name=str(payload.get("regionName") or ""),
            region_id=int(payload.get("regionId") or payload.get("regionID") or 0),
        )

    def check_time_str(self) -> str:
        """
        Timestamps above 1e9 render as local "YYYY-MM-DD HH:MM:SS"; smaller
        floats print without decimals; anything else is stringified.
        """
        value = self.check_time
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if value > 1e9:
                return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(int(value)))
            if isinstance(value, float):
                return f"{value:.0f}"
        return str(value)

    def to_dict(self) -> dict:
        return {
            "cardNo": self.card_no,
            "status": self.status,
            "statusText": CardStatus.describe(self.status),
            "pinCode": self.pin_code,
            "message": self.message,
            "checkTime": self.check_time_str(),
            "regionName": self.region_name,
            "regionId": self.region_id,
        }


@dataclass
class ClientConfig:
    host: str
    app_id: str
    app_secret: str
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config) -> "ClientConfig":
        return cls(
            host=(config.get("CARD_DETECTION_HOST") or "").rstrip("/"),
            app_id=config.get("CARD_DETECTION_APP_ID") or "",
            app_secret=config.get("CARD_DETECTION_APP_SECRET") or "",
            timeout=float(config.get("CARD_DETECTION_TIMEOUT") or 30),
        )
