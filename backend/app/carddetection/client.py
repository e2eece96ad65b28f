"""
carddetection/client.py — signed + encrypted RPC against the upstream
card-detection service.

Wire protocol:
  1. Collect the non-empty request fields (cards, cardNo, pinCode,
     productMark, regionId, regionName, autoType, timestamp) into a map.
  2. sign = CryptoUtils.sign(map)
  3. JSON-serialise the request with `sign` attached, DES-encrypt, hex-encode.
  4. POST {"data": "<hex>"} to {host}/api/userApiManage/checkCard or
     .../checkCardResult with headers Content-Type: application/json and appId.
  5. Response {code, msg, data}: `data` is a bool for submit, and another
     DES/hex ciphertext for the result lookup.

Nothing is retried: the submit endpoint is not idempotent upstream.

One httpx.Client per process; pass `http_client` to share a pool or to
inject an httpx.MockTransport in tests.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

import httpx

from backend.app.carddetection import errors as cd_errors
from backend.app.carddetection.crypto import CryptoUtils
from backend.app.carddetection.errors import CardDetectionError, CardDetectionErrorCode, wrap_error
from backend.app.carddetection.types import (
    AMAZON_REGIONS,
    ITUNES_REGIONS,
    RAZER_REGIONS,
    XBOX_REGIONS,
    CardResult,
    CheckCardRequest,
    CheckCardResponse,
    CheckCardResultRequest,
    ClientConfig,
    ProductMark,
)

logger = logging.getLogger(__name__)

CHECK_CARD_PATH        = "/api/userApiManage/checkCard"
CHECK_CARD_RESULT_PATH = "/api/userApiManage/checkCardResult"


class CardDetectionClient:

    def __init__(
            self,
            config: ClientConfig,
            http_client: httpx.Client | None = None,
            clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.crypto = CryptoUtils(config.app_secret)
        self._clock = clock
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=config.timeout or 30.0)

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def validate_config(self) -> None:
        if not self.config.host:
            raise cd_errors.missing_host()
        if not self.config.app_id:
            raise cd_errors.missing_app_id()
        if not self.config.app_secret:
            raise cd_errors.missing_app_secret()

    # ── Public operations ──────────────────────────────────────────────────

    def check_card(self, req: CheckCardRequest) -> CheckCardResponse:
        """Submits a batch for checking. The upstream answers with data=true on acceptance."""
        self.validate_config()
        validate_check_card_request(req)

        body = self._build_body(
            cards=list(req.cards),
            product_mark=req.product_mark,
            region_id=req.region_id,
            region_name=req.region_name,
            auto_type=req.auto_type,
        )
        payload = self._post(CHECK_CARD_PATH, body)
        return CheckCardResponse(
            code=_as_int(payload.get("code")),
            msg=str(payload.get("msg") or ""),
            data=bool(payload.get("data")),
        )

    def check_card_result(self, req: CheckCardResultRequest) -> CardResult:
        """
        Fetches the result for one card. A non-200 upstream code raises
        API_RESPONSE with the upstream message and nothing is decrypted.
        """
        self.validate_config()
        validate_check_card_result_request(req)

        body = self._build_body(
            card_no=req.card_no,
            pin_code=req.pin_code,
            product_mark=req.product_mark,
        )
        payload = self._post(CHECK_CARD_RESULT_PATH, body)

        if _as_int(payload.get("code")) != 200:
            raise CardDetectionError(CardDetectionErrorCode.API_RESPONSE, str(payload.get("msg") or ""))

        try:
            plain = self.crypto.des_decrypt(str(payload.get("data") or ""))
        except ValueError as exc:
            raise wrap_error(exc, CardDetectionErrorCode.DECRYPTION_FAILED, "failed to decrypt response data")

        try:
            decoded = json.loads(plain)
            if not isinstance(decoded, dict):
                raise ValueError("decrypted result is not an object")
            return CardResult.from_dict(decoded)
        except (TypeError, ValueError) as exc:
            raise wrap_error(exc, CardDetectionErrorCode.API_RESPONSE, "failed to parse decrypted result")

    # ── Private helpers ────────────────────────────────────────────────────

    def _build_body(
            self,
            product_mark: str,
            cards: list[str] | None = None,
            card_no: str = "",
            pin_code: str = "",
            region_id: int = 0,
            region_name: str = "",
            auto_type: int = 0,
    ) -> dict:
        """Returns {"data": <hex ciphertext>} for the given request fields."""
        timestamp = str(int(self._clock()))

        # Field order follows the upstream's own serialisation; empty optional
        # fields are omitted, productMark/timestamp/sign are always present.
        internal: dict = {}
        if cards:
            internal["cards"] = cards
        if card_no:
            internal["cardNo"] = card_no
        if pin_code:
            internal["pinCode"] = pin_code
        internal["productMark"] = product_mark
        if region_id:
            internal["regionId"] = region_id
        if region_name:
            internal["regionName"] = region_name
        if auto_type:
            internal["autoType"] = auto_type
        internal["timestamp"] = timestamp

        try:
            params = {key: value for key, value in internal.items() if value not in ("", None)}
            internal["sign"] = self.crypto.sign(params)
        except (TypeError, ValueError) as exc:
            raise wrap_error(exc, CardDetectionErrorCode.SIGNATURE_FAILED, "failed to sign request")

        try:
            serialised = json.dumps(internal, ensure_ascii=False, separators=(",", ":"))
            return {"data": self.crypto.des_encrypt(serialised)}
        except (TypeError, ValueError) as exc:
            raise wrap_error(exc, CardDetectionErrorCode.ENCRYPTION_FAILED, "failed to encrypt request")

    def _post(self, path: str, body: dict) -> dict:
        url = f"{self.config.host}{path}"
        headers = {
            "Content-Type": "application/json",
            "appId": self.config.app_id,
        }
        started = time.monotonic()
        try:
            response = self._http.post(
                url,
                content=json.dumps(body).encode("utf-8"),
                headers=headers,
                timeout=self.config.timeout or 30.0,
            )
        except httpx.TimeoutException as exc:
            logger.warning("card detection upstream timed out: %s", url)
            raise wrap_error(exc, CardDetectionErrorCode.TIMEOUT, "request timeout")
        except httpx.HTTPError as exc:
            logger.warning("card detection upstream request failed: %s (%s)", url, exc)
            raise wrap_error(exc, CardDetectionErrorCode.API_REQUEST, "HTTP request failed")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug("card detection upstream %s -> HTTP %s in %dms", path, response.status_code, elapsed_ms)

        try:
            payload = response.json()
        except ValueError as exc:
            raise wrap_error(exc, CardDetectionErrorCode.API_RESPONSE, "failed to parse response")
        if not isinstance(payload, dict):
            raise CardDetectionError(CardDetectionErrorCode.API_RESPONSE, "failed to parse response")
        return payload


# ── Request validation ─────────────────────────────────────────────────────

def validate_check_card_request(req: CheckCardRequest) -> None:
    if not req.cards:
        raise cd_errors.invalid_request("cards cannot be empty")
    if not req.product_mark:
        raise cd_errors.invalid_product_mark()

    if req.product_mark == ProductMark.ITUNES:
        if not req.region_id and req.auto_type != 1:
            raise cd_errors.invalid_request("iTunes cards require regionId or autoType=1")
        if req.region_id and not _region_in(req.region_id, ITUNES_REGIONS):
            raise cd_errors.unsupported_region()
    elif req.product_mark == ProductMark.AMAZON:
        if not req.region_id:
            raise cd_errors.invalid_request("Amazon cards require regionId")
        if not _region_in(req.region_id, AMAZON_REGIONS):
            raise cd_errors.unsupported_region()
    elif req.product_mark == ProductMark.RAZER:
        if not req.region_id:
            raise cd_errors.invalid_request("Razer cards require regionId")
        if not _region_in(req.region_id, RAZER_REGIONS):
            raise cd_errors.unsupported_region()
    elif req.product_mark == ProductMark.XBOX:
        if not req.region_name:
            raise cd_errors.invalid_request("Xbox cards require regionName")
        if req.region_name not in XBOX_REGIONS:
            raise cd_errors.unsupported_region()


def validate_check_card_result_request(req: CheckCardResultRequest) -> None:
    if not req.card_no:
        raise cd_errors.invalid_request("cardNo cannot be empty")
    if not req.product_mark:
        raise cd_errors.invalid_product_mark()
    if req.product_mark in ProductMark.PIN_REQUIRED and not req.pin_code:
        raise cd_errors.invalid_request(f"{req.product_mark} cards require pinCode")


def _region_in(region_id: int, table) -> bool:
    return any(region.id == region_id for region in table)


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
