"""
schemas/card_detection_schema.py — Marshmallow schemas for card-detection
endpoints.

Request bodies use the upstream's camelCase keys (productMark, regionId,
cardNo, ...); `data_key` maps them onto snake_case names for the service.

Product-specific rules (iTunes region or autoType, Amazon/Razer regionId,
Xbox regionName, pinCode for Sephora/Nike/ND) live in
carddetection.client.validate_check_card_request, so the same checks run
whether the client is called through HTTP or directly.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, post_load, validate

from backend.app.carddetection.types import CheckCardRequest, CheckCardResultRequest


class CheckCardSchema(Schema):
    """POST /card-detection/check"""

    # Emptiness is reported by the client validator ("cards cannot be empty").
    cards = fields.List(fields.Str(validate=validate.Length(min=1, max=255)), required=True)
    product_mark = fields.Str(required=True, data_key="productMark")
    region_id = fields.Int(load_default=0, data_key="regionId")
    region_name = fields.Str(load_default="", data_key="regionName")
    auto_type = fields.Int(load_default=0, data_key="autoType", validate=validate.OneOf([0, 1]))

    @post_load
    def make_request(self, data, **kwargs) -> CheckCardRequest:
        return CheckCardRequest(**data)


class CheckCardResultSchema(Schema):
    """POST /card-detection/result"""

    product_mark = fields.Str(required=True, data_key="productMark")
    card_no = fields.Str(required=True, data_key="cardNo", validate=validate.Length(max=255))
    pin_code = fields.Str(load_default="", data_key="pinCode")

    @post_load
    def make_request(self, data, **kwargs) -> CheckCardResultRequest:
        return CheckCardResultRequest(**data)


class HistoryQuerySchema(Schema):
    """GET /card-detection/history (query string)"""

    class Meta:
        unknown = EXCLUDE

    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    page_size = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))
    status = fields.Str(
        load_default=None,
        validate=validate.OneOf(["pending", "completed", "failed"]),
    )
    product_mark = fields.Str(load_default=None)
    card_number = fields.Str(load_default=None)
    start_date = fields.Date(load_default=None, format="%Y-%m-%d")
    end_date = fields.Date(load_default=None, format="%Y-%m-%d")


class RegionsQuerySchema(Schema):
    """GET /card-detection/regions (query string)"""

    class Meta:
        unknown = EXCLUDE

    product_mark = fields.Str(required=True, data_key="productMark")


class CDRegionsQuerySchema(Schema):
    """GET /card-detection/cd_regions (query string)"""

    class Meta:
        unknown = EXCLUDE

    product_mark = fields.Str(load_default=None)
