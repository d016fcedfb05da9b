# -*- coding: utf-8 -*-
# src/schemas/ledger.py
from marshmallow import Schema, fields, validate, EXCLUDE

from src.models.credit import CreditType
from src.models.purchase import PurchaseStatus
from src.services.credit_history import CREDIT_STATUSES

CREDIT_TYPES = [t.value for t in CreditType]


class CheckoutSchema(Schema):
    """Body of POST /api/v1/purchases. Catalog keys are checked by the catalog."""

    class Meta:
        unknown = EXCLUDE

    tier = fields.String(load_default=None)
    credit_pack = fields.String(load_default=None)
    addons = fields.List(fields.String(), load_default=list)
    success_url = fields.Url(load_default=None, require_tld=False)
    cancel_url = fields.Url(load_default=None, require_tld=False)
    customer_email = fields.Email(load_default=None)


class ClaimSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    type = fields.String(required=True, validate=validate.OneOf(CREDIT_TYPES))
    job_id = fields.String(load_default=None, validate=validate.Length(min=1, max=64))
    user_id = fields.String(load_default=None)


class BindSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    job_id = fields.String(required=True, validate=validate.Length(min=1, max=64))


class HistoryQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    user_id = fields.String(load_default=None)
    status = fields.String(load_default=None,
                           validate=validate.OneOf(CREDIT_STATUSES))
    type = fields.String(load_default=None, validate=validate.OneOf(CREDIT_TYPES))
    purchase_status = fields.String(
        load_default=None, validate=validate.OneOf([s.value for s in PurchaseStatus]))
    limit = fields.Integer(load_default=50, validate=validate.Range(min=1, max=200))
    offset = fields.Integer(load_default=0, validate=validate.Range(min=0))


class NormalizeSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    user_id = fields.String(load_default=None)
