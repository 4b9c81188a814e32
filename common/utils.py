import datetime
import uuid
from decimal import Decimal, InvalidOperation

from django.utils.dateparse import parse_date
from rest_framework.exceptions import NotFound

from common.exceptions import BadRequest

MONEY_QUANT = Decimal("0.01")


def parse_uuid(value):
    if not value:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def require_uuid(value, not_found_message):
    """Parse an identifier from a caller, treating malformed ids as unknown ones."""
    parsed = parse_uuid(value)
    if parsed is None:
        raise NotFound(not_found_message)
    return parsed


def to_date(value, error_message):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    parsed = None
    try:
        parsed = parse_date(str(value)) if value else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise BadRequest(error_message)
    return parsed


def to_money(value, error_message):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise BadRequest(error_message) from exc
    if not amount.is_finite():
        raise BadRequest(error_message)
    return amount.quantize(MONEY_QUANT)
