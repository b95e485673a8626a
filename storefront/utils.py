from decimal import Decimal, ROUND_HALF_UP
from flask import request
import logging

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


def to_money(value) -> Decimal:
    """Coerce a number or numeric string to a 2dp Decimal."""
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def money_float(value):
    if value is None:
        return None
    return float(to_money(value))


def iso(dt):
    return dt.isoformat() if dt else None


def clean_text(value):
    """Stripped text, or None for blanks and non-string JSON values."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


def enum_value(value):
    return getattr(value, 'value', value)


def parse_enum(enum_cls, raw):
    """Return the enum member named by ``raw`` or None."""
    if raw is None:
        return None
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        return None


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def get_page_args(default_per_page=20, max_per_page=100):
    page = request.args.get('page', 1, type=int) or 1
    per_page = request.args.get('per_page', default_per_page, type=int)
    per_page = max(1, min(per_page or default_per_page, max_per_page))
    return max(page, 1), per_page


def paginate_query(query, page=1, per_page=20):
    pagination = query.paginate(
        page=page,
        per_page=per_page,
        error_out=False
    )
    return {
        'items': pagination.items,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }
