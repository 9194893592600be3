# Overview: Request parsing shared by the API blueprints.

from flask import request

from ..validation import parse_bool, parse_datetime, parse_optional_int, ValidationError

DEFAULT_LIMIT = 100
MAX_LIMIT = 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def arg_int(name: str) -> int | None:
    return parse_optional_int(request.args.get(name), name)


def arg_bool(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None:
        return None
    return parse_bool(raw, name)


def arg_datetime(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    return parse_datetime(raw, name)


def paged(query, serialize=lambda row: row.to_dict()) -> dict:
    """limit/offset pagination over a lazy query."""
    limit = parse_optional_int(request.args.get("limit"), "limit", minimum=1) or DEFAULT_LIMIT
    offset = parse_optional_int(request.args.get("offset"), "offset", minimum=0) or 0
    limit = min(limit, MAX_LIMIT)

    total = query.count()
    rows = query.offset(offset).limit(limit).all()
    return {
        "items": [serialize(row) for row in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    }
