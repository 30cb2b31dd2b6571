# Overview: Shared JSON error responses and query-string parsing for the custody blueprints.

from flask import current_app, jsonify, request

from ..extensions import db
from ..validation import CustodyError, ValidationError, parse_date_field


def custody_error_response(exc: CustodyError):
    """Expected outcome: returned verbatim with its stable code."""
    db.session.rollback()
    return jsonify(exc.to_dict()), exc.http_status


def internal_error_response(message: str):
    """Unexpected failure: logged with traceback, details withheld from the caller."""
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def query_date(name: str, *, required: bool = False):
    return parse_date_field(request.args.get(name), name, required=required)


def pagination() -> tuple[int, int]:
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 50, type=int)
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > 200:
        raise ValidationError("limit must be between 1 and 200")
    return page, limit


def paginated(items: list, total: int, page: int, limit: int, key: str) -> dict:
    return {
        key: [item.to_dict() for item in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
