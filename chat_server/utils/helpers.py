from datetime import datetime

from bson import ObjectId
from flask import jsonify

from chat_server.utils.time_utils import to_iso


def respond_error(message, status=400, code=None):
    """Return a standardized error response."""
    body = {'success': False, 'error': message}
    if code:
        body['code'] = code
    return jsonify(body), status


def respond_success(payload=None, status=200):
    if payload is None:
        payload = {}
    body = {'success': True}
    if isinstance(payload, dict):
        body.update(payload)
    else:
        body['data'] = payload
    return jsonify(body), status


def normalize_doc(obj):
    """Recursively convert BSON types (ObjectId) and datetimes to JSON-serializable values.

    - ObjectId -> str(ObjectId)
    - datetime -> ISO string (naive values are treated as UTC)
    - recursively handles dicts, lists and tuples
    Returns a new object (does not mutate input).
    """
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {k: normalize_doc(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [normalize_doc(v) for v in obj]
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return to_iso(obj)
    return obj


def parse_pagination(args, default_limit=20, max_limit=100):
    """Read 1-indexed ``page`` and ``limit`` from a mapping of query args.

    Returns (page, limit, errors); errors is None when both values are valid.
    """
    errors = {}
    page = 1
    limit = default_limit
    try:
        page = int(args.get('page', 1))
        if page < 1:
            errors['page'] = 'page must be >= 1'
    except (TypeError, ValueError):
        errors['page'] = 'page must be an integer'
    try:
        limit = int(args.get('limit', default_limit))
        if limit < 1 or limit > max_limit:
            errors['limit'] = f'limit must be between 1 and {max_limit}'
    except (TypeError, ValueError):
        errors['limit'] = 'limit must be an integer'
    if errors:
        return None, None, errors
    return page, limit, None
