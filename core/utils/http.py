"""
Shared helpers for the JSON API views.
"""
import json
import math
import uuid
from datetime import date

from django.conf import settings
from django.http import JsonResponse


def parse_json_body(request):
    """Safely parse JSON request body. Returns (data, error_response)."""
    try:
        data = json.loads(request.body or b'{}')
    except (json.JSONDecodeError, ValueError):
        return None, JsonResponse({'error': 'Invalid JSON body'}, status=400)
    if not isinstance(data, dict):
        return None, JsonResponse({'error': 'JSON body must be an object'}, status=400)
    return data, None


def error(message, status=400, **extra):
    body = {'error': message}
    body.update(extra)
    return JsonResponse(body, status=status)


def parse_int(value, default=None, minimum=None):
    """Lenient int parsing for query parameters; falls back to ``default``."""
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def parse_date(value):
    """Parse YYYY-MM-DD (or a full ISO datetime) into a date, or None."""
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def paginate(request, queryset):
    """
    Slice ``queryset`` using ``?page=`` and ``?limit=``.

    Returns (items, pagination) where pagination is
    ``{'page', 'limit', 'total', 'pages'}``.
    """
    limit = parse_int(request.GET.get('limit'), settings.CUSTODY_PAGE_SIZE, minimum=1)
    limit = min(limit, settings.CUSTODY_MAX_PAGE_SIZE)
    page = parse_int(request.GET.get('page'), 1, minimum=1)

    total = queryset.count()
    offset = (page - 1) * limit
    items = list(queryset[offset:offset + limit])
    return items, {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': math.ceil(total / limit) if total else 0,
    }


def parse_uuid(value):
    """UUID from a body or query value, or None when it is missing or malformed."""
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
