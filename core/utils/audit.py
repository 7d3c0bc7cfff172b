"""
Audit logging utility for recording user actions.
"""
from django.conf import settings

from core.models.audit import AuditLog
from core.models.mixins import TimestampMixin


def log_action(request, action, entity, entity_id='', details=None, user=None):
    """
    Create an audit log entry.

    Args:
        request: Django HttpRequest (can be None for system actions)
        action: Action key, e.g. INITIATE_TRANSFER or UPDATE_EXAM_SESSION_STATUS
        entity: Model name of the affected record
        entity_id: Primary key of the affected record
        details: Optional JSON-serialisable dict with before/after values
        user: Acting user when there is no authenticated request user
              (public attendance links, management commands)
    """
    username = 'system'
    ip_address = None
    user_agent = ''

    if request is not None:
        request_user = getattr(request, 'user', None)
        if user is None and request_user is not None and request_user.is_authenticated:
            user = request_user
        ip_address = get_client_ip(request)
        user_agent = request.META.get('HTTP_USER_AGENT', '')

    if user is not None:
        username = user.username

    return AuditLog.objects.create(
        user=user,
        username=username,
        action=action,
        entity=entity,
        entity_id=str(entity_id),
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
        timestamp=TimestampMixin.utc_timestamp(),
    )


def get_client_ip(request):
    """
    Extract the real client IP from the request.

    X-Forwarded-For is honoured only when the request came from one of
    settings.TRUSTED_PROXIES (or when no proxies are configured).
    """
    if request is None:
        return None

    trusted_proxies = getattr(settings, 'TRUSTED_PROXIES', [])
    remote_addr = request.META.get('REMOTE_ADDR', '')
    x_forwarded = request.META.get('HTTP_X_FORWARDED_FOR')

    if x_forwarded and (not trusted_proxies or remote_addr in trusted_proxies):
        return x_forwarded.split(',')[0].strip()

    return remote_addr or None
