"""
Signal receivers: login audit trail and the real-time event log.

Listens to Django's user_logged_in / user_login_failed / user_logged_out
signals to write immutable LoginAuditLog rows, and to the custody events in
core.events so every published event leaves a line in the log.
"""
import logging

from django.contrib.auth.signals import user_logged_in, user_login_failed, user_logged_out
from django.dispatch import receiver

from core.events import (
    attendance_recorded, attendance_session_ended, batch_status_updated,
    transfer_confirmed, transfer_rejected, transfer_requested,
)
from core.models.login_audit import LoginAuditLog
from core.utils.audit import get_client_ip

logger = logging.getLogger('custody.auth')
events_logger = logging.getLogger('custody.events')


@receiver(user_logged_in)
def log_successful_login(sender, request, user, **kwargs):
    """Record a successful login attempt."""
    ip = get_client_ip(request)
    user_agent = request.META.get('HTTP_USER_AGENT', '') if request else ''

    LoginAuditLog.objects.create(
        user=user,
        username_attempted=user.username,
        ip_address=ip,
        user_agent=user_agent,
        success=True,
    )

    logger.info(
        'LOGIN_SUCCESS | user=%s | role=%s | ip=%s | ua=%s',
        user.username, user.role, ip, user_agent[:120],
    )


@receiver(user_login_failed)
def log_failed_login(sender, credentials, request=None, **kwargs):
    """Record a failed login attempt."""
    ip = get_client_ip(request)
    user_agent = request.META.get('HTTP_USER_AGENT', '') if request else ''
    username = credentials.get('username', '<unknown>')

    LoginAuditLog.objects.create(
        user=None,
        username_attempted=username,
        ip_address=ip,
        user_agent=user_agent,
        success=False,
    )

    logger.warning(
        'LOGIN_FAILED | username=%s | ip=%s | ua=%s',
        username, ip, user_agent[:120],
    )


@receiver(user_logged_out)
def log_logout(sender, request, user, **kwargs):
    if user is None:
        return
    logger.info('LOGOUT | user=%s | ip=%s', user.username, get_client_ip(request))


# ── Real-time events ─────────────────────────────────────────────────
@receiver(attendance_recorded)
@receiver(attendance_session_ended)
@receiver(batch_status_updated)
@receiver(transfer_requested)
@receiver(transfer_confirmed)
@receiver(transfer_rejected)
def log_event(sender, event, payload, **kwargs):
    events_logger.info('EVENT | %s | %s', event, payload)
