"""
Dashboard API – Handler self-registration QR codes (admin only).

An admin issues a single-use token for a department and shows its QR code;
the new handler scans it and completes POST /api/public/register.
"""
import logging
import secrets

from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_http_methods, require_POST

from core.models import RegistrationSession, TimestampMixin
from core.utils.audit import log_action
from core.utils.http import error, paginate, parse_int, parse_json_body
from core.utils.permissions import admin_required
from core.utils.qr import qr_data_url

logger = logging.getLogger(__name__)


def _minutes(value, default=None):
    """Minutes between 1 and REGISTRATION_SESSION_MAX_MINUTES, or None."""
    if value is None and default is not None:
        return default
    minutes = parse_int(value, minimum=1)
    if minutes is None or minutes > settings.REGISTRATION_SESSION_MAX_MINUTES:
        return None
    return minutes


@login_required
@require_http_methods(['GET', 'POST'])
@admin_required
def registration_sessions(request):
    """
    GET  /api/dashboard/registration-sessions – ?status=active|used|expired
    POST /api/dashboard/registration-sessions – {department, expires_in_minutes?}
    """
    if request.method == 'POST':
        return _create_session(request)

    qs = RegistrationSession.objects.all()
    now = TimestampMixin.utc_timestamp()
    status = request.GET.get('status')
    if status == 'active':
        qs = qs.filter(used=False, expires_at__gt=now)
    elif status == 'used':
        qs = qs.filter(used=True)
    elif status == 'expired':
        qs = qs.filter(used=False, expires_at__lte=now)
    if request.GET.get('department'):
        qs = qs.filter(department__iexact=request.GET['department'])

    items, pagination = paginate(request, qs)
    return JsonResponse({
        'sessions': [s.to_dict() for s in items],
        'pagination': pagination,
    })


def _create_session(request):
    data, err = parse_json_body(request)
    if err:
        return err

    department = str(data.get('department') or '').strip()
    if not department:
        return error('department is required')
    minutes = _minutes(
        data.get('expires_in_minutes'), default=settings.REGISTRATION_SESSION_DEFAULT_MINUTES,
    )
    if minutes is None:
        return error(
            f'expires_in_minutes must be between 1 and {settings.REGISTRATION_SESSION_MAX_MINUTES}'
        )

    session = RegistrationSession.objects.create(
        qr_token=secrets.token_hex(32),
        department=department,
        expires_at=TimestampMixin.utc_timestamp() + minutes * 60,
        created_by=request.user,
    )
    log_action(request, 'CREATE_REGISTRATION_SESSION', 'RegistrationSession', session.id, {
        'department': department,
        'expires_in_minutes': minutes,
    })
    logger.info('Registration QR issued for %s by %s', department, request.user.username)

    payload = session.qr_payload()
    return JsonResponse({
        'session': session.to_dict(),
        'qr_code_data': payload,
        'qr_code': qr_data_url(payload),
    }, status=201)


@login_required
@require_POST
@admin_required
def deactivate_session(request, session_id):
    """POST /api/dashboard/registration-sessions/<id>/deactivate – expire it now."""
    with transaction.atomic():
        session = get_object_or_404(RegistrationSession.objects.select_for_update(), pk=session_id)
        if session.used:
            return error('Cannot deactivate a session that has already been used')
        session.expires_at = TimestampMixin.utc_timestamp()
        session.save(update_fields=['expires_at'])

    log_action(request, 'DEACTIVATE_REGISTRATION_SESSION', 'RegistrationSession', session.id)
    return JsonResponse({'message': 'Registration session deactivated', 'session': session.to_dict()})


@login_required
@require_POST
@admin_required
def extend_session(request, session_id):
    """POST /api/dashboard/registration-sessions/<id>/extend – {additional_minutes}"""
    data, err = parse_json_body(request)
    if err:
        return err
    minutes = _minutes(data.get('additional_minutes'))
    if minutes is None:
        return error(
            f'additional_minutes must be between 1 and {settings.REGISTRATION_SESSION_MAX_MINUTES}'
        )

    with transaction.atomic():
        session = get_object_or_404(RegistrationSession.objects.select_for_update(), pk=session_id)
        if session.used:
            return error('Cannot extend a session that has already been used')
        # An expired token restarts from now rather than from its old expiry
        start = max(session.expires_at, TimestampMixin.utc_timestamp())
        session.expires_at = start + minutes * 60
        session.save(update_fields=['expires_at'])

    log_action(request, 'EXTEND_REGISTRATION_SESSION', 'RegistrationSession', session.id, {
        'additional_minutes': minutes,
    })
    return JsonResponse({'message': 'Registration session extended', 'session': session.to_dict()})
