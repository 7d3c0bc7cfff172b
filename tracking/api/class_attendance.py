"""
Tracking API – Classroom attendance sessions, records and self-mark links.
"""
import json

from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from core.models import AttendanceLink, AttendanceSession, Student, StudentAttendance, User
from core.utils import attendance as rules
from core.utils.audit import log_action
from core.utils.http import error, parse_int, parse_json_body, parse_uuid
from core.utils.permissions import role_required

RECORDER_ROLES = (User.ROLE_LECTURER, User.ROLE_CLASS_REP, User.ROLE_INVIGILATOR)


def _get_controlled_session(request, session_id):
    """Return (session, error_response) for sessions the caller may control."""
    session = get_object_or_404(AttendanceSession, pk=session_id)
    if not session.can_control(request.user):
        return None, error('Unauthorized access to this session', status=403)
    return session, None


def _rule_error(exc):
    return error(exc.message, status=exc.status, code=exc.code)


def _session_payload(session):
    data = session.to_dict()
    data['recorded_count'] = session.records.count()
    data['unconfirmed_count'] = session.records.filter(is_confirmed=False).count()
    return data


# ── Sessions ───────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'POST'])
def sessions(request):
    """GET/POST /api/class-attendance/sessions"""
    if request.method == 'POST':
        return _start_session(request)

    qs = AttendanceSession.objects.all()
    if not request.user.is_admin:
        qs = qs.filter(created_by=request.user)
    if request.GET.get('status'):
        qs = qs.filter(status=request.GET['status'])
    if request.GET.get('course_code'):
        qs = qs.filter(course_code__iexact=request.GET['course_code'])
    return JsonResponse({'sessions': [_session_payload(s) for s in qs]})


@role_required(*RECORDER_ROLES)
def _start_session(request):
    data, err = parse_json_body(request)
    if err:
        return err

    course_code = (data.get('course_code') or '').strip().upper()
    course_name = (data.get('course_name') or '').strip()
    device_id = (data.get('device_id') or '').strip()
    if not course_code or not course_name or not device_id:
        return error('course_code, course_name and device_id are required')

    expected = data.get('expected_student_count')
    if expected is not None:
        expected = parse_int(expected, minimum=1)
        if expected is None:
            return error('expected_student_count must be a positive integer')

    if AttendanceSession.objects.filter(
        device_id=device_id, status__in=AttendanceSession.ACTIVE_STATUSES,
    ).exists():
        return error('Device already has an active session')

    session = AttendanceSession.objects.create(
        course_code=course_code,
        course_name=course_name,
        lecturer_name=(data.get('lecturer_name') or '').strip(),
        venue=(data.get('venue') or '').strip(),
        device_id=device_id,
        expected_student_count=expected,
        notes=(data.get('notes') or '').strip(),
        created_by=request.user,
    )
    log_action(request, 'START_ATTENDANCE_SESSION', 'AttendanceSession', session.id, {
        'course_code': course_code, 'device_id': device_id,
    })
    return JsonResponse({'message': 'Attendance session started', 'session': _session_payload(session)}, status=201)


@login_required
@require_GET
def active_sessions(request):
    """GET /api/class-attendance/sessions/active"""
    qs = AttendanceSession.objects.filter(status__in=AttendanceSession.ACTIVE_STATUSES)
    if not request.user.is_admin:
        qs = qs.filter(created_by=request.user)
    return JsonResponse({'sessions': [_session_payload(s) for s in qs]})


@login_required
@require_GET
def session_detail(request, session_id):
    """GET /api/class-attendance/sessions/<id>"""
    session, err = _get_controlled_session(request, session_id)
    if err:
        return err
    records = session.records.select_related('student')
    data = _session_payload(session)
    data['records'] = [r.to_dict() for r in records]
    return JsonResponse({'session': data})


def _control(request, session_id, action, audit_key):
    session, err = _get_controlled_session(request, session_id)
    if err:
        return err
    try:
        action(session)
    except rules.AttendanceError as exc:
        return _rule_error(exc)
    log_action(request, audit_key, 'AttendanceSession', session.id, {'status': session.status})
    return JsonResponse({'session': _session_payload(session)})


@login_required
@require_POST
def pause_session(request, session_id):
    """POST /api/class-attendance/sessions/<id>/pause"""
    return _control(request, session_id, rules.pause_session, 'PAUSE_ATTENDANCE_SESSION')


@login_required
@require_POST
def resume_session(request, session_id):
    """POST /api/class-attendance/sessions/<id>/resume"""
    return _control(request, session_id, rules.resume_session, 'RESUME_ATTENDANCE_SESSION')


@login_required
@require_POST
def end_session(request, session_id):
    """POST /api/class-attendance/sessions/<id>/end"""
    return _control(request, session_id, rules.end_session, 'END_ATTENDANCE_SESSION')


@login_required
@require_GET
def session_stats(request, session_id):
    """GET /api/class-attendance/sessions/<id>/stats – live counters."""
    session, err = _get_controlled_session(request, session_id)
    if err:
        return err

    records = list(session.records.all())
    by_status = {value: 0 for value, _ in StudentAttendance.STATUS_CHOICES}
    by_method = {value: 0 for value, _ in StudentAttendance.METHOD_CHOICES}
    for record in records:
        by_status[record.status] += 1
        by_method[record.method] += 1

    expected = session.expected_student_count
    return JsonResponse({
        'session_id': str(session.id),
        'status': session.status,
        'total_recorded': len(records),
        'confirmed': sum(1 for r in records if r.is_confirmed),
        'unconfirmed': sum(1 for r in records if not r.is_confirmed),
        'expected_student_count': expected,
        'attendance_rate': round(len(records) / expected * 100, 2) if expected else None,
        'by_status': by_status,
        'by_method': by_method,
    })


# ── Records ────────────────────────────────────────────────────────

def _student_from_qr(raw):
    """Student referenced by a scanned student card (JSON payload or bare index number)."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        payload = None
    if isinstance(payload, dict):
        if payload.get('type') != 'STUDENT':
            return None
        student_id = parse_uuid(payload.get('id'))
        if student_id:
            return Student.objects.filter(pk=student_id).first()
        raw = payload.get('indexNumber') or ''
    return Student.objects.filter(index_number=str(raw).strip()).first()


@login_required
@require_POST
def record_attendance(request, session_id):
    """
    POST /api/class-attendance/sessions/<id>/record

    Body: {"qr_data": str} or {"index_number": str}, optional "status".
    """
    session, err = _get_controlled_session(request, session_id)
    if err:
        return err
    data, err = parse_json_body(request)
    if err:
        return err

    if data.get('qr_data'):
        student = _student_from_qr(data['qr_data'])
        method = StudentAttendance.METHOD_QR_CODE
    elif data.get('index_number'):
        student = Student.objects.filter(index_number=str(data['index_number']).strip()).first()
        method = (
            StudentAttendance.METHOD_MANUAL if data.get('manual')
            else StudentAttendance.METHOD_INDEX_NUMBER
        )
    else:
        return error('qr_data or index_number is required')

    if student is None:
        return error('Student not found', status=404)

    status = data.get('status') or StudentAttendance.STATUS_PRESENT
    if status not in dict(StudentAttendance.STATUS_CHOICES):
        return error(f'Invalid status: {status}')

    try:
        record = rules.record_attendance(session, student, method, status=status)
    except rules.AttendanceError as exc:
        return _rule_error(exc)

    return JsonResponse({'message': 'Attendance recorded', 'record': record.to_dict()}, status=201)


def _bulk_records(request, session_id):
    session, err = _get_controlled_session(request, session_id)
    if err:
        return None, None, err
    data, err = parse_json_body(request)
    if err:
        return None, None, err
    ids = [parse_uuid(v) for v in data.get('record_ids') or []]
    ids = [i for i in ids if i]
    if not ids:
        return None, None, error('record_ids must be a non-empty list')
    return session, session.records.filter(pk__in=ids), None


@login_required
@require_POST
def confirm_records(request, session_id):
    """POST /api/class-attendance/sessions/<id>/records/confirm – body: {record_ids: [...]}"""
    session, records, err = _bulk_records(request, session_id)
    if err:
        return err
    count = records.filter(is_confirmed=False).update(is_confirmed=True)
    log_action(request, 'CONFIRM_ATTENDANCE_RECORDS', 'AttendanceSession', session.id, {'count': count})
    return JsonResponse({'message': f'{count} record(s) confirmed', 'confirmed': count})


@login_required
@require_POST
def reject_records(request, session_id):
    """POST /api/class-attendance/sessions/<id>/records/reject – rejected records are deleted."""
    session, records, err = _bulk_records(request, session_id)
    if err:
        return err
    count, _ = records.delete()
    log_action(request, 'REJECT_ATTENDANCE_RECORDS', 'AttendanceSession', session.id, {'count': count})
    return JsonResponse({'message': f'{count} record(s) rejected', 'rejected': count})


# ── Links ──────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'POST'])
def session_links(request, session_id):
    """GET/POST /api/class-attendance/sessions/<id>/links"""
    session, err = _get_controlled_session(request, session_id)
    if err:
        return err
    base_url = settings.ATTENDANCE_LINK_BASE_URL

    if request.method == 'GET':
        links = session.links.filter(is_active=True)
        return JsonResponse({'links': [link.to_dict(base_url) for link in links]})

    data, err = parse_json_body(request)
    if err:
        return err

    minutes = parse_int(
        data.get('expires_in_minutes'), settings.ATTENDANCE_LINK_DEFAULT_MINUTES, minimum=1,
    )
    max_uses = data.get('max_uses')
    if max_uses is not None:
        max_uses = parse_int(max_uses, minimum=1)
        if max_uses is None:
            return error('max_uses must be a positive integer')

    geofence = data.get('geofence')
    if geofence is not None:
        if not isinstance(geofence, dict):
            return error('geofence requires numeric lat, lng and radius_m')
        centre = rules.parse_coordinates(geofence.get('lat'), geofence.get('lng'))
        radius_m = parse_int(geofence.get('radius_m'), minimum=1)
        if centre is None or radius_m is None:
            return error(
                'geofence requires lat within ±90, lng within ±180 and a positive radius_m'
            )
        geofence = {'lat': centre[0], 'lng': centre[1], 'radius_m': radius_m}

    try:
        link = rules.generate_link(session, request.user, minutes, max_uses, geofence)
    except rules.AttendanceError as exc:
        return _rule_error(exc)

    log_action(request, 'GENERATE_ATTENDANCE_LINK', 'AttendanceLink', link.id, {
        'session_id': str(session.id), 'expires_at': link.expires_at, 'max_uses': max_uses,
    })
    data = link.to_dict(base_url)
    data['qr_code_data'] = json.dumps({
        'type': 'ATTENDANCE_LINK', 'token': link.token, 'sessionId': str(session.id),
    })
    return JsonResponse({'link': data}, status=201)


@login_required
@require_POST
def revoke_link(request, token):
    """POST /api/class-attendance/links/<token>/revoke"""
    link = get_object_or_404(AttendanceLink.objects.select_related('session'), token=token)
    if link.created_by_id != request.user.pk and not link.session.can_control(request.user):
        return error('Unauthorized to revoke this link', status=403)
    rules.revoke_link(link)
    log_action(request, 'REVOKE_ATTENDANCE_LINK', 'AttendanceLink', link.id)
    return JsonResponse({'message': 'Link revoked'})
