"""
Tracking API – Public endpoints: attendance self-mark through a link and
handler self-registration through a QR code.

No login: the link token (or registration QR token) is the credential.
"""
import logging
import re

from django.contrib.auth import login
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.db import transaction
from django.http import JsonResponse
from django.views.decorators.cache import never_cache
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from core.models import AttendanceLink, RegistrationSession, Student, TimestampMixin, User
from core.utils import attendance as rules
from core.utils.audit import log_action
from core.utils.http import error, parse_json_body

logger = logging.getLogger(__name__)


def _location(data):
    """(lat, lng) from the request body, or None when absent or not a real position."""
    return rules.parse_coordinates(data.get('latitude'), data.get('longitude'))


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def attend(request, token):
    """
    GET  /api/public/attend/<token> – validate the link and describe the session.
    POST /api/public/attend/<token> – body: {index_number, latitude?, longitude?}
    """
    if request.method == 'GET':
        link = AttendanceLink.objects.select_related('session').filter(token=token).first()
        try:
            # Location is checked on submit, not while the page loads
            rules.check_link(link, verify_location=False)
        except rules.AttendanceError as exc:
            return error(exc.message, status=exc.status, code=exc.code, valid=False)

        session = link.session
        return JsonResponse({
            'valid': True,
            'session': {
                'id': str(session.id),
                'course_code': session.course_code,
                'course_name': session.course_name,
                'lecturer_name': session.lecturer_name,
                'venue': session.venue,
            },
            'expires_at': link.expires_at,
            'requires_location': link.requires_location,
        })

    data, err = parse_json_body(request)
    if err:
        return err
    index_number = str(data.get('index_number') or '').strip()
    if not index_number:
        return error('index_number is required')

    student = Student.objects.filter(index_number=index_number).first()
    if student is None:
        return error('Student not found', status=404, code='STUDENT_NOT_FOUND')

    try:
        record = rules.mark_with_link(token, student, _location(data))
    except rules.AttendanceError as exc:
        return error(exc.message, status=exc.status, code=exc.code)

    return JsonResponse({
        'message': 'Attendance marked. Awaiting confirmation by the session owner.',
        'record': {
            'id': str(record.id),
            'index_number': student.index_number,
            'student_name': student.full_name,
            'check_in_time': record.check_in_time,
            'is_confirmed': record.is_confirmed,
        },
    }, status=201)


# ── Handler self-registration ───────────────────────────────────────────────

PHONE_RE = re.compile(r'^(\+233|0)[0-9]{9}$')
REGISTRATION_FIELDS = ('qr_token', 'username', 'email', 'first_name', 'last_name', 'phone', 'password')


@csrf_exempt
@never_cache
@require_POST
def register(request):
    """
    POST /api/public/register

    Body: {qr_token, username, email, first_name, last_name, phone, password}.
    Creates an invigilator account in the QR code's department, consumes the
    token and signs the new user in.
    """
    data, err = parse_json_body(request)
    if err:
        return err
    values = {name: str(data.get(name) or '').strip() for name in REGISTRATION_FIELDS}
    values['password'] = str(data.get('password') or '')
    values['email'] = values['email'].lower()
    missing = [name for name in REGISTRATION_FIELDS if not values[name]]
    if missing:
        return error(f"Missing required fields: {', '.join(missing)}")
    if not PHONE_RE.match(values['phone']):
        return error('Invalid phone number format')

    with transaction.atomic():
        session = RegistrationSession.objects.select_for_update().filter(
            qr_token=values['qr_token'],
        ).first()
        if session is None:
            return error('Invalid QR code', code='INVALID_TOKEN')
        if session.used:
            return error('QR code has already been used', code='TOKEN_USED')
        if session.expires_at <= TimestampMixin.utc_timestamp():
            return error('QR code has expired', code='TOKEN_EXPIRED')

        if User.objects.filter(username=values['username']).exists():
            return error('Username already exists', status=409)
        if User.objects.filter(email=values['email']).exists():
            return error('Email already exists', status=409)
        if User.objects.filter(phone=values['phone']).exists():
            return error('Phone number is already registered', status=409)

        user = User(
            username=values['username'],
            email=values['email'],
            first_name=values['first_name'],
            last_name=values['last_name'],
            phone=values['phone'],
            department=session.department,
            role=User.ROLE_INVIGILATOR,
        )
        try:
            validate_password(values['password'], user)
        except ValidationError as exc:
            return error('Password rejected', details=exc.messages)
        user.set_password(values['password'])
        user.save()

        session.used = True
        session.used_at = TimestampMixin.utc_timestamp()
        session.registered_user = user
        session.save(update_fields=['used', 'used_at', 'registered_user'])

    login(request, user, backend='django.contrib.auth.backends.ModelBackend')
    log_action(request, 'USER_REGISTERED_QR', 'User', user.pk, {
        'registration_session_id': str(session.id),
        'department': session.department,
    }, user=user)
    logger.info('Handler %s self-registered for %s', user.username, session.department)
    return JsonResponse({'message': 'Registration successful', 'user': user.to_dict()}, status=201)
