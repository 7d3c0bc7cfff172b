"""
Classroom attendance rules – recording, session control and self-mark links.
"""
import logging
import math
import secrets

from django.db import IntegrityError, transaction

from core.events import ATTENDANCE_RECORDED, ATTENDANCE_SESSION_ENDED, publish
from core.models import AttendanceLink, AttendanceSession, StudentAttendance, TimestampMixin

audit_logger = logging.getLogger('custody.audit')

EARTH_RADIUS_M = 6371000


class AttendanceError(Exception):
    """A rejected attendance operation; ``code`` is stable for API clients."""

    def __init__(self, code, message, status=400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


def haversine_m(lat1, lng1, lat2, lng2):
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def parse_coordinates(lat, lng):
    """(lat, lng) as floats, or None unless both are finite and on the globe."""
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if abs(lat) > 90 or abs(lng) > 180:
        return None
    return lat, lng


# ── Recording ─────────────────────────────────────────────────────────

def record_attendance(session, student, method, status=StudentAttendance.STATUS_PRESENT, link=None):
    """
    Record ``student`` in ``session``.

    The session row is locked so the capacity check and the insert cannot
    interleave with another device recording at the same moment.
    """
    with transaction.atomic():
        session = AttendanceSession.objects.select_for_update().get(pk=session.pk)
        if session.status != AttendanceSession.STATUS_IN_PROGRESS:
            raise AttendanceError(
                'SESSION_NOT_ACTIVE',
                f'Attendance session is {session.status.lower().replace("_", " ")}',
            )
        if StudentAttendance.objects.filter(session=session, student=student).exists():
            raise AttendanceError(
                'ALREADY_RECORDED', 'Attendance already recorded for this student', status=409,
            )
        if session.expected_student_count is not None:
            recorded = StudentAttendance.objects.filter(session=session).count()
            if recorded >= session.expected_student_count:
                raise AttendanceError(
                    'SESSION_FULL',
                    f'Session has reached its expected count of {session.expected_student_count} students',
                )
        try:
            record = StudentAttendance.objects.create(
                session=session,
                student=student,
                method=method,
                status=status,
                link=link,
                # Self-marked records wait for the lecturer to confirm them
                is_confirmed=method != StudentAttendance.METHOD_LINK,
            )
        except IntegrityError:
            raise AttendanceError(
                'ALREADY_RECORDED', 'Attendance already recorded for this student', status=409,
            ) from None

    publish(
        ATTENDANCE_RECORDED,
        session_id=str(session.id),
        student_id=str(student.id),
        index_number=student.index_number,
        method=method,
        is_confirmed=record.is_confirmed,
    )
    return record


# ── Session control ───────────────────────────────────────────────────

def pause_session(session):
    if session.status != AttendanceSession.STATUS_IN_PROGRESS:
        raise AttendanceError('INVALID_STATE', 'Only an in-progress session can be paused')
    session.status = AttendanceSession.STATUS_PAUSED
    session.save(update_fields=['status'])
    return session


def resume_session(session):
    if session.status != AttendanceSession.STATUS_PAUSED:
        raise AttendanceError('INVALID_STATE', 'Only a paused session can be resumed')
    session.status = AttendanceSession.STATUS_IN_PROGRESS
    session.save(update_fields=['status'])
    return session


def end_session(session):
    """Complete the session and switch off every link pointing at it."""
    if session.status not in AttendanceSession.ACTIVE_STATUSES:
        raise AttendanceError('INVALID_STATE', 'Session is not in progress')

    now = TimestampMixin.utc_timestamp()
    with transaction.atomic():
        session.status = AttendanceSession.STATUS_COMPLETED
        session.end_time = now
        session.save(update_fields=['status', 'end_time'])
        session.links.filter(is_active=True).update(
            is_active=False, deactivated_at=now, updated_at=now,
        )

    total = session.records.count()
    audit_logger.info(
        'ATTENDANCE_SESSION_ENDED | session=%s | course=%s | recorded=%d',
        session.id, session.course_code, total,
    )
    publish(
        ATTENDANCE_SESSION_ENDED,
        session_id=str(session.id),
        total_recorded=total,
        end_time=now,
    )
    return session


# ── Links ─────────────────────────────────────────────────────────────

def generate_link(session, user, expires_in_minutes, max_uses=None, geofence=None):
    """Issue a fresh link; earlier links of the session are deactivated."""
    if session.status != AttendanceSession.STATUS_IN_PROGRESS:
        raise AttendanceError('SESSION_NOT_ACTIVE', 'Cannot generate link for inactive session')

    now = TimestampMixin.utc_timestamp()
    geofence = geofence or {}
    with transaction.atomic():
        session.links.filter(is_active=True).update(
            is_active=False, deactivated_at=now, updated_at=now,
        )
        return AttendanceLink.objects.create(
            session=session,
            token=secrets.token_hex(16),
            created_by=user,
            expires_at=now + expires_in_minutes * 60,
            max_uses=max_uses,
            geofence_lat=geofence.get('lat'),
            geofence_lng=geofence.get('lng'),
            geofence_radius_m=geofence.get('radius_m'),
        )


def check_link(link, location=None, verify_location=True):
    """
    Raise AttendanceError when ``link`` cannot be used right now.

    ``location`` is an optional ``(lat, lng)`` pair from the student's device.
    Returns the distance from the venue in metres for geofenced links.
    """
    if link is None:
        raise AttendanceError('LINK_NOT_FOUND', 'Invalid or expired attendance link', status=404)
    if not link.is_active:
        raise AttendanceError('LINK_DEACTIVATED', 'This link has been deactivated')
    if TimestampMixin.utc_timestamp() > link.expires_at:
        raise AttendanceError('LINK_EXPIRED', 'This attendance link has expired')
    if link.max_uses and link.uses_count >= link.max_uses:
        raise AttendanceError('MAX_USES_REACHED', 'This link has reached its maximum usage limit')
    if link.session.status != AttendanceSession.STATUS_IN_PROGRESS:
        raise AttendanceError('SESSION_ENDED', 'This attendance session has ended')

    if not link.requires_location or not verify_location:
        return None
    if location is None:
        raise AttendanceError(
            'LOCATION_REQUIRED', 'Location validation is required for this attendance session',
        )
    distance = haversine_m(link.geofence_lat, link.geofence_lng, location[0], location[1])
    if distance > link.geofence_radius_m:
        raise AttendanceError(
            'OUTSIDE_GEOFENCE',
            f'You must be within {link.geofence_radius_m}m of the venue to mark attendance',
        )
    return round(distance)


def mark_with_link(token, student, location=None):
    """Self-mark ``student`` through the link ``token``; counts one use."""
    with transaction.atomic():
        link = (
            AttendanceLink.objects.select_for_update()
            .select_related('session')
            .filter(token=token)
            .first()
        )
        check_link(link, location)
        record = record_attendance(
            link.session, student, StudentAttendance.METHOD_LINK, link=link,
        )
        link.uses_count += 1
        link.save(update_fields=['uses_count'])
    return record


def revoke_link(link):
    link.is_active = False
    link.deactivated_at = TimestampMixin.utc_timestamp()
    link.save(update_fields=['is_active', 'deactivated_at'])
    return link
