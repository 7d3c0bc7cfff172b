"""
Tracking API – Exam attendance endpoints (entry, exit, script submission, discrepancy notes).
"""
from django.contrib.auth.decorators import login_required
from django.db import IntegrityError, transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from core.events import ATTENDANCE_RECORDED, publish
from core.models import ExamAttendance, ExamSession, Student, TimestampMixin, User
from core.utils.audit import log_action
from core.utils.batches import set_batch_status
from core.utils.http import error, parse_json_body, parse_uuid
from core.utils.permissions import role_required

RECORDING_ROLES = (User.ROLE_INVIGILATOR, User.ROLE_LECTURER)
OPEN_FOR_ENTRY = (ExamSession.STATUS_NOT_STARTED, ExamSession.STATUS_IN_PROGRESS)


def _find_student(data):
    if data.get('student_id'):
        student_id = parse_uuid(data['student_id'])
        return Student.objects.filter(pk=student_id).first() if student_id else None
    if data.get('index_number'):
        return Student.objects.filter(index_number=str(data['index_number']).strip()).first()
    return None


def _locked(queryset, pk):
    """Row-locked lookup; None for a missing or malformed id."""
    if pk is None:
        return None
    return queryset.select_for_update().filter(pk=pk).first()


def _attendance_payload(attendance):
    data = attendance.to_dict()
    data['student'] = attendance.student.to_dict()
    return data


@login_required
@require_POST
@role_required(*RECORDING_ROLES)
def record_entry(request):
    """POST /api/attendance/entry – body: {exam_session_id, student_id | index_number}"""
    data, err = parse_json_body(request)
    if err:
        return err

    student = _find_student(data)
    if student is None:
        return error('Student not found', status=404)

    session_id = parse_uuid(data.get('exam_session_id'))
    with transaction.atomic():
        session = _locked(ExamSession.objects, session_id)
        if session is None:
            return error('Exam session not found', status=404)

        if session.status not in OPEN_FOR_ENTRY:
            return error(
                'Cannot record attendance. Exam session has already ended or is not active',
                currentStatus=session.status,
            )

        existing = ExamAttendance.objects.filter(student=student, exam_session=session).first()
        if existing:
            return error(
                'Student has already entered this exam session',
                status=409, attendance=existing.to_dict(),
            )

        try:
            with transaction.atomic():
                attendance = ExamAttendance.objects.create(
                    student=student,
                    exam_session=session,
                    entry_time=TimestampMixin.utc_timestamp(),
                    status=ExamAttendance.STATUS_PRESENT,
                    recorded_by=request.user,
                )
        except IntegrityError:
            return error('Student has already entered this exam session', status=409)

        # First student through the door starts the exam
        if session.status == ExamSession.STATUS_NOT_STARTED:
            set_batch_status(
                session, ExamSession.STATUS_IN_PROGRESS, request.user,
                reason='First attendance recorded',
            )

    log_action(request, 'RECORD_ENTRY', 'ExamAttendance', attendance.id, {
        'student_id': str(student.id),
        'exam_session_id': str(session.id),
    })
    publish(
        ATTENDANCE_RECORDED,
        exam_session_id=str(session.id),
        student_id=str(student.id),
        index_number=student.index_number,
        status=attendance.status,
        entry_time=attendance.entry_time,
    )
    return JsonResponse({
        'message': 'Student entry recorded successfully',
        'attendance': _attendance_payload(attendance),
        'exam_session_status': session.status,
    }, status=201)


@login_required
@require_POST
@role_required(*RECORDING_ROLES)
def record_exit(request):
    """POST /api/attendance/exit – body: {attendance_id}"""
    data, err = parse_json_body(request)
    if err:
        return err

    attendance_id = parse_uuid(data.get('attendance_id'))
    with transaction.atomic():
        attendance = _locked(ExamAttendance.objects.select_related('student'), attendance_id)
        if attendance is None:
            return error('Attendance record not found', status=404)
        if attendance.exit_time:
            return error('Student exit already recorded', attendance=attendance.to_dict())

        attendance.exit_time = TimestampMixin.utc_timestamp()
        attendance.status = (
            ExamAttendance.STATUS_SUBMITTED if attendance.submission_time
            else ExamAttendance.STATUS_LEFT_WITHOUT_SUBMITTING
        )
        attendance.save(update_fields=['exit_time', 'status'])

    log_action(request, 'RECORD_EXIT', 'ExamAttendance', attendance.id, {'status': attendance.status})
    return JsonResponse({
        'message': 'Student exit recorded successfully',
        'attendance': _attendance_payload(attendance),
    })


@login_required
@require_POST
@role_required(*RECORDING_ROLES)
def record_submission(request):
    """POST /api/attendance/submission – body: {attendance_id}"""
    data, err = parse_json_body(request)
    if err:
        return err

    attendance_id = parse_uuid(data.get('attendance_id'))
    with transaction.atomic():
        attendance = _locked(ExamAttendance.objects.select_related('student'), attendance_id)
        if attendance is None:
            return error('Attendance record not found', status=404)
        if attendance.submission_time:
            return error('Script submission already recorded', attendance=attendance.to_dict())

        attendance.submission_time = TimestampMixin.utc_timestamp()
        attendance.status = ExamAttendance.STATUS_SUBMITTED
        attendance.save(update_fields=['submission_time', 'status'])

    log_action(request, 'RECORD_SUBMISSION', 'ExamAttendance', attendance.id)
    return JsonResponse({
        'message': 'Script submission recorded successfully',
        'attendance': _attendance_payload(attendance),
    })


@login_required
@require_POST
@role_required(*RECORDING_ROLES)
def update_discrepancy(request, attendance_id):
    """POST /api/attendance/<id>/discrepancy – body: {discrepancy_note}"""
    data, err = parse_json_body(request)
    if err:
        return err

    attendance = get_object_or_404(ExamAttendance.objects.select_related('student'), pk=attendance_id)
    note = (data.get('discrepancy_note') or '').strip()
    if not note:
        return error('discrepancy_note is required')

    previous = attendance.discrepancy_note
    attendance.discrepancy_note = note
    attendance.save(update_fields=['discrepancy_note'])

    log_action(request, 'UPDATE_ATTENDANCE_DISCREPANCY', 'ExamAttendance', attendance.id, {
        'previous': previous or None,
        'new': note,
    })
    return JsonResponse({
        'message': 'Discrepancy note updated successfully',
        'attendance': _attendance_payload(attendance),
    })


@login_required
@require_GET
def get_attendance(request):
    """GET /api/attendance?student_id=&exam_session_id="""
    student_id = parse_uuid(request.GET.get('student_id'))
    session_id = parse_uuid(request.GET.get('exam_session_id'))
    if not student_id or not session_id:
        return error('Both student_id and exam_session_id are required')

    attendance = get_object_or_404(
        ExamAttendance.objects.select_related('student'),
        student_id=student_id, exam_session_id=session_id,
    )
    return JsonResponse({'attendance': _attendance_payload(attendance)})


@login_required
@require_GET
def session_attendance(request, session_id):
    """GET /api/attendance/session/<id> – every record of an exam session."""
    session = get_object_or_404(ExamSession, pk=session_id)
    records = (
        ExamAttendance.objects.filter(exam_session=session)
        .select_related('student').order_by('entry_time')
    )
    counts = {}
    payload = []
    for record in records:
        counts[record.status] = counts.get(record.status, 0) + 1
        payload.append(_attendance_payload(record))

    return JsonResponse({
        'exam_session_id': str(session.id),
        'total': len(payload),
        'by_status': counts,
        'attendances': payload,
    })
