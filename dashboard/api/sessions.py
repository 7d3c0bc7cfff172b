"""
Dashboard API – Exam sessions (batches): CRUD, status editor, end exam,
QR labels, expected students and the session manifest.
"""
import logging
from datetime import datetime, timezone

from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.db.models import Count, Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from core.events import ATTENDANCE_SESSION_ENDED, publish
from core.models import (
    ExamAttendance, ExamSession, ExamSessionStudent, Incident, Student,
    TimestampMixin, User,
)
from core.utils.audit import log_action
from core.utils.batches import establish_initial_custody, set_batch_status
from core.utils.csv_import import CsvImportError, decode_upload, parse_index_numbers_csv
from core.utils.custody import allowed_transitions, current_custodian, is_valid_transition
from core.utils.http import error, paginate, parse_date, parse_int, parse_json_body, parse_uuid
from core.utils.incidents import create_incident
from core.utils.permissions import admin_required, role_required
from core.utils.qr import qr_data_url

from .reports import csv_response, pdf_response, pdf_styles, pdf_table

logger = logging.getLogger(__name__)

EDITOR_ROLES = (User.ROLE_LECTURER,)
STATUS_ROLES = (User.ROLE_LECTURER, User.ROLE_DEPARTMENT_HEAD, User.ROLE_FACULTY_OFFICER)
INVIGILATION_ROLES = (User.ROLE_INVIGILATOR, User.ROLE_LECTURER)

UPDATABLE_TEXT_FIELDS = (
    'course_code', 'course_name', 'lecturer_name', 'department', 'faculty', 'venue', 'notes',
)


def _parse_time(value):
    try:
        return datetime.strptime(str(value), '%H:%M').time()
    except ValueError:
        return None


def _session_fields(data, partial=False):
    """
    Validate create/update input.

    Returns (fields, error_message). With ``partial`` only the keys present
    in ``data`` are validated and returned.
    """
    fields = {}
    for name in UPDATABLE_TEXT_FIELDS:
        if name in data or not partial:
            fields[name] = str(data.get(name) or '').strip()
    if 'course_code' in fields:
        fields['course_code'] = fields['course_code'].upper()

    if not partial:
        missing = [n for n in ('course_code', 'course_name', 'venue') if not fields[n]]
        if not data.get('exam_date'):
            missing.append('exam_date')
        if missing:
            return None, f"Missing required fields: {', '.join(missing)}"
    elif any(n in fields and not fields[n] for n in ('course_code', 'course_name', 'venue')):
        return None, 'course_code, course_name and venue cannot be empty'

    if 'exam_date' in data or not partial:
        exam_date = parse_date(data.get('exam_date'))
        if exam_date is None:
            return None, 'exam_date must be a date (YYYY-MM-DD)'
        fields['exam_date'] = exam_date

    if data.get('start_time'):
        start_time = _parse_time(data['start_time'])
        if start_time is None:
            return None, 'start_time must be HH:MM'
        fields['start_time'] = start_time
    elif 'start_time' in data:
        fields['start_time'] = None

    for name in ('duration_minutes', 'total_students'):
        if name in data:
            value = parse_int(data[name], minimum=0)
            if value is None:
                return None, f'{name} must be a non-negative integer'
            fields[name] = value

    if 'lecturer_id' in data:
        lecturer = None
        if data['lecturer_id']:
            lecturer_id = parse_uuid(data['lecturer_id'])
            if lecturer_id:
                lecturer = User.objects.filter(pk=lecturer_id).first()
            if lecturer is None:
                return None, 'Lecturer not found'
            if not fields.get('lecturer_name'):
                fields['lecturer_name'] = lecturer.full_name
        fields['lecturer'] = lecturer

    return fields, None


def _custodian_summary(transfers):
    custodian_id = current_custodian(transfers)
    if not custodian_id:
        return None
    holder = next((t.to_handler for t in transfers if t.to_handler_id == custodian_id), None)
    return holder.to_summary() if holder else None


# ── Collection ──────────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'POST'])
def sessions(request):
    """GET/POST /api/dashboard/sessions"""
    if request.method == 'POST':
        return _create_session(request)

    qs = ExamSession.objects.annotate(
        attendance_count=Count('attendances', distinct=True),
        transfer_count=Count('transfers', distinct=True),
    )
    params = request.GET
    for name in ('status', 'department', 'faculty'):
        if params.get(name):
            qs = qs.filter(**{name: params[name]})
    if params.get('course_code'):
        qs = qs.filter(course_code__iexact=params['course_code'])
    if parse_uuid(params.get('lecturer_id')):
        qs = qs.filter(lecturer_id=parse_uuid(params['lecturer_id']))
    if parse_date(params.get('date_from')):
        qs = qs.filter(exam_date__gte=parse_date(params['date_from']))
    if parse_date(params.get('date_to')):
        qs = qs.filter(exam_date__lte=parse_date(params['date_to']))
    search = (params.get('search') or '').strip()
    if search:
        qs = qs.filter(
            Q(course_code__icontains=search) | Q(course_name__icontains=search)
            | Q(lecturer_name__icontains=search) | Q(venue__icontains=search)
        )

    items, pagination = paginate(request, qs.order_by('-exam_date', 'course_code'))
    rows = []
    for session in items:
        row = session.to_dict()
        row['attendance_count'] = session.attendance_count
        row['transfer_count'] = session.transfer_count
        rows.append(row)
    return JsonResponse({'sessions': rows, 'pagination': pagination})


@role_required(*EDITOR_ROLES)
def _create_session(request):
    data, err = parse_json_body(request)
    if err:
        return err

    fields, message = _session_fields(data)
    if message:
        return error(message)

    session = ExamSession.objects.create(created_by=request.user, **fields)
    log_action(request, 'CREATE_EXAM_SESSION', 'ExamSession', session.id, {
        'course_code': session.course_code,
        'batch_qr_code': session.batch_qr_code,
        'exam_date': session.exam_date.isoformat(),
    })
    logger.info('Exam session %s created by %s', session.batch_qr_code, request.user.username)
    return JsonResponse({'message': 'Exam session created', 'exam_session': session.to_dict()}, status=201)


# ── Single session ──────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
def session_detail(request, session_id):
    """GET/PUT/DELETE /api/dashboard/sessions/<id>"""
    if request.method == 'DELETE':
        return _delete_session(request, session_id)
    if request.method in ('PUT', 'PATCH'):
        return _update_session(request, session_id)

    session = get_object_or_404(ExamSession, pk=session_id)
    counts = {
        row['status']: row['n']
        for row in session.attendances.values('status').annotate(n=Count('id'))
    }
    transfers = list(
        session.transfers.select_related('from_handler', 'to_handler').order_by('requested_at')
    )
    data = session.to_dict()
    data['attendance'] = {
        'total': sum(counts.values()),
        'by_status': counts,
        'expected': session.expected_students.count(),
    }
    data['transfers'] = [t.to_dict() for t in transfers]
    data['current_custodian'] = _custodian_summary(transfers)
    data['allowed_transitions'] = allowed_transitions(session.status)
    return JsonResponse({'exam_session': data})


@role_required(*EDITOR_ROLES)
def _update_session(request, session_id):
    session = get_object_or_404(ExamSession, pk=session_id)
    data, err = parse_json_body(request)
    if err:
        return err
    if 'status' in data:
        return error('Status cannot be changed here; use the status endpoint')

    fields, message = _session_fields(data, partial=True)
    if message:
        return error(message)

    changes = {}
    for name, value in fields.items():
        old = getattr(session, name)
        if old != value:
            changes[name] = {'from': str(old) if old is not None else None,
                             'to': str(value) if value is not None else None}
            setattr(session, name, value)
    if changes:
        session.save()
        log_action(request, 'UPDATE_EXAM_SESSION', 'ExamSession', session.id, changes)
    return JsonResponse({'message': 'Exam session updated', 'exam_session': session.to_dict()})


@admin_required
def _delete_session(request, session_id):
    with transaction.atomic():
        session = get_object_or_404(ExamSession.objects.select_for_update(), pk=session_id)
        attendance_count = session.attendances.count()
        if attendance_count:
            return error(
                'Cannot delete exam session with attendance records',
                attendanceCount=attendance_count,
            )
        transfer_count = session.transfers.count()
        if transfer_count:
            return error(
                'Cannot delete exam session with custody transfers',
                transferCount=transfer_count,
            )
        details = {'batch_qr_code': session.batch_qr_code, 'course_code': session.course_code}
        session_pk = session.pk
        session.delete()

    log_action(request, 'DELETE_EXAM_SESSION', 'ExamSession', session_pk, details)
    return JsonResponse({'message': 'Exam session deleted'})


# ── Status editor ───────────────────────────────────────────────────────────

@login_required
@require_POST
@role_required(*STATUS_ROLES)
def update_status(request, session_id):
    """
    POST /api/dashboard/sessions/<id>/status – body: {status, reason?}

    Admins may set any status; other roles follow the batch workflow.
    """
    data, err = parse_json_body(request)
    if err:
        return err

    new_status = data.get('status')
    if new_status not in ExamSession.STATUSES:
        return error(
            f'Invalid status. Must be one of: {", ".join(ExamSession.STATUSES)}',
            validStatuses=ExamSession.STATUSES,
        )
    reason = (data.get('reason') or '').strip()

    with transaction.atomic():
        session = get_object_or_404(ExamSession.objects.select_for_update(), pk=session_id)
        current = session.status
        if current == new_status:
            return error(f'Exam session is already {new_status}', currentStatus=current)
        if not request.user.is_admin and not is_valid_transition(current, new_status):
            allowed = allowed_transitions(current)
            return error(
                f"Cannot transition from {current} to {new_status}. "
                f"Allowed transitions: {', '.join(allowed) or 'none'}",
                currentStatus=current,
                allowedTransitions=allowed,
            )

        set_batch_status(session, new_status, request.user, reason=reason or 'Manual status change')

        custody = None
        if new_status == ExamSession.STATUS_SUBMITTED:
            custody = establish_initial_custody(session, request.user, session.attendances.count())

    log_action(request, 'UPDATE_EXAM_SESSION_STATUS', 'ExamSession', session.id, {
        'old_status': current,
        'new_status': new_status,
        'reason': reason or None,
        'initial_custody_transfer': str(custody.id) if custody else None,
    })
    return JsonResponse({
        'message': f'Status updated to {new_status}',
        'exam_session': session.to_dict(),
        'previous_status': current,
    })


@login_required
@require_POST
@role_required(*INVIGILATION_ROLES)
def end_exam(request, session_id):
    """
    POST /api/dashboard/sessions/<id>/end

    Closes an IN_PROGRESS exam: settles attendance, establishes custody with
    the submitting handler and raises incidents for unaccounted scripts.
    """
    now = TimestampMixin.utc_timestamp()
    with transaction.atomic():
        session = get_object_or_404(ExamSession.objects.select_for_update(), pk=session_id)
        if session.status != ExamSession.STATUS_IN_PROGRESS:
            return error(
                f'Cannot end session. Current status is {session.status}. '
                f'Only IN_PROGRESS sessions can be ended.',
                currentStatus=session.status,
            )

        session.attendances.filter(
            entry_time__isnull=False, exit_time__isnull=False,
        ).exclude(status=ExamAttendance.STATUS_SUBMITTED).update(
            status=ExamAttendance.STATUS_SUBMITTED, submission_time=now, updated_at=now,
        )
        set_batch_status(session, ExamSession.STATUS_SUBMITTED, request.user, reason='Exam ended')

        submitted = session.attendances.filter(status=ExamAttendance.STATUS_SUBMITTED).count()
        custody = establish_initial_custody(session, request.user, submitted) if submitted else None

        unaccounted = list(
            session.attendances.filter(
                entry_time__isnull=False, submission_time__isnull=True, exit_time__isnull=True,
            ).select_related('student')
        )
        incidents = []
        for attendance in unaccounted:
            student = attendance.student
            entered = datetime.fromtimestamp(attendance.entry_time, timezone.utc).strftime('%H:%M')
            incidents.append(create_incident(
                request.user,
                notes='Raised automatically when the exam ended',
                type=Incident.TYPE_PROCEDURAL_VIOLATION,
                severity=Incident.SEVERITY_LOW,
                title=f'Student entry recorded without submission - {student.index_number}',
                description=(
                    f'Student {student.full_name} ({student.index_number}) entered the exam '
                    f'at {entered} UTC but did not submit a script or record an exit.'
                ),
                location=session.venue,
                student=student,
                exam_session=session,
            ))

    log_action(request, 'END_EXAM_SESSION', 'ExamSession', session.id, {
        'status_change': {'from': ExamSession.STATUS_IN_PROGRESS, 'to': ExamSession.STATUS_SUBMITTED},
        'scripts_count': submitted,
        'discrepancies_found': len(unaccounted),
    })
    publish(
        ATTENDANCE_SESSION_ENDED,
        exam_session_id=str(session.id),
        scripts_count=submitted,
        end_time=now,
    )
    return JsonResponse({
        'message': 'Exam session ended successfully',
        'exam_session': {
            'id': str(session.id),
            'status': session.status,
            'scripts_count': submitted,
        },
        'initial_custody_transfer': custody.to_dict() if custody else None,
        'incidents_created': [i.incident_number for i in incidents],
    })


# ── QR labels and lookups ───────────────────────────────────────────────────

@login_required
@require_GET
def session_qr_code(request, session_id):
    """GET /api/dashboard/sessions/<id>/qr-code"""
    session = get_object_or_404(ExamSession, pk=session_id)
    payload = session.qr_payload(datetime.now(timezone.utc).isoformat())
    return JsonResponse({
        'batch_qr_code': session.batch_qr_code,
        'qr_code': qr_data_url(payload),
        'payload': payload,
    })


@login_required
@require_GET
def session_by_qr(request, batch_qr_code):
    """GET /api/dashboard/sessions/by-qr/<batch_qr_code> – resolve a scanned batch label."""
    session = get_object_or_404(ExamSession, batch_qr_code=batch_qr_code)
    transfers = list(
        session.transfers.select_related('from_handler', 'to_handler').order_by('requested_at')
    )
    data = session.to_dict()
    data['current_custodian'] = _custodian_summary(transfers)
    return JsonResponse({'exam_session': data})


@login_required
@require_GET
def departments(request):
    """GET /api/dashboard/sessions/departments"""
    values = (
        ExamSession.objects.exclude(department='')
        .order_by('department').values_list('department', flat=True).distinct()
    )
    return JsonResponse({'departments': list(values)})


@login_required
@require_GET
def faculties(request):
    """GET /api/dashboard/sessions/faculties"""
    values = (
        ExamSession.objects.exclude(faculty='')
        .order_by('faculty').values_list('faculty', flat=True).distinct()
    )
    return JsonResponse({'faculties': list(values)})


# ── Expected students ───────────────────────────────────────────────────────

def _index_numbers_from_request(request):
    """Index numbers from an uploaded CSV (``file``) or a JSON ``index_numbers`` list."""
    upload = request.FILES.get('file')
    if upload is not None:
        return parse_index_numbers_csv(decode_upload(upload.read()))

    data, err = parse_json_body(request)
    if err:
        raise CsvImportError('Invalid JSON body')
    numbers = data.get('index_numbers')
    if not isinstance(numbers, list):
        raise CsvImportError('index_numbers must be a list')
    cleaned = []
    for value in numbers:
        value = str(value).strip()
        if value and value not in cleaned:
            cleaned.append(value)
    if not cleaned:
        raise CsvImportError('index_numbers must contain at least one index number')
    return cleaned


@login_required
@require_http_methods(['GET', 'POST'])
def expected_students(request, session_id):
    """GET/POST /api/dashboard/sessions/<id>/expected-students"""
    session = get_object_or_404(ExamSession, pk=session_id)

    if request.method == 'GET':
        attendance = {
            a.student_id: a for a in ExamAttendance.objects.filter(exam_session=session)
        }
        rows = []
        for link in session.expected_students.select_related('student').order_by('student__index_number'):
            record = attendance.get(link.student_id)
            row = link.student.to_dict()
            row['attendance_status'] = record.status if record else None
            row['entry_time'] = record.entry_time if record else None
            rows.append(row)
        return JsonResponse({'students': rows, 'total': len(rows)})

    if not request.user.has_role(*INVIGILATION_ROLES):
        return error('Insufficient permissions', status=403)
    try:
        index_numbers = _index_numbers_from_request(request)
    except CsvImportError as exc:
        return error(str(exc))

    with transaction.atomic():
        existing = {s.index_number: s for s in Student.objects.filter(index_number__in=index_numbers)}
        students_created = 0
        for number in index_numbers:
            if number not in existing:
                existing[number] = Student.objects.create(
                    index_number=number, first_name='Unknown', last_name='Unknown',
                    program='Unknown', level=100,
                )
                students_created += 1

        already = set(
            session.expected_students.filter(student__index_number__in=index_numbers)
            .values_list('student__index_number', flat=True)
        )
        added = 0
        for number in index_numbers:
            if number in already:
                continue
            ExamSessionStudent.objects.create(exam_session=session, student=existing[number])
            added += 1

    log_action(request, 'ADD_EXPECTED_STUDENTS', 'ExamSession', session.id, {
        'added': added, 'students_created': students_created, 'skipped': len(already),
    })
    return JsonResponse({
        'message': f'{added} student(s) added to exam session',
        'added': added,
        'skipped': len(already),
        'students_created': students_created,
    }, status=201)


@login_required
@require_http_methods(['DELETE'])
@role_required(*INVIGILATION_ROLES)
def remove_expected_student(request, session_id, student_id):
    """DELETE /api/dashboard/sessions/<id>/expected-students/<student_id>"""
    link = get_object_or_404(ExamSessionStudent, exam_session_id=session_id, student_id=student_id)
    link.delete()
    log_action(request, 'REMOVE_EXPECTED_STUDENT', 'ExamSession', session_id, {
        'student_id': str(student_id),
    })
    return JsonResponse({'message': 'Student removed from exam session'})


@login_required
@require_GET
def export_expected_students(request, session_id):
    """GET /api/dashboard/sessions/<id>/expected-students/export"""
    session = get_object_or_404(ExamSession, pk=session_id)
    attendance = {
        a.student_id: a.status for a in ExamAttendance.objects.filter(exam_session=session)
    }
    rows = [
        [s.index_number, s.first_name, s.last_name, s.program, s.level, attendance.get(s.id, 'NOT_ARRIVED')]
        for s in Student.objects.filter(expected_sessions__exam_session=session).order_by('index_number')
    ]
    return csv_response(
        ['indexNumber', 'firstName', 'lastName', 'program', 'level', 'attendanceStatus'],
        rows,
        f'{session.course_code}_{session.exam_date}_expected_students.csv',
    )


@login_required
@require_GET
def attendance_summary(request, session_id):
    """GET /api/dashboard/sessions/<id>/attendance-summary – expected vs actual."""
    session = get_object_or_404(ExamSession, pk=session_id)
    expected = list(
        Student.objects.filter(expected_sessions__exam_session=session).order_by('index_number')
    )
    records = {a.student_id: a for a in ExamAttendance.objects.filter(exam_session=session)}

    counts = {status: 0 for status, _ in ExamAttendance.STATUS_CHOICES}
    for record in records.values():
        counts[record.status] += 1
    attended = len(records)
    submitted = counts[ExamAttendance.STATUS_SUBMITTED]

    return JsonResponse({
        'exam_session_id': str(session.id),
        'summary': {
            'expected': len(expected),
            'attended': attended,
            'submitted': submitted,
            'present': counts[ExamAttendance.STATUS_PRESENT],
            'left_without_submitting': counts[ExamAttendance.STATUS_LEFT_WITHOUT_SUBMITTING],
            'attendance_rate': round(attended / len(expected) * 100, 2) if expected else 0,
            'submission_rate': round(submitted / attended * 100, 2) if attended else 0,
        },
        'not_arrived': [s.to_dict() for s in expected if s.id not in records],
    })


# ── Manifest ────────────────────────────────────────────────────────────────

@login_required
@require_GET
def session_manifest_pdf(request, session_id):
    """GET /api/dashboard/sessions/<id>/manifest.pdf – session, students and custody chain."""
    from reportlab.lib.units import inch
    from reportlab.platypus import Paragraph, Spacer

    session = get_object_or_404(ExamSession, pk=session_id)
    styles = pdf_styles()
    elements = [
        Paragraph(f'Exam Script Manifest – {session.course_code} {session.course_name}', styles['title']),
    ]

    elements.append(pdf_table([
        ['Batch', session.batch_qr_code],
        ['Date', f"{session.exam_date} {session.start_time.strftime('%H:%M') if session.start_time else ''}"],
        ['Venue', session.venue],
        ['Lecturer', session.lecturer_name or '-'],
        ['Department', session.department or '-'],
        ['Status', session.get_status_display()],
    ], col_widths=[1.5 * inch, 5.5 * inch], header=False))
    elements.append(Spacer(1, 0.2 * inch))

    records = {
        a.student_id: a for a in ExamAttendance.objects.filter(exam_session=session).select_related('student')
    }
    students = list(
        Student.objects.filter(expected_sessions__exam_session=session).order_by('index_number')
    ) or sorted((a.student for a in records.values()), key=lambda s: s.index_number)

    elements.append(Paragraph(f'Students ({len(students)})', styles['heading']))
    rows = [['#', 'Index Number', 'Name', 'Status']]
    for i, student in enumerate(students, 1):
        record = records.get(student.id)
        rows.append([
            i, student.index_number, student.full_name,
            record.get_status_display() if record else 'Not arrived',
        ])
    elements.append(pdf_table(rows, col_widths=[0.5 * inch, 1.6 * inch, 3.2 * inch, 1.7 * inch]))
    elements.append(Spacer(1, 0.2 * inch))

    transfers = session.transfers.select_related('from_handler', 'to_handler').order_by('requested_at')
    elements.append(Paragraph('Custody Chain', styles['heading']))
    rows = [['Requested', 'From', 'To', 'Expected', 'Received', 'Status']]
    for transfer in transfers:
        rows.append([
            transfer.requested_at.strftime('%Y-%m-%d %H:%M'),
            transfer.from_handler.full_name,
            transfer.to_handler.full_name,
            transfer.exams_expected,
            transfer.exams_received if transfer.exams_received is not None else '-',
            transfer.get_status_display(),
        ])
    elements.append(pdf_table(rows))

    log_action(request, 'EXPORT_SESSION_MANIFEST', 'ExamSession', session.id)
    return pdf_response(elements, f'{session.batch_qr_code}_manifest.pdf')
