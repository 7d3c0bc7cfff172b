"""
Dashboard API – Students: CRUD, QR cards, profile pictures and CSV roster import.
"""
import logging
from datetime import datetime, timezone

from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.db import IntegrityError, transaction
from django.db.models import ProtectedError, Q
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from core.models import Student, User
from core.utils.audit import log_action
from core.utils.csv_import import CSV_TEMPLATE, CsvImportError, decode_upload, parse_students_csv
from core.utils.http import error, paginate, parse_int, parse_json_body
from core.utils.permissions import admin_required, role_required
from core.utils.qr import qr_data_url

logger = logging.getLogger(__name__)

STUDENT_EDIT_ROLES = (User.ROLE_INVIGILATOR, User.ROLE_LECTURER)
TEXT_FIELDS = ('index_number', 'first_name', 'last_name', 'program')


def _student_fields(data, partial=False):
    """Returns (fields, error_message)."""
    fields = {}
    for name in TEXT_FIELDS:
        if name in data or not partial:
            fields[name] = str(data.get(name) or '').strip()
    missing = [name for name, value in fields.items() if not value]
    if 'level' in data or not partial:
        level = parse_int(data.get('level'), minimum=0)
        if level is None:
            if data.get('level') in (None, ''):
                missing.append('level')
            else:
                return None, f'Level must be a valid number, got "{data.get("level")}"'
        fields['level'] = level
    if missing:
        return None, f"Missing required fields: {', '.join(missing)}"
    return fields, None


# ── Collection ──────────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'POST'])
def students(request):
    """GET/POST /api/dashboard/students"""
    if request.method == 'POST':
        return _create_student(request)

    qs = Student.objects.all()
    search = (request.GET.get('search') or '').strip()
    if search:
        qs = qs.filter(
            Q(index_number__icontains=search) | Q(first_name__icontains=search)
            | Q(last_name__icontains=search) | Q(program__icontains=search)
        )
    if request.GET.get('program'):
        qs = qs.filter(program__iexact=request.GET['program'])
    level = parse_int(request.GET.get('level'))
    if level is not None:
        qs = qs.filter(level=level)

    items, pagination = paginate(request, qs.order_by('index_number'))
    return JsonResponse({'students': [s.to_dict() for s in items], 'pagination': pagination})


@role_required(*STUDENT_EDIT_ROLES)
def _create_student(request):
    data, err = parse_json_body(request)
    if err:
        return err
    fields, message = _student_fields(data)
    if message:
        return error(message)

    if Student.objects.filter(index_number=fields['index_number']).exists():
        return error('Student with this index number already exists', status=409)
    try:
        with transaction.atomic():
            student = Student.objects.create(**fields)
    except IntegrityError:
        return error('Student with this index number already exists', status=409)

    log_action(request, 'CREATE_STUDENT', 'Student', student.id, {'index_number': student.index_number})
    return JsonResponse({'message': 'Student created', 'student': student.to_dict()}, status=201)


# ── Single student ──────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
def student_detail(request, student_id):
    """GET/PUT/DELETE /api/dashboard/students/<id>"""
    student = get_object_or_404(Student, pk=student_id)
    if request.method == 'GET':
        data = student.to_dict()
        data['exam_attendances'] = [a.to_dict() for a in student.exam_attendances.all()]
        return JsonResponse({'student': data})
    if request.method == 'DELETE':
        return _delete_student(request, student)
    return _update_student(request, student)


@role_required(*STUDENT_EDIT_ROLES)
def _update_student(request, student):
    data, err = parse_json_body(request)
    if err:
        return err
    fields, message = _student_fields(data, partial=True)
    if message:
        return error(message)

    new_index = fields.get('index_number')
    if new_index and new_index != student.index_number and \
            Student.objects.filter(index_number=new_index).exists():
        return error('Student with this index number already exists', status=409)

    for name, value in fields.items():
        setattr(student, name, value)
    student.save()
    log_action(request, 'UPDATE_STUDENT', 'Student', student.id, {'fields': sorted(fields)})
    return JsonResponse({'message': 'Student updated', 'student': student.to_dict()})


@admin_required
def _delete_student(request, student):
    details = {'index_number': student.index_number}
    student_pk = student.pk
    try:
        student.delete()
    except ProtectedError:
        return error('Cannot delete student with exam attendance records')
    log_action(request, 'DELETE_STUDENT', 'Student', student_pk, details)
    return JsonResponse({'message': 'Student deleted'})


@login_required
@require_GET
def student_qr_code(request, student_id):
    """GET /api/dashboard/students/<id>/qr-code"""
    student = get_object_or_404(Student, pk=student_id)
    payload = student.qr_payload(datetime.now(timezone.utc).isoformat())
    return JsonResponse({'qr_code': qr_data_url(payload), 'payload': payload})


@login_required
@require_POST
@role_required(*STUDENT_EDIT_ROLES)
def upload_picture(request, student_id):
    """POST /api/dashboard/students/<id>/picture – multipart field ``picture``."""
    student = get_object_or_404(Student, pk=student_id)
    upload = request.FILES.get('picture')
    if upload is None:
        return error('No file uploaded')

    ext = upload.name.rsplit('.', 1)[-1].lower() if '.' in upload.name else ''
    if ext not in settings.STUDENT_PICTURE_EXTENSIONS:
        return error(
            'Only image files are allowed: ' + ', '.join(settings.STUDENT_PICTURE_EXTENSIONS),
        )
    if upload.size > settings.STUDENT_PICTURE_MAX_BYTES:
        limit_mb = settings.STUDENT_PICTURE_MAX_BYTES // (1024 * 1024)
        return error(f'File too large. Maximum size is {limit_mb}MB')

    if student.profile_picture:
        student.profile_picture.delete(save=False)
    student.profile_picture.save(upload.name, upload, save=False)
    student.save(update_fields=['profile_picture'])

    log_action(request, 'UPLOAD_STUDENT_PICTURE', 'Student', student.id)
    return JsonResponse({'message': 'Profile picture uploaded', 'student': student.to_dict()})


# ── CSV roster ──────────────────────────────────────────────────────────────

@login_required
@require_POST
@role_required(*STUDENT_EDIT_ROLES)
def import_students(request):
    """
    POST /api/dashboard/students/import – multipart field ``file``.

    The whole file is validated first; existing index numbers are skipped.
    """
    upload = request.FILES.get('file')
    if upload is None:
        return error('No file uploaded')
    if not upload.name.lower().endswith('.csv'):
        return error('Only CSV files are allowed')

    try:
        rows = parse_students_csv(decode_upload(upload.read()))
    except CsvImportError as exc:
        logger.warning('Student CSV rejected (%s): %s', upload.name, exc)
        return error(str(exc))

    existing = set(
        Student.objects.filter(index_number__in=[r['index_number'] for r in rows])
        .values_list('index_number', flat=True)
    )
    created, skipped, errors = 0, 0, []
    seen = set()
    for row in rows:
        number = row['index_number']
        if number in existing or number in seen:
            skipped += 1
            errors.append(f'{number}: already exists')
            continue
        seen.add(number)
        try:
            with transaction.atomic():
                Student.objects.create(**row)
        except IntegrityError:
            skipped += 1
            errors.append(f'{number}: already exists')
            continue
        created += 1

    log_action(request, 'IMPORT_STUDENTS', 'Student', '', {
        'filename': upload.name, 'created': created, 'skipped': skipped,
    })
    return JsonResponse({
        'message': f'Imported {created} student(s)',
        'created': created,
        'skipped': skipped,
        'errors': errors,
    })


@login_required
@require_GET
def csv_template(request):
    """GET /api/dashboard/students/template"""
    response = HttpResponse(CSV_TEMPLATE, content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="students_template.csv"'
    return response
