"""
Dashboard API – Incidents: reporting, visibility, status history, comments,
evidence attachments, statistics, templates and exports.
"""
from datetime import datetime, time, timezone
from xml.sax.saxutils import escape

from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from core.models import (
    ExamSession, Incident, IncidentAttachment, IncidentComment, IncidentStatusHistory,
    IncidentTemplate, Student, TimestampMixin, User,
)
from core.utils.audit import log_action
from core.utils.http import error, paginate, parse_json_body, parse_uuid
from core.utils.incidents import create_incident
from core.utils.permissions import admin_required, role_required

from .reports import _format_ts, pdf_response, pdf_styles, pdf_table, xlsx_response

TEMPLATE_ROLES = (User.ROLE_FACULTY_OFFICER,)


def _is_staff(user):
    """Admins and oversight roles see internal comments and non-confidential incidents."""
    return user.is_admin or user.role in User.OVERSIGHT_ROLES


def visible_incidents(user):
    qs = Incident.objects.select_related('reporter', 'assignee', 'student', 'exam_session')
    if user.is_admin:
        return qs
    mine = Q(reporter=user) | Q(assignee=user)
    if user.role in User.OVERSIGHT_ROLES:
        return qs.filter(Q(is_confidential=False) | mine)
    return qs.filter(mine)


def _can_update(user, incident):
    return (
        _is_staff(user)
        or incident.reporter_id == user.pk
        or incident.assignee_id == user.pk
    )


def _filtered(request):
    qs = visible_incidents(request.user)
    params = request.GET
    for name in ('status', 'severity', 'type'):
        if params.get(name):
            qs = qs.filter(**{name: params[name]})
    session_id = parse_uuid(params.get('exam_session_id'))
    if session_id:
        qs = qs.filter(exam_session_id=session_id)
    search = (params.get('search') or '').strip()
    if search:
        qs = qs.filter(
            Q(incident_number__icontains=search) | Q(title__icontains=search)
            | Q(description__icontains=search) | Q(location__icontains=search)
        )
    return qs.order_by('-created_at')


def _lookup(model, value):
    pk = parse_uuid(value)
    return model.objects.filter(pk=pk).first() if pk else None


def _related(data):
    """(student, exam_session, error_message) from optional ids in ``data``."""
    student = session = None
    if data.get('student_id'):
        student = _lookup(Student, data['student_id'])
        if student is None:
            return None, None, 'Student not found'
    if data.get('exam_session_id'):
        session = _lookup(ExamSession, data['exam_session_id'])
        if session is None:
            return None, None, 'Exam session not found'
    return student, session, None


# ── Collection ──────────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'POST'])
def incidents(request):
    """GET/POST /api/dashboard/incidents"""
    if request.method == 'POST':
        return _report_incident(request)

    items, pagination = paginate(request, _filtered(request))
    return JsonResponse({
        'incidents': [i.to_dict(include_related=True) for i in items],
        'pagination': pagination,
    })


def _report_incident(request):
    data, err = parse_json_body(request)
    if err:
        return err

    incident_type = data.get('type')
    if incident_type not in Incident.TYPES:
        return error(f'Invalid type. Must be one of: {", ".join(Incident.TYPES)}')
    severity = data.get('severity') or Incident.SEVERITY_MEDIUM
    if severity not in Incident.SEVERITIES:
        return error(f'Invalid severity. Must be one of: {", ".join(Incident.SEVERITIES)}')
    title = (data.get('title') or '').strip()
    description = (data.get('description') or '').strip()
    if not title or not description:
        return error('title and description are required')

    student, session, message = _related(data)
    if message:
        return error(message, status=404)

    incident = create_incident(
        request.user,
        type=incident_type,
        severity=severity,
        title=title,
        description=description,
        location=(data.get('location') or '').strip(),
        is_confidential=bool(data.get('is_confidential')),
        student=student,
        exam_session=session,
    )
    log_action(request, 'CREATE_INCIDENT', 'Incident', incident.id, {
        'incident_number': incident.incident_number,
        'type': incident.type,
        'severity': incident.severity,
    })
    return JsonResponse({
        'message': 'Incident reported',
        'incident': incident.to_dict(include_related=True),
    }, status=201)


# ── Single incident ─────────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
def incident_detail(request, incident_id):
    """GET/PUT/DELETE /api/dashboard/incidents/<id>"""
    if request.method == 'DELETE':
        return _delete_incident(request, incident_id)

    incident = get_object_or_404(visible_incidents(request.user), pk=incident_id)
    if request.method == 'GET':
        data = incident.to_dict(include_related=True)
        data['status_history'] = [h.to_dict() for h in incident.status_history.all()]
        comments = incident.comments.select_related('author')
        if not _is_staff(request.user):
            comments = comments.filter(is_internal=False)
        data['comments'] = [c.to_dict() for c in comments]
        data['attachments'] = [a.to_dict() for a in incident.attachments.select_related('uploaded_by')]
        return JsonResponse({'incident': data})

    if not _can_update(request.user, incident):
        return error('You are not allowed to update this incident', status=403)
    data, err = parse_json_body(request)
    if err:
        return err
    if 'status' in data:
        return error('Status cannot be changed here; use the status endpoint')

    changes = []
    for name in ('title', 'description', 'location'):
        if name in data:
            value = str(data[name] or '').strip()
            if name != 'location' and not value:
                return error(f'{name} cannot be empty')
            setattr(incident, name, value)
            changes.append(name)
    if 'severity' in data:
        if data['severity'] not in Incident.SEVERITIES:
            return error(f'Invalid severity. Must be one of: {", ".join(Incident.SEVERITIES)}')
        incident.severity = data['severity']
        changes.append('severity')
    if 'type' in data:
        if data['type'] not in Incident.TYPES:
            return error(f'Invalid type. Must be one of: {", ".join(Incident.TYPES)}')
        incident.type = data['type']
        changes.append('type')
    if 'is_confidential' in data:
        incident.is_confidential = bool(data['is_confidential'])
        changes.append('is_confidential')
    if incident.type == Incident.TYPE_MALPRACTICE:
        incident.is_confidential = True

    incident.save()
    log_action(request, 'UPDATE_INCIDENT', 'Incident', incident.id, {'fields': changes})
    return JsonResponse({'message': 'Incident updated', 'incident': incident.to_dict(include_related=True)})


@admin_required
def _delete_incident(request, incident_id):
    incident = get_object_or_404(Incident, pk=incident_id)
    number = incident.incident_number
    incident_pk = incident.pk
    for attachment in incident.attachments.all():
        attachment.file.delete(save=False)
    incident.delete()
    log_action(request, 'DELETE_INCIDENT', 'Incident', incident_pk, {'incident_number': number})
    return JsonResponse({'message': 'Incident deleted'})


def _apply_status(incident, new_status, user, notes='', resolution_notes=''):
    """Set ``new_status`` and append the history row; any status may follow any other."""
    now = TimestampMixin.utc_timestamp()
    previous = incident.status
    incident.status = new_status
    if new_status == Incident.STATUS_INVESTIGATING and not incident.assigned_at:
        incident.assigned_at = now
    elif new_status == Incident.STATUS_RESOLVED:
        incident.resolved_at = now
        if resolution_notes:
            incident.resolution_notes = resolution_notes
    elif new_status == Incident.STATUS_CLOSED:
        incident.closed_at = now
    incident.save()
    IncidentStatusHistory.objects.create(
        incident=incident, from_status=previous, to_status=new_status,
        changed_by=user, notes=notes, timestamp=now,
    )
    return previous


@login_required
@require_POST
def update_incident_status(request, incident_id):
    """POST /api/dashboard/incidents/<id>/status – body: {status, notes?, resolution_notes?}"""
    data, err = parse_json_body(request)
    if err:
        return err
    new_status = data.get('status')
    if new_status not in Incident.STATUSES:
        return error(f'Invalid status. Must be one of: {", ".join(Incident.STATUSES)}')

    with transaction.atomic():
        incident = get_object_or_404(
            visible_incidents(request.user).select_for_update(of=('self',)), pk=incident_id,
        )
        if not _can_update(request.user, incident):
            return error('You are not allowed to update this incident', status=403)
        previous = _apply_status(
            incident, new_status, request.user,
            notes=(data.get('notes') or '').strip(),
            resolution_notes=(data.get('resolution_notes') or '').strip(),
        )

    log_action(request, 'UPDATE_INCIDENT_STATUS', 'Incident', incident.id, {
        'old_status': previous, 'new_status': new_status,
    })
    return JsonResponse({
        'message': f'Incident status updated to {new_status}',
        'incident': incident.to_dict(include_related=True),
    })


@login_required
@require_POST
def assign_incident(request, incident_id):
    """POST /api/dashboard/incidents/<id>/assign – body: {assignee_id}"""
    if not _is_staff(request.user):
        return error('Insufficient permissions', status=403)
    data, err = parse_json_body(request)
    if err:
        return err
    assignee_id = parse_uuid(data.get('assignee_id'))
    assignee = User.objects.filter(pk=assignee_id, is_active=True).first() if assignee_id else None
    if assignee is None:
        return error('Assignee not found', status=404)

    with transaction.atomic():
        incident = get_object_or_404(
            visible_incidents(request.user).select_for_update(of=('self',)), pk=incident_id,
        )
        incident.assignee = assignee
        incident.assigned_at = TimestampMixin.utc_timestamp()
        incident.save()
        if incident.status != Incident.STATUS_INVESTIGATING:
            _apply_status(
                incident, Incident.STATUS_INVESTIGATING, request.user,
                notes=f'Assigned to {assignee.full_name}',
            )

    log_action(request, 'ASSIGN_INCIDENT', 'Incident', incident.id, {'assignee_id': str(assignee.pk)})
    return JsonResponse({'message': 'Incident assigned', 'incident': incident.to_dict(include_related=True)})


@login_required
@require_http_methods(['GET', 'POST'])
def incident_comments(request, incident_id):
    """GET/POST /api/dashboard/incidents/<id>/comments"""
    incident = get_object_or_404(visible_incidents(request.user), pk=incident_id)
    staff = _is_staff(request.user)

    if request.method == 'GET':
        comments = incident.comments.select_related('author')
        if not staff:
            comments = comments.filter(is_internal=False)
        return JsonResponse({'comments': [c.to_dict() for c in comments]})

    data, err = parse_json_body(request)
    if err:
        return err
    content = (data.get('content') or '').strip()
    if not content:
        return error('content is required')
    is_internal = bool(data.get('is_internal'))
    if is_internal and not staff:
        return error('Only staff may add internal comments', status=403)

    comment = IncidentComment.objects.create(
        incident=incident, author=request.user, content=content, is_internal=is_internal,
    )
    log_action(request, 'ADD_INCIDENT_COMMENT', 'Incident', incident.id, {'internal': is_internal})
    return JsonResponse({'message': 'Comment added', 'comment': comment.to_dict()}, status=201)


# ── Attachments ─────────────────────────────────────────────────────────────

def _attachment_error(upload):
    ext = upload.name.rsplit('.', 1)[-1].lower() if '.' in upload.name else ''
    if ext not in settings.INCIDENT_ATTACHMENT_EXTENSIONS:
        return (
            f'Invalid file type: {upload.name}. Allowed: '
            + ', '.join(settings.INCIDENT_ATTACHMENT_EXTENSIONS)
        )
    if upload.size > settings.INCIDENT_ATTACHMENT_MAX_BYTES:
        limit_mb = settings.INCIDENT_ATTACHMENT_MAX_BYTES // (1024 * 1024)
        return f'{upload.name} is too large. Maximum size is {limit_mb}MB'
    return None


@login_required
@require_POST
def upload_attachments(request, incident_id):
    """
    POST /api/dashboard/incidents/<id>/attachments

    Multipart, one or more files under the field ``files``. The whole batch
    is rejected if any file fails validation.
    """
    incident = get_object_or_404(visible_incidents(request.user), pk=incident_id)
    if not _can_update(request.user, incident):
        return error('You are not allowed to add evidence to this incident', status=403)

    uploads = request.FILES.getlist('files')
    if not uploads:
        return error('No files uploaded')
    if len(uploads) > settings.INCIDENT_ATTACHMENT_MAX_FILES:
        return error(f'At most {settings.INCIDENT_ATTACHMENT_MAX_FILES} files per upload')
    for upload in uploads:
        message = _attachment_error(upload)
        if message:
            return error(message)

    attachments = []
    for upload in uploads:
        attachment = IncidentAttachment(
            incident=incident,
            file_name=upload.name,
            file_type=upload.content_type or '',
            file_size=upload.size,
            uploaded_by=request.user,
        )
        attachment.file.save(upload.name, upload, save=False)
        attachment.save()
        attachments.append(attachment)

    log_action(request, 'UPLOAD_INCIDENT_ATTACHMENTS', 'Incident', incident.id, {
        'file_count': len(attachments),
        'files': [a.file_name for a in attachments],
    })
    return JsonResponse({
        'message': 'Attachments uploaded',
        'attachments': [a.to_dict() for a in attachments],
    }, status=201)


@login_required
@require_http_methods(['DELETE'])
def delete_attachment(request, incident_id, attachment_id):
    """DELETE /api/dashboard/incidents/<id>/attachments/<attachment_id>"""
    incident = get_object_or_404(visible_incidents(request.user), pk=incident_id)
    attachment = get_object_or_404(incident.attachments.all(), pk=attachment_id)
    allowed = (
        request.user.is_admin
        or attachment.uploaded_by_id == request.user.pk
        or incident.reporter_id == request.user.pk
        or incident.assignee_id == request.user.pk
    )
    if not allowed:
        return error('You are not allowed to remove this attachment', status=403)

    file_name = attachment.file_name
    attachment.file.delete(save=False)
    attachment.delete()
    log_action(request, 'DELETE_INCIDENT_ATTACHMENT', 'Incident', incident.id, {'file_name': file_name})
    return JsonResponse({'message': 'Attachment deleted'})


# ── Statistics ──────────────────────────────────────────────────────────────

@login_required
@require_GET
def incident_stats(request):
    """GET /api/dashboard/incidents/stats"""
    qs = visible_incidents(request.user)

    def grouped(field):
        return {row[field]: row['n'] for row in qs.order_by().values(field).annotate(n=Count('id'))}

    start_of_day = int(datetime.combine(
        datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc,
    ).timestamp())
    durations = [
        resolved - created
        for created, resolved in qs.filter(resolved_at__isnull=False).values_list('created_at', 'resolved_at')
        if created is not None
    ]

    return JsonResponse({
        'total': qs.count(),
        'byType': grouped('type'),
        'bySeverity': grouped('severity'),
        'byStatus': grouped('status'),
        'openIncidents': qs.exclude(
            status__in=(Incident.STATUS_RESOLVED, Incident.STATUS_CLOSED),
        ).count(),
        'resolvedToday': qs.filter(resolved_at__gte=start_of_day).count(),
        'avgResolutionTimeHours': round(sum(durations) / len(durations) / 3600, 2) if durations else 0,
    })


# ── Templates ───────────────────────────────────────────────────────────────

def _template_fields(data, partial=False):
    fields = {}
    for name in ('name', 'title', 'description'):
        if name in data or not partial:
            fields[name] = str(data.get(name) or '').strip()
    if not partial and (not fields['name'] or not fields['title']):
        return None, 'name and title are required'
    if 'type' in data or not partial:
        if data.get('type') not in Incident.TYPES:
            return None, f'Invalid type. Must be one of: {", ".join(Incident.TYPES)}'
        fields['type'] = data['type']
    if 'severity' in data:
        if data['severity'] not in Incident.SEVERITIES:
            return None, f'Invalid severity. Must be one of: {", ".join(Incident.SEVERITIES)}'
        fields['severity'] = data['severity']
    if 'is_active' in data:
        fields['is_active'] = bool(data['is_active'])
    return fields, None


@login_required
@require_http_methods(['GET', 'POST'])
def incident_templates(request):
    """GET/POST /api/dashboard/incidents/templates"""
    if request.method == 'GET':
        qs = IncidentTemplate.objects.all()
        if request.GET.get('include_inactive') != 'true':
            qs = qs.filter(is_active=True)
        return JsonResponse({'templates': [t.to_dict() for t in qs]})
    return _create_template(request)


@role_required(*TEMPLATE_ROLES)
def _create_template(request):
    data, err = parse_json_body(request)
    if err:
        return err
    fields, message = _template_fields(data)
    if message:
        return error(message)
    try:
        with transaction.atomic():
            template = IncidentTemplate.objects.create(created_by=request.user, **fields)
    except IntegrityError:
        return error('A template with this name already exists', status=409)
    log_action(request, 'CREATE_INCIDENT_TEMPLATE', 'IncidentTemplate', template.id, {'name': template.name})
    return JsonResponse({'template': template.to_dict()}, status=201)


@login_required
@require_http_methods(['PUT', 'PATCH', 'DELETE'])
@role_required(*TEMPLATE_ROLES)
def incident_template_detail(request, template_id):
    """PUT/DELETE /api/dashboard/incidents/templates/<id>"""
    template = get_object_or_404(IncidentTemplate, pk=template_id)
    if request.method == 'DELETE':
        template.delete()
        log_action(request, 'DELETE_INCIDENT_TEMPLATE', 'IncidentTemplate', template_id)
        return JsonResponse({'message': 'Template deleted'})

    data, err = parse_json_body(request)
    if err:
        return err
    fields, message = _template_fields(data, partial=True)
    if message:
        return error(message)
    for name, value in fields.items():
        setattr(template, name, value)
    try:
        with transaction.atomic():
            template.save()
    except IntegrityError:
        return error('A template with this name already exists', status=409)
    log_action(request, 'UPDATE_INCIDENT_TEMPLATE', 'IncidentTemplate', template.id, {'fields': sorted(fields)})
    return JsonResponse({'template': template.to_dict()})


# ── Exports ─────────────────────────────────────────────────────────────────

EXPORT_HEADERS = [
    'Incident Number', 'Type', 'Severity', 'Status', 'Title', 'Location',
    'Reporter', 'Assignee', 'Student', 'Course', 'Confidential', 'Reported', 'Resolved',
]


def _export_row(incident):
    return [
        incident.incident_number,
        incident.get_type_display(),
        incident.get_severity_display(),
        incident.get_status_display(),
        incident.title,
        incident.location,
        incident.reporter.full_name if incident.reporter else '',
        incident.assignee.full_name if incident.assignee else '',
        incident.student.index_number if incident.student else '',
        incident.exam_session.course_code if incident.exam_session else '',
        incident.is_confidential,
        _format_ts(incident.created_at),
        _format_ts(incident.resolved_at),
    ]


@login_required
@require_GET
def export_incidents_xlsx(request):
    """GET /api/dashboard/incidents/export/xlsx – same filters as the list."""
    rows = [_export_row(i) for i in _filtered(request)]
    log_action(request, 'EXPORT_INCIDENTS', 'Incident', '', {'format': 'xlsx', 'count': len(rows)})
    return xlsx_response(
        [('Incidents', EXPORT_HEADERS, rows, 'Incident Summary')],
        f"incidents_{datetime.now(timezone.utc):%Y%m%d}.xlsx",
    )


def _incident_elements(incident, styles):
    from reportlab.lib.units import inch
    from reportlab.platypus import Paragraph, Spacer

    elements = [
        Paragraph(f'Incident Report – {incident.incident_number}', styles['title']),
        pdf_table([
            ['Title', incident.title],
            ['Type', incident.get_type_display()],
            ['Severity', incident.get_severity_display()],
            ['Status', incident.get_status_display()],
            ['Location', incident.location or '-'],
            ['Reporter', incident.reporter.full_name if incident.reporter else '-'],
            ['Assignee', incident.assignee.full_name if incident.assignee else '-'],
            ['Student', f'{incident.student.index_number} {incident.student.full_name}' if incident.student else '-'],
            ['Exam', incident.exam_session.course_code if incident.exam_session else '-'],
            ['Reported', _format_ts(incident.created_at)],
            ['Resolved', _format_ts(incident.resolved_at) or '-'],
        ], col_widths=[1.5 * inch, 5.5 * inch], header=False),
        Spacer(1, 0.15 * inch),
        Paragraph('Description', styles['heading']),
        Paragraph(escape(incident.description), styles['body']),
    ]
    if incident.resolution_notes:
        elements += [
            Paragraph('Resolution', styles['heading']),
            Paragraph(escape(incident.resolution_notes), styles['body']),
        ]

    history = [['Time', 'From', 'To', 'Notes']]
    for h in incident.status_history.all():
        history.append([_format_ts(h.timestamp), h.from_status or '-', h.to_status, h.notes])
    elements += [Paragraph('Status History', styles['heading']), pdf_table(history)]
    return elements


@login_required
@require_GET
def export_incident_pdf(request, incident_id):
    """GET /api/dashboard/incidents/<id>/export/pdf"""
    incident = get_object_or_404(visible_incidents(request.user), pk=incident_id)
    log_action(request, 'EXPORT_INCIDENTS', 'Incident', incident.id, {'format': 'pdf'})
    return pdf_response(_incident_elements(incident, pdf_styles()), f'{incident.incident_number}.pdf')


@login_required
@require_POST
def export_incidents_bulk_pdf(request):
    """POST /api/dashboard/incidents/export/pdf – body: {incident_ids: [...]}"""
    from reportlab.platypus import PageBreak

    data, err = parse_json_body(request)
    if err:
        return err
    ids = [parse_uuid(v) for v in data.get('incident_ids') or []]
    ids = [i for i in ids if i]
    if not ids:
        return error('incident_ids must be a non-empty list')

    selected = list(visible_incidents(request.user).filter(pk__in=ids).order_by('incident_number'))
    if not selected:
        return error('No incidents found', status=404)

    styles = pdf_styles()
    elements = []
    for n, incident in enumerate(selected):
        if n:
            elements.append(PageBreak())
        elements.extend(_incident_elements(incident, styles))

    log_action(request, 'EXPORT_INCIDENTS', 'Incident', '', {'format': 'pdf', 'count': len(selected)})
    return pdf_response(elements, f"incidents_{datetime.now(timezone.utc):%Y%m%d}.pdf")
