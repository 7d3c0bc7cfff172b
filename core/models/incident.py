"""
Incident reporting models: Incident, IncidentComment, IncidentStatusHistory,
IncidentTemplate and IncidentAttachment.
"""
import uuid
from django.conf import settings
from django.core.validators import FileExtensionValidator
from django.db import models
from .mixins import TimestampMixin


class Incident(TimestampMixin):
    """A reported problem during an exam or with its scripts."""

    TYPE_MISSING_SCRIPT = 'MISSING_SCRIPT'
    TYPE_DAMAGED_SCRIPT = 'DAMAGED_SCRIPT'
    TYPE_MALPRACTICE = 'MALPRACTICE'
    TYPE_STUDENT_ILLNESS = 'STUDENT_ILLNESS'
    TYPE_VENUE_ISSUE = 'VENUE_ISSUE'
    TYPE_COUNT_DISCREPANCY = 'COUNT_DISCREPANCY'
    TYPE_LATE_SUBMISSION = 'LATE_SUBMISSION'
    TYPE_PROCEDURAL_VIOLATION = 'PROCEDURAL_VIOLATION'
    TYPE_OTHER = 'OTHER'
    TYPE_CHOICES = [
        (TYPE_MISSING_SCRIPT, 'Missing Script'),
        (TYPE_DAMAGED_SCRIPT, 'Damaged Script'),
        (TYPE_MALPRACTICE, 'Malpractice'),
        (TYPE_STUDENT_ILLNESS, 'Student Illness'),
        (TYPE_VENUE_ISSUE, 'Venue Issue'),
        (TYPE_COUNT_DISCREPANCY, 'Count Discrepancy'),
        (TYPE_LATE_SUBMISSION, 'Late Submission'),
        (TYPE_PROCEDURAL_VIOLATION, 'Procedural Violation'),
        (TYPE_OTHER, 'Other'),
    ]

    SEVERITY_LOW = 'LOW'
    SEVERITY_MEDIUM = 'MEDIUM'
    SEVERITY_HIGH = 'HIGH'
    SEVERITY_CRITICAL = 'CRITICAL'
    SEVERITY_CHOICES = [
        (SEVERITY_LOW, 'Low'),
        (SEVERITY_MEDIUM, 'Medium'),
        (SEVERITY_HIGH, 'High'),
        (SEVERITY_CRITICAL, 'Critical'),
    ]

    STATUS_REPORTED = 'REPORTED'
    STATUS_INVESTIGATING = 'INVESTIGATING'
    STATUS_RESOLVED = 'RESOLVED'
    STATUS_ESCALATED = 'ESCALATED'
    STATUS_CLOSED = 'CLOSED'
    STATUS_CHOICES = [
        (STATUS_REPORTED, 'Reported'),
        (STATUS_INVESTIGATING, 'Investigating'),
        (STATUS_RESOLVED, 'Resolved'),
        (STATUS_ESCALATED, 'Escalated'),
        (STATUS_CLOSED, 'Closed'),
    ]
    OPEN_STATUSES = (STATUS_REPORTED, STATUS_INVESTIGATING, STATUS_ESCALATED)

    TYPES = [value for value, _ in TYPE_CHOICES]
    SEVERITIES = [value for value, _ in SEVERITY_CHOICES]
    STATUSES = [value for value, _ in STATUS_CHOICES]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    incident_number = models.CharField(max_length=20, unique=True)

    type = models.CharField(max_length=30, choices=TYPE_CHOICES, db_index=True)
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, default=SEVERITY_MEDIUM)
    status = models.CharField(
        max_length=15, choices=STATUS_CHOICES, default=STATUS_REPORTED, db_index=True,
    )
    title = models.CharField(max_length=200)
    description = models.TextField()
    location = models.CharField(max_length=200, blank=True, default='')
    is_confidential = models.BooleanField(default=False)

    reporter = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, related_name='reported_incidents',
    )
    assignee = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='assigned_incidents',
    )
    student = models.ForeignKey(
        'core.Student', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='incidents',
    )
    exam_session = models.ForeignKey(
        'core.ExamSession', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='incidents',
    )

    assigned_at = models.IntegerField(null=True, blank=True)
    resolved_at = models.IntegerField(null=True, blank=True)
    closed_at = models.IntegerField(null=True, blank=True)
    resolution_notes = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'incidents'
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.incident_number}: {self.title}'

    def to_dict(self, include_related=False):
        data = {
            'id': str(self.id),
            'incident_number': self.incident_number,
            'type': self.type,
            'severity': self.severity,
            'status': self.status,
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'is_confidential': self.is_confidential,
            'reporter_id': str(self.reporter_id) if self.reporter_id else None,
            'assignee_id': str(self.assignee_id) if self.assignee_id else None,
            'student_id': str(self.student_id) if self.student_id else None,
            'exam_session_id': str(self.exam_session_id) if self.exam_session_id else None,
            'assigned_at': self.assigned_at,
            'resolved_at': self.resolved_at,
            'closed_at': self.closed_at,
            'resolution_notes': self.resolution_notes,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        if include_related:
            data['reporter'] = self.reporter.to_summary() if self.reporter else None
            data['assignee'] = self.assignee.to_summary() if self.assignee else None
            data['student'] = self.student.to_dict() if self.student else None
            data['exam_session'] = (
                {'id': str(self.exam_session_id), 'course_code': self.exam_session.course_code}
                if self.exam_session else None
            )
        return data


class IncidentComment(TimestampMixin):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    incident = models.ForeignKey(
        'core.Incident', on_delete=models.CASCADE, related_name='comments',
    )
    author = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, related_name='incident_comments',
    )
    content = models.TextField()
    is_internal = models.BooleanField(default=False)

    class Meta:
        db_table = 'incident_comments'
        ordering = ['created_at']

    def to_dict(self):
        return {
            'id': str(self.id),
            'incident_id': str(self.incident_id),
            'author': self.author.to_summary() if self.author else None,
            'content': self.content,
            'is_internal': self.is_internal,
            'created_at': self.created_at,
        }


class IncidentStatusHistory(models.Model):
    """Append-only record of every incident status change."""

    id = models.BigAutoField(primary_key=True)
    incident = models.ForeignKey(
        'core.Incident', on_delete=models.CASCADE, related_name='status_history',
    )
    from_status = models.CharField(max_length=15, blank=True, default='')
    to_status = models.CharField(max_length=15)
    changed_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, related_name='+',
    )
    notes = models.TextField(blank=True, default='')
    timestamp = models.IntegerField()

    class Meta:
        db_table = 'incident_status_history'
        ordering = ['timestamp', 'id']

    def save(self, *args, **kwargs):
        if not self.timestamp:
            self.timestamp = TimestampMixin.utc_timestamp()
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            'from_status': self.from_status or None,
            'to_status': self.to_status,
            'changed_by': str(self.changed_by_id) if self.changed_by_id else None,
            'notes': self.notes,
            'timestamp': self.timestamp,
        }


class IncidentTemplate(TimestampMixin):
    """Reusable preset for frequently reported incidents."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120, unique=True)
    type = models.CharField(max_length=30, choices=Incident.TYPE_CHOICES)
    severity = models.CharField(
        max_length=10, choices=Incident.SEVERITY_CHOICES, default=Incident.SEVERITY_MEDIUM,
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, related_name='+',
    )

    class Meta:
        db_table = 'incident_templates'
        ordering = ['name']

    def to_dict(self):
        return {
            'id': str(self.id),
            'name': self.name,
            'type': self.type,
            'severity': self.severity,
            'title': self.title,
            'description': self.description,
            'is_active': self.is_active,
        }


def incident_attachment_path(instance, filename):
    return f'incidents/{instance.incident_id}/{uuid.uuid4().hex}_{filename}'


class IncidentAttachment(TimestampMixin):
    """Photo, video or PDF evidence filed against an incident."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    incident = models.ForeignKey(
        'core.Incident', on_delete=models.CASCADE, related_name='attachments',
    )
    file = models.FileField(
        upload_to=incident_attachment_path, max_length=255,
        validators=[FileExtensionValidator(settings.INCIDENT_ATTACHMENT_EXTENSIONS)],
    )
    file_name = models.CharField(max_length=255)
    file_type = models.CharField(max_length=100, blank=True, default='')
    file_size = models.IntegerField()
    uploaded_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, related_name='+',
    )

    class Meta:
        db_table = 'incident_attachments'
        ordering = ['created_at']

    def to_dict(self):
        return {
            'id': str(self.id),
            'incident_id': str(self.incident_id),
            'file_name': self.file_name,
            'file_type': self.file_type,
            'file_size': self.file_size,
            'url': self.file.url if self.file else None,
            'uploaded_by': self.uploaded_by.to_summary() if self.uploaded_by else None,
            'created_at': self.created_at,
        }
