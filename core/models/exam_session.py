"""
ExamSession (a batch of scripts), ExamSessionStudent and ExamAttendance models.
"""
import random
import uuid
from datetime import datetime, timezone
from django.db import models
from .mixins import TimestampMixin


class ExamSession(TimestampMixin):
    """One sitting of an exam; its scripts form a batch tracked by QR code."""

    STATUS_NOT_STARTED   = 'NOT_STARTED'
    STATUS_IN_PROGRESS   = 'IN_PROGRESS'
    STATUS_SUBMITTED     = 'SUBMITTED'
    STATUS_IN_TRANSIT    = 'IN_TRANSIT'
    STATUS_WITH_LECTURER = 'WITH_LECTURER'
    STATUS_UNDER_GRADING = 'UNDER_GRADING'
    STATUS_GRADED        = 'GRADED'
    STATUS_RETURNED      = 'RETURNED'
    STATUS_COMPLETED     = 'COMPLETED'
    STATUS_CHOICES = [
        (STATUS_NOT_STARTED,   'Not Started'),
        (STATUS_IN_PROGRESS,   'In Progress'),
        (STATUS_SUBMITTED,     'Submitted'),
        (STATUS_IN_TRANSIT,    'In Transit'),
        (STATUS_WITH_LECTURER, 'With Lecturer'),
        (STATUS_UNDER_GRADING, 'Under Grading'),
        (STATUS_GRADED,        'Graded'),
        (STATUS_RETURNED,      'Returned'),
        (STATUS_COMPLETED,     'Completed'),
    ]
    STATUSES = [value for value, _ in STATUS_CHOICES]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    batch_qr_code = models.CharField(max_length=80, unique=True)

    course_code = models.CharField(max_length=20, db_index=True)
    course_name = models.CharField(max_length=200)
    lecturer = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='lectured_sessions',
    )
    lecturer_name = models.CharField(max_length=150, blank=True, default='')
    department = models.CharField(max_length=120, blank=True, default='', db_index=True)
    faculty = models.CharField(max_length=120, blank=True, default='', db_index=True)

    venue = models.CharField(max_length=150)
    exam_date = models.DateField(db_index=True)
    start_time = models.TimeField(null=True, blank=True)
    duration_minutes = models.IntegerField(default=120)
    total_students = models.IntegerField(default=0)

    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default=STATUS_NOT_STARTED, db_index=True,
    )
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='created_sessions',
    )

    class Meta:
        db_table = 'exam_sessions'
        ordering = ['-exam_date', 'course_code']

    def __str__(self):
        return f'{self.course_code} on {self.exam_date}'

    @staticmethod
    def generate_batch_code(course_code):
        """BATCH-<COURSE>-<epoch ms>-<0..999>"""
        millis = int(datetime.now(timezone.utc).timestamp() * 1000)
        return f'BATCH-{course_code.upper()}-{millis}-{random.randint(0, 999)}'

    def save(self, *args, **kwargs):
        if not self.batch_qr_code:
            self.batch_qr_code = self.generate_batch_code(self.course_code)
        super().save(*args, **kwargs)

    def qr_payload(self, timestamp):
        """Payload encoded in the batch QR label."""
        return {
            'type': 'EXAM_BATCH',
            'id': str(self.id),
            'batchQrCode': self.batch_qr_code,
            'courseCode': self.course_code,
            'courseName': self.course_name,
            'examDate': self.exam_date.isoformat() if self.exam_date else None,
            'venue': self.venue,
            'timestamp': timestamp,
        }

    def to_dict(self):
        return {
            'id': str(self.id),
            'batch_qr_code': self.batch_qr_code,
            'course_code': self.course_code,
            'course_name': self.course_name,
            'lecturer_id': str(self.lecturer_id) if self.lecturer_id else None,
            'lecturer_name': self.lecturer_name,
            'department': self.department,
            'faculty': self.faculty,
            'venue': self.venue,
            'exam_date': self.exam_date.isoformat() if self.exam_date else None,
            'start_time': self.start_time.strftime('%H:%M') if self.start_time else None,
            'duration_minutes': self.duration_minutes,
            'total_students': self.total_students,
            'status': self.status,
            'notes': self.notes,
            'created_by': str(self.created_by_id) if self.created_by_id else None,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


class ExamSessionStudent(TimestampMixin):
    """A student expected to sit a given exam session."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam_session = models.ForeignKey(
        'core.ExamSession', on_delete=models.CASCADE, related_name='expected_students',
    )
    student = models.ForeignKey(
        'core.Student', on_delete=models.CASCADE, related_name='expected_sessions',
    )

    class Meta:
        db_table = 'exam_session_students'
        constraints = [
            models.UniqueConstraint(
                fields=['exam_session', 'student'], name='unique_expected_student',
            ),
        ]

    def __str__(self):
        return f'{self.student_id} expected @ {self.exam_session_id}'


class ExamAttendance(TimestampMixin):
    """Entry, exit and script submission of one student in one exam session."""

    STATUS_PRESENT = 'PRESENT'
    STATUS_SUBMITTED = 'SUBMITTED'
    STATUS_LEFT_WITHOUT_SUBMITTING = 'LEFT_WITHOUT_SUBMITTING'
    STATUS_ABSENT = 'ABSENT'
    STATUS_CHOICES = [
        (STATUS_PRESENT, 'Present'),
        (STATUS_SUBMITTED, 'Submitted'),
        (STATUS_LEFT_WITHOUT_SUBMITTING, 'Left Without Submitting'),
        (STATUS_ABSENT, 'Absent'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    student = models.ForeignKey(
        'core.Student', on_delete=models.PROTECT, related_name='exam_attendances',
    )
    exam_session = models.ForeignKey(
        'core.ExamSession', on_delete=models.PROTECT, related_name='attendances',
    )
    entry_time = models.IntegerField(null=True, blank=True)
    exit_time = models.IntegerField(null=True, blank=True)
    submission_time = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=STATUS_PRESENT)
    discrepancy_note = models.TextField(blank=True, default='')
    recorded_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='recorded_attendances',
    )

    class Meta:
        db_table = 'exam_attendances'
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'exam_session'], name='unique_student_exam_attendance',
            ),
        ]

    def __str__(self):
        return f'{self.student_id} @ {self.exam_session_id}: {self.status}'

    def to_dict(self):
        return {
            'id': str(self.id),
            'student_id': str(self.student_id),
            'exam_session_id': str(self.exam_session_id),
            'entry_time': self.entry_time,
            'exit_time': self.exit_time,
            'submission_time': self.submission_time,
            'status': self.status,
            'discrepancy_note': self.discrepancy_note,
            'recorded_by': str(self.recorded_by_id) if self.recorded_by_id else None,
        }
