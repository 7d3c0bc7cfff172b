"""
Classroom attendance models: AttendanceSession, StudentAttendance, AttendanceLink.

Independent of the exam-batch custody chain. A session is recorded from one
device by its creator; students may also self-mark through a time-limited link.
"""
import uuid
from django.db import models
from .mixins import TimestampMixin


class AttendanceSession(TimestampMixin):
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_PAUSED = 'PAUSED'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CHOICES = [
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_PAUSED, 'Paused'),
        (STATUS_COMPLETED, 'Completed'),
    ]
    ACTIVE_STATUSES = (STATUS_IN_PROGRESS, STATUS_PAUSED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    course_code = models.CharField(max_length=20)
    course_name = models.CharField(max_length=200)
    lecturer_name = models.CharField(max_length=150, blank=True, default='')
    venue = models.CharField(max_length=150, blank=True, default='')
    device_id = models.CharField(max_length=120, db_index=True)
    expected_student_count = models.IntegerField(null=True, blank=True)

    status = models.CharField(
        max_length=15, choices=STATUS_CHOICES, default=STATUS_IN_PROGRESS, db_index=True,
    )
    start_time = models.IntegerField()
    end_time = models.IntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(
        'core.User', on_delete=models.CASCADE, related_name='attendance_sessions',
    )

    class Meta:
        db_table = 'attendance_sessions'
        ordering = ['-start_time']

    def __str__(self):
        return f'{self.course_code} ({self.status})'

    def save(self, *args, **kwargs):
        if not self.start_time:
            self.start_time = TimestampMixin.utc_timestamp()
        super().save(*args, **kwargs)

    def can_control(self, user):
        return user.is_admin or self.created_by_id == user.pk

    def to_dict(self):
        return {
            'id': str(self.id),
            'course_code': self.course_code,
            'course_name': self.course_name,
            'lecturer_name': self.lecturer_name,
            'venue': self.venue,
            'device_id': self.device_id,
            'expected_student_count': self.expected_student_count,
            'status': self.status,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'notes': self.notes,
            'created_by': str(self.created_by_id),
        }


class StudentAttendance(TimestampMixin):
    METHOD_QR_CODE = 'QR_CODE'
    METHOD_INDEX_NUMBER = 'INDEX_NUMBER'
    METHOD_LINK = 'LINK'
    METHOD_MANUAL = 'MANUAL'
    METHOD_CHOICES = [
        (METHOD_QR_CODE, 'QR Code'),
        (METHOD_INDEX_NUMBER, 'Index Number'),
        (METHOD_LINK, 'Attendance Link'),
        (METHOD_MANUAL, 'Manual'),
    ]

    STATUS_PRESENT = 'PRESENT'
    STATUS_LATE = 'LATE'
    STATUS_EXCUSED = 'EXCUSED'
    STATUS_CHOICES = [
        (STATUS_PRESENT, 'Present'),
        (STATUS_LATE, 'Late'),
        (STATUS_EXCUSED, 'Excused'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(
        'core.AttendanceSession', on_delete=models.CASCADE, related_name='records',
    )
    student = models.ForeignKey(
        'core.Student', on_delete=models.CASCADE, related_name='class_attendances',
    )
    check_in_time = models.IntegerField()
    method = models.CharField(max_length=15, choices=METHOD_CHOICES, default=METHOD_INDEX_NUMBER)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PRESENT)
    is_confirmed = models.BooleanField(default=True)
    link = models.ForeignKey(
        'core.AttendanceLink', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='records',
    )

    class Meta:
        db_table = 'student_attendances'
        ordering = ['check_in_time']
        constraints = [
            models.UniqueConstraint(
                fields=['session', 'student'], name='unique_session_student_attendance',
            ),
        ]

    def save(self, *args, **kwargs):
        if not self.check_in_time:
            self.check_in_time = TimestampMixin.utc_timestamp()
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            'id': str(self.id),
            'session_id': str(self.session_id),
            'student': self.student.to_dict(),
            'check_in_time': self.check_in_time,
            'method': self.method,
            'status': self.status,
            'is_confirmed': self.is_confirmed,
        }


class AttendanceLink(TimestampMixin):
    """Time-limited token that lets students mark their own attendance."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(
        'core.AttendanceSession', on_delete=models.CASCADE, related_name='links',
    )
    token = models.CharField(max_length=64, unique=True)
    created_by = models.ForeignKey(
        'core.User', on_delete=models.CASCADE, related_name='+',
    )
    expires_at = models.IntegerField()
    max_uses = models.IntegerField(null=True, blank=True)
    uses_count = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    deactivated_at = models.IntegerField(null=True, blank=True)

    # Optional geofence around the venue
    geofence_lat = models.FloatField(null=True, blank=True)
    geofence_lng = models.FloatField(null=True, blank=True)
    geofence_radius_m = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = 'attendance_links'
        ordering = ['-created_at']

    @property
    def requires_location(self):
        return self.geofence_radius_m is not None

    def to_dict(self, base_url=''):
        return {
            'id': str(self.id),
            'session_id': str(self.session_id),
            'token': self.token,
            'url': f'{base_url.rstrip("/")}/attend/{self.token}',
            'expires_at': self.expires_at,
            'max_uses': self.max_uses,
            'uses_count': self.uses_count,
            'is_active': self.is_active,
            'requires_location': self.requires_location,
            'geofence': {
                'lat': self.geofence_lat,
                'lng': self.geofence_lng,
                'radius_m': self.geofence_radius_m,
            } if self.requires_location else None,
            'created_at': self.created_at,
        }
