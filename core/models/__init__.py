"""
Core models package – all custody-tracking domain models.
"""
from .mixins import TimestampMixin
from .user import User
from .student import Student
from .exam_session import ExamSession, ExamSessionStudent, ExamAttendance
from .transfer import BatchTransfer
from .incident import (
    Incident, IncidentAttachment, IncidentComment, IncidentStatusHistory, IncidentTemplate,
)
from .attendance import AttendanceSession, StudentAttendance, AttendanceLink
from .audit import AuditLog
from .login_audit import LoginAuditLog
from .registration import RegistrationSession

__all__ = [
    # Base
    'TimestampMixin',
    # People
    'User', 'Student',
    # Exam batches
    'ExamSession', 'ExamSessionStudent', 'ExamAttendance',
    # Custody chain
    'BatchTransfer',
    # Incidents
    'Incident', 'IncidentComment', 'IncidentStatusHistory', 'IncidentTemplate',
    'IncidentAttachment',
    # Classroom attendance
    'AttendanceSession', 'StudentAttendance', 'AttendanceLink',
    # Audit
    'AuditLog',
    'LoginAuditLog',
    # Self-registration
    'RegistrationSession',
]
