"""Dashboard API URLs – mounted under /api/dashboard/."""
from django.urls import path

from .api import analytics, audit_logs, incidents, registration, sessions, students, users

app_name = 'dashboard_api'

urlpatterns = [
    # ── Exam sessions ────────────────────────────────────────────────────────
    path('sessions', sessions.sessions, name='sessions'),
    path('sessions/departments', sessions.departments, name='departments'),
    path('sessions/faculties', sessions.faculties, name='faculties'),
    path('sessions/by-qr/<str:batch_qr_code>', sessions.session_by_qr, name='session_by_qr'),
    path('sessions/<uuid:session_id>', sessions.session_detail, name='session_detail'),
    path('sessions/<uuid:session_id>/status', sessions.update_status, name='update_status'),
    path('sessions/<uuid:session_id>/end', sessions.end_exam, name='end_exam'),
    path('sessions/<uuid:session_id>/qr-code', sessions.session_qr_code, name='session_qr_code'),
    path('sessions/<uuid:session_id>/expected-students', sessions.expected_students, name='expected_students'),
    path('sessions/<uuid:session_id>/expected-students/export', sessions.export_expected_students, name='export_expected_students'),
    path('sessions/<uuid:session_id>/expected-students/<uuid:student_id>', sessions.remove_expected_student, name='remove_expected_student'),
    path('sessions/<uuid:session_id>/attendance-summary', sessions.attendance_summary, name='attendance_summary'),
    path('sessions/<uuid:session_id>/manifest.pdf', sessions.session_manifest_pdf, name='session_manifest_pdf'),

    # ── Students ─────────────────────────────────────────────────────────────
    path('students', students.students, name='students'),
    path('students/import', students.import_students, name='import_students'),
    path('students/template', students.csv_template, name='csv_template'),
    path('students/<uuid:student_id>', students.student_detail, name='student_detail'),
    path('students/<uuid:student_id>/qr-code', students.student_qr_code, name='student_qr_code'),
    path('students/<uuid:student_id>/picture', students.upload_picture, name='upload_picture'),

    # ── Incidents ────────────────────────────────────────────────────────────
    path('incidents', incidents.incidents, name='incidents'),
    path('incidents/stats', incidents.incident_stats, name='incident_stats'),
    path('incidents/templates', incidents.incident_templates, name='incident_templates'),
    path('incidents/templates/<uuid:template_id>', incidents.incident_template_detail, name='incident_template_detail'),
    path('incidents/export', incidents.export_incidents_xlsx, name='export_incidents_xlsx'),
    path('incidents/export/pdf', incidents.export_incidents_bulk_pdf, name='export_incidents_bulk_pdf'),
    path('incidents/<uuid:incident_id>', incidents.incident_detail, name='incident_detail'),
    path('incidents/<uuid:incident_id>/status', incidents.update_incident_status, name='update_incident_status'),
    path('incidents/<uuid:incident_id>/assign', incidents.assign_incident, name='assign_incident'),
    path('incidents/<uuid:incident_id>/comments', incidents.incident_comments, name='incident_comments'),
    path('incidents/<uuid:incident_id>/attachments', incidents.upload_attachments, name='incident_attachments'),
    path('incidents/<uuid:incident_id>/attachments/<uuid:attachment_id>', incidents.delete_attachment, name='delete_incident_attachment'),
    path('incidents/<uuid:incident_id>/pdf', incidents.export_incident_pdf, name='export_incident_pdf'),

    # ── Users ────────────────────────────────────────────────────────────────
    path('users', users.users, name='users'),
    path('users/handlers', users.handlers, name='handlers'),
    path('users/<uuid:user_id>', users.user_detail, name='user_detail'),
    path('users/<uuid:user_id>/deactivate', users.deactivate_user, name='deactivate_user'),

    # ── Self-registration QR codes (admin) ───────────────────────────────────
    path('registration-sessions', registration.registration_sessions, name='registration_sessions'),
    path('registration-sessions/<uuid:session_id>/deactivate', registration.deactivate_session, name='deactivate_registration_session'),
    path('registration-sessions/<uuid:session_id>/extend', registration.extend_session, name='extend_registration_session'),

    # ── Analytics (admin) ────────────────────────────────────────────────────
    path('analytics/overview', analytics.overview, name='analytics_overview'),
    path('analytics/handler-performance', analytics.handler_performance, name='handler_performance'),
    path('analytics/discrepancies', analytics.discrepancies, name='analytics_discrepancies'),
    path('analytics/exam-stats', analytics.exam_stats, name='exam_stats'),
    path('analytics/export', analytics.export_report, name='export_analytics'),

    # ── Audit logs (admin) ───────────────────────────────────────────────────
    path('audit-logs', audit_logs.audit_logs, name='audit_logs'),
    path('audit-logs/actions', audit_logs.audit_actions, name='audit_actions'),
]
