"""Tracking API URLs – custody chain and attendance endpoints under /api/."""
from django.urls import path

from .api import class_attendance, custody, exam_attendance, public, transfers

app_name = 'tracking_api'

urlpatterns = [
    # ── Batch transfers ──────────────────────────────────────────────────────
    path('transfers', transfers.transfers, name='transfers'),
    path('transfers/pending', transfers.pending_transfers, name='pending_transfers'),
    path('transfers/history/<uuid:session_id>', transfers.transfer_history, name='transfer_history'),
    path('transfers/<uuid:transfer_id>', transfers.transfer_detail, name='transfer_detail'),
    path('transfers/<uuid:transfer_id>/confirm', transfers.confirm_transfer, name='confirm_transfer'),
    path('transfers/<uuid:transfer_id>/reject', transfers.reject_transfer, name='reject_transfer'),
    path('transfers/<uuid:transfer_id>/resolve', transfers.resolve_transfer, name='resolve_transfer'),

    # ── Custody view ─────────────────────────────────────────────────────────
    path('custody/batches', custody.my_batches, name='my_batches'),
    path('custody/sessions/<uuid:session_id>', custody.session_chain, name='session_chain'),

    # ── Exam attendance ──────────────────────────────────────────────────────
    path('attendance', exam_attendance.get_attendance, name='get_attendance'),
    path('attendance/entry', exam_attendance.record_entry, name='record_entry'),
    path('attendance/exit', exam_attendance.record_exit, name='record_exit'),
    path('attendance/submission', exam_attendance.record_submission, name='record_submission'),
    path('attendance/session/<uuid:session_id>', exam_attendance.session_attendance, name='session_attendance'),
    path('attendance/<uuid:attendance_id>/discrepancy', exam_attendance.update_discrepancy, name='update_discrepancy'),

    # ── Class attendance ─────────────────────────────────────────────────────
    path('class-attendance/sessions', class_attendance.sessions, name='class_sessions'),
    path('class-attendance/sessions/active', class_attendance.active_sessions, name='active_class_sessions'),
    path('class-attendance/sessions/<uuid:session_id>', class_attendance.session_detail, name='class_session_detail'),
    path('class-attendance/sessions/<uuid:session_id>/pause', class_attendance.pause_session, name='pause_class_session'),
    path('class-attendance/sessions/<uuid:session_id>/resume', class_attendance.resume_session, name='resume_class_session'),
    path('class-attendance/sessions/<uuid:session_id>/end', class_attendance.end_session, name='end_class_session'),
    path('class-attendance/sessions/<uuid:session_id>/stats', class_attendance.session_stats, name='class_session_stats'),
    path('class-attendance/sessions/<uuid:session_id>/record', class_attendance.record_attendance, name='record_class_attendance'),
    path('class-attendance/sessions/<uuid:session_id>/records/confirm', class_attendance.confirm_records, name='confirm_class_records'),
    path('class-attendance/sessions/<uuid:session_id>/records/reject', class_attendance.reject_records, name='reject_class_records'),
    path('class-attendance/sessions/<uuid:session_id>/links', class_attendance.session_links, name='class_session_links'),
    path('class-attendance/links/<str:token>/revoke', class_attendance.revoke_link, name='revoke_attendance_link'),

    # ── Public self-mark ─────────────────────────────────────────────────────
    path('public/attend/<str:token>', public.attend, name='public_attend'),
    path('public/register', public.register, name='public_register'),
]
