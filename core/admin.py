"""
Django admin registration for all core models.
"""
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils import timezone
import logging

audit_logger = logging.getLogger('custody.audit')

# Customize Django admin site labels
admin.site.site_header = "Exam Custody Administration"
admin.site.site_title = "Exam Custody Administration"
admin.site.index_title = "Exam Custody Administration"

from .models import (
    User, Student, ExamSession, ExamSessionStudent, ExamAttendance,
    BatchTransfer, Incident, IncidentAttachment, IncidentComment, IncidentStatusHistory,
    IncidentTemplate, AttendanceSession, StudentAttendance, AttendanceLink, AuditLog,
    LoginAuditLog, RegistrationSession,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Trails are written by the application only."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


# ── Users ─────────────────────────────────────────────────────────
@admin.action(description='Deactivate selected users')
def deactivate_users(modeladmin, request, queryset):
    queryset = queryset.exclude(pk=request.user.pk)
    names = list(queryset.values_list('username', flat=True))
    queryset.update(is_active=False)
    audit_logger.warning(
        'ADMIN: deactivated %d user(s) [%s] by %s',
        len(names), ', '.join(names), request.user.username,
    )
    modeladmin.message_user(request, f'{len(names)} user(s) deactivated.')


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'email', 'full_name', 'role', 'department', 'is_active', 'is_staff')
    list_filter = ('role', 'is_active', 'is_staff', 'department', 'faculty')
    search_fields = ('username', 'email', 'first_name', 'last_name')
    ordering = ('username',)
    actions = [deactivate_users]

    fieldsets = (
        (None, {'fields': ('username', 'password')}),
        ('Personal Info', {'fields': ('first_name', 'last_name', 'email', 'phone')}),
        ('Organisation', {'fields': ('department', 'faculty')}),
        ('Role & Permissions', {'fields': ('role', 'is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions')}),
    )
    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'first_name', 'last_name', 'role', 'password1', 'password2'),
        }),
    )

    def has_delete_permission(self, request, obj=None):
        """Users holding custody history are deactivated, not deleted."""
        if not request.user.is_superuser:
            return False
        return super().has_delete_permission(request, obj)


# ── Students ──────────────────────────────────────────────────────
@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('index_number', 'first_name', 'last_name', 'program', 'level')
    list_filter = ('program', 'level')
    search_fields = ('index_number', 'first_name', 'last_name')
    ordering = ('index_number',)


# ── Exam Sessions ─────────────────────────────────────────────────
class ExamSessionStudentInline(admin.TabularInline):
    model = ExamSessionStudent
    extra = 0
    raw_id_fields = ('student',)


class BatchTransferInline(admin.TabularInline):
    model = BatchTransfer
    fk_name = 'exam_session'
    extra = 0
    fields = ('requested_at', 'from_handler', 'to_handler', 'exams_expected', 'exams_received', 'status')
    readonly_fields = fields
    can_delete = False
    ordering = ('requested_at',)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ExamSession)
class ExamSessionAdmin(admin.ModelAdmin):
    list_display = ('batch_qr_code', 'course_code', 'course_name', 'exam_date', 'venue', 'department', 'status')
    list_filter = ('status', 'department', 'faculty', 'exam_date')
    search_fields = ('batch_qr_code', 'course_code', 'course_name', 'lecturer_name', 'venue')
    readonly_fields = ('batch_qr_code',)
    date_hierarchy = 'exam_date'
    raw_id_fields = ('lecturer', 'created_by')
    inlines = [ExamSessionStudentInline, BatchTransferInline]


@admin.register(ExamAttendance)
class ExamAttendanceAdmin(admin.ModelAdmin):
    list_display = ('student', 'exam_session', 'status', 'entry_time', 'exit_time', 'submission_time')
    list_filter = ('status',)
    search_fields = ('student__index_number', 'exam_session__course_code', 'exam_session__batch_qr_code')
    raw_id_fields = ('student', 'exam_session', 'recorded_by')


# ── Custody Chain ─────────────────────────────────────────────────
@admin.action(description='Resolve selected discrepancies')
def resolve_discrepancies(modeladmin, request, queryset):
    pending = queryset.filter(status=BatchTransfer.STATUS_DISCREPANCY_REPORTED)
    count = pending.update(
        status=BatchTransfer.STATUS_RESOLVED,
        resolved_at=timezone.now(),
        resolved_by=request.user,
        resolution_note='Resolved from the admin site',
    )
    audit_logger.warning('ADMIN: resolved %d transfer discrepancy(ies) by %s', count, request.user.username)
    modeladmin.message_user(request, f'{count} discrepancy(ies) resolved.')


@admin.register(BatchTransfer)
class BatchTransferAdmin(admin.ModelAdmin):
    list_display = (
        'exam_session', 'from_handler', 'to_handler', 'exams_expected', 'exams_received',
        'status', 'requested_at', 'confirmed_at',
    )
    list_filter = ('status', 'requested_at')
    search_fields = (
        'exam_session__batch_qr_code', 'exam_session__course_code',
        'from_handler__username', 'to_handler__username',
    )
    raw_id_fields = ('exam_session', 'from_handler', 'to_handler', 'resolved_by')
    date_hierarchy = 'requested_at'
    actions = [resolve_discrepancies]


# ── Incidents ─────────────────────────────────────────────────────
class IncidentCommentInline(admin.TabularInline):
    model = IncidentComment
    extra = 0
    raw_id_fields = ('author',)


class IncidentStatusHistoryInline(admin.TabularInline):
    model = IncidentStatusHistory
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'changed_by', 'notes', 'timestamp')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class IncidentAttachmentInline(admin.TabularInline):
    model = IncidentAttachment
    extra = 0
    fields = ('file_name', 'file', 'file_type', 'file_size', 'uploaded_by')
    readonly_fields = ('file_name', 'file_type', 'file_size', 'uploaded_by')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Incident)
class IncidentAdmin(admin.ModelAdmin):
    list_display = ('incident_number', 'title', 'type', 'severity', 'status', 'is_confidential', 'reporter')
    list_filter = ('status', 'type', 'severity', 'is_confidential')
    search_fields = ('incident_number', 'title', 'description')
    readonly_fields = ('incident_number',)
    raw_id_fields = ('reporter', 'assignee', 'student', 'exam_session')
    inlines = [IncidentStatusHistoryInline, IncidentCommentInline, IncidentAttachmentInline]

    def has_add_permission(self, request):
        return False  # Incidents are numbered by the reporting API only


@admin.register(IncidentTemplate)
class IncidentTemplateAdmin(admin.ModelAdmin):
    list_display = ('name', 'type', 'severity', 'is_active')
    list_filter = ('type', 'is_active')
    list_editable = ('is_active',)


# ── Class Attendance ──────────────────────────────────────────────
@admin.register(AttendanceSession)
class AttendanceSessionAdmin(admin.ModelAdmin):
    list_display = ('course_code', 'course_name', 'venue', 'status', 'created_by', 'start_time', 'end_time')
    list_filter = ('status',)
    search_fields = ('course_code', 'course_name', 'device_id')


@admin.register(StudentAttendance)
class StudentAttendanceAdmin(admin.ModelAdmin):
    list_display = ('student', 'session', 'method', 'status', 'is_confirmed', 'check_in_time')
    list_filter = ('method', 'status', 'is_confirmed')
    search_fields = ('student__index_number', 'session__course_code')
    raw_id_fields = ('student', 'session', 'link')


@admin.register(AttendanceLink)
class AttendanceLinkAdmin(admin.ModelAdmin):
    list_display = ('token', 'session', 'created_by', 'expires_at', 'uses_count', 'max_uses', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('token', 'session__course_code')
    readonly_fields = ('token', 'uses_count')


@admin.register(RegistrationSession)
class RegistrationSessionAdmin(admin.ModelAdmin):
    list_display = ('department', 'created_by', 'expires_at', 'used', 'registered_user')
    list_filter = ('used', 'department')
    search_fields = ('department', 'qr_token')
    readonly_fields = ('qr_token', 'used', 'used_at', 'registered_user')

    def has_add_permission(self, request):
        return False  # Tokens are issued by the registration API


# ── Audit Log ───────────────────────────────────────────────────
@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    list_display = ('timestamp', 'username', 'action', 'entity', 'entity_id', 'ip_address')
    list_filter = ('action', 'entity')
    search_fields = ('username', 'action', 'entity_id')
    readonly_fields = ('id', 'user', 'username', 'action', 'entity', 'entity_id',
                       'details', 'ip_address', 'user_agent', 'timestamp')


# ── Login Audit Log ─────────────────────────────────────────────
@admin.register(LoginAuditLog)
class LoginAuditLogAdmin(ReadOnlyAdmin):
    """Read-only, non-deletable audit trail for login attempts."""
    list_display = ('timestamp', 'username_attempted', 'success', 'ip_address', 'user_agent_short')
    list_filter = ('success', 'timestamp')
    search_fields = ('username_attempted', 'ip_address')
    readonly_fields = (
        'id', 'user', 'username_attempted', 'ip_address',
        'user_agent', 'timestamp', 'success',
    )
    date_hierarchy = 'timestamp'
    list_per_page = 50

    @admin.display(description='User Agent')
    def user_agent_short(self, obj):
        """Truncate user-agent for list display."""
        ua = obj.user_agent or ''
        return (ua[:80] + '…') if len(ua) > 80 else ua

    def has_delete_permission(self, request, obj=None):
        return False


# ── Custom Admin Sidebar Grouping ────────────────────────────────
_ADMIN_GROUPS = [
    {
        'name': 'Users & Access',
        'models': ['User', 'Group'],
    },
    {
        'name': 'Exams & Custody',
        'models': ['ExamSession', 'ExamAttendance', 'BatchTransfer', 'Student'],
    },
    {
        'name': 'Incidents',
        'models': ['Incident', 'IncidentTemplate'],
    },
    {
        'name': 'Class Attendance',
        'models': ['AttendanceSession', 'StudentAttendance', 'AttendanceLink'],
    },
    {
        'name': 'Logs & Audit',
        'models': ['AuditLog', 'LoginAuditLog', 'AccessAttempt', 'AccessFailureLog', 'AccessLog'],
    },
]

_original_get_app_list = admin.AdminSite.get_app_list


def _custom_get_app_list(self, request, app_label=None):
    """Reorganise the admin sidebar into the custody groups above."""
    original = _original_get_app_list(self, request, app_label)

    # Single-app pages (breadcrumb links) keep the default layout
    if app_label is not None:
        return original

    model_lookup = {
        model['object_name']: model
        for app in original for model in app['models']
    }

    custom_list = []
    used = set()
    for group in _ADMIN_GROUPS:
        models = [model_lookup[name] for name in group['models'] if name in model_lookup]
        used.update(m['object_name'] for m in models)
        if models:
            custom_list.append({
                'name': group['name'],
                'app_label': group['name'],
                'app_url': '#',
                'has_module_perms': True,
                'models': models,
            })

    remaining = [m for app in original for m in app['models'] if m['object_name'] not in used]
    if remaining:
        custom_list.append({
            'name': 'Other',
            'app_label': 'other',
            'app_url': '#',
            'has_module_perms': True,
            'models': remaining,
        })
    return custom_list


admin.AdminSite.get_app_list = _custom_get_app_list
