import core.models.student
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
import uuid
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        ('created_at', models.IntegerField(blank=True, default=None, help_text='UTC Unix timestamp when created', null=True)),
        ('updated_at', models.IntegerField(blank=True, default=None, help_text='UTC Unix timestamp when last updated', null=True)),
    ]


ROLE_CHOICES = [
    ('ADMIN', 'Admin'), ('INVIGILATOR', 'Invigilator'), ('LECTURER', 'Lecturer'),
    ('DEPARTMENT_HEAD', 'Department Head'), ('FACULTY_OFFICER', 'Faculty Officer'),
    ('CLASS_REP', 'Class Representative'),
]
EXAM_STATUS_CHOICES = [
    ('NOT_STARTED', 'Not Started'), ('IN_PROGRESS', 'In Progress'), ('SUBMITTED', 'Submitted'),
    ('IN_TRANSIT', 'In Transit'), ('WITH_LECTURER', 'With Lecturer'),
    ('UNDER_GRADING', 'Under Grading'), ('GRADED', 'Graded'), ('RETURNED', 'Returned'),
    ('COMPLETED', 'Completed'),
]
INCIDENT_TYPE_CHOICES = [
    ('MISSING_SCRIPT', 'Missing Script'), ('DAMAGED_SCRIPT', 'Damaged Script'),
    ('MALPRACTICE', 'Malpractice'), ('STUDENT_ILLNESS', 'Student Illness'),
    ('VENUE_ISSUE', 'Venue Issue'), ('COUNT_DISCREPANCY', 'Count Discrepancy'),
    ('LATE_SUBMISSION', 'Late Submission'), ('PROCEDURAL_VIOLATION', 'Procedural Violation'),
    ('OTHER', 'Other'),
]
SEVERITY_CHOICES = [('LOW', 'Low'), ('MEDIUM', 'Medium'), ('HIGH', 'High'), ('CRITICAL', 'Critical')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('username', models.CharField(max_length=80, unique=True)),
                ('email', models.EmailField(max_length=120, unique=True)),
                ('first_name', models.CharField(max_length=80)),
                ('last_name', models.CharField(max_length=80)),
                ('role', models.CharField(choices=ROLE_CHOICES, db_index=True, default='INVIGILATOR', max_length=20)),
                ('department', models.CharField(blank=True, default='', max_length=120)),
                ('faculty', models.CharField(blank=True, default='', max_length=120)),
                ('phone', models.CharField(blank=True, default='', max_length=30)),
                ('is_active', models.BooleanField(default=True)),
                ('is_staff', models.BooleanField(default=False)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'db_table': 'users',
                'ordering': ['last_name', 'first_name'],
            },
        ),
        migrations.CreateModel(
            name='Student',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('index_number', models.CharField(max_length=30, unique=True)),
                ('first_name', models.CharField(max_length=80)),
                ('last_name', models.CharField(max_length=80)),
                ('program', models.CharField(max_length=150)),
                ('level', models.IntegerField()),
                ('profile_picture', models.FileField(blank=True, null=True, upload_to=core.models.student.student_picture_path, validators=[django.core.validators.FileExtensionValidator(['jpg', 'jpeg', 'png', 'webp'])])),
            ],
            options={
                'db_table': 'students',
                'ordering': ['index_number'],
            },
        ),
        migrations.CreateModel(
            name='ExamSession',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('batch_qr_code', models.CharField(max_length=80, unique=True)),
                ('course_code', models.CharField(db_index=True, max_length=20)),
                ('course_name', models.CharField(max_length=200)),
                ('lecturer_name', models.CharField(blank=True, default='', max_length=150)),
                ('department', models.CharField(blank=True, db_index=True, default='', max_length=120)),
                ('faculty', models.CharField(blank=True, db_index=True, default='', max_length=120)),
                ('venue', models.CharField(max_length=150)),
                ('exam_date', models.DateField(db_index=True)),
                ('start_time', models.TimeField(blank=True, null=True)),
                ('duration_minutes', models.IntegerField(default=120)),
                ('total_students', models.IntegerField(default=0)),
                ('status', models.CharField(choices=EXAM_STATUS_CHOICES, db_index=True, default='NOT_STARTED', max_length=20)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_sessions', to=settings.AUTH_USER_MODEL)),
                ('lecturer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='lectured_sessions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'exam_sessions',
                'ordering': ['-exam_date', 'course_code'],
            },
        ),
        migrations.CreateModel(
            name='ExamSessionStudent',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('exam_session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='expected_students', to='core.examsession')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='expected_sessions', to='core.student')),
            ],
            options={
                'db_table': 'exam_session_students',
                'constraints': [models.UniqueConstraint(fields=('exam_session', 'student'), name='unique_expected_student')],
            },
        ),
        migrations.CreateModel(
            name='ExamAttendance',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('entry_time', models.IntegerField(blank=True, null=True)),
                ('exit_time', models.IntegerField(blank=True, null=True)),
                ('submission_time', models.IntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=[('PRESENT', 'Present'), ('SUBMITTED', 'Submitted'), ('LEFT_WITHOUT_SUBMITTING', 'Left Without Submitting'), ('ABSENT', 'Absent')], default='PRESENT', max_length=30)),
                ('discrepancy_note', models.TextField(blank=True, default='')),
                ('exam_session', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='attendances', to='core.examsession')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='recorded_attendances', to=settings.AUTH_USER_MODEL)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='exam_attendances', to='core.student')),
            ],
            options={
                'db_table': 'exam_attendances',
                'constraints': [models.UniqueConstraint(fields=('student', 'exam_session'), name='unique_student_exam_attendance')],
            },
        ),
        migrations.CreateModel(
            name='BatchTransfer',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('exams_expected', models.IntegerField()),
                ('exams_received', models.IntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('CONFIRMED', 'Confirmed'), ('DISCREPANCY_REPORTED', 'Discrepancy Reported'), ('RESOLVED', 'Resolved')], db_index=True, default='PENDING', max_length=25)),
                ('location', models.CharField(blank=True, default='', max_length=200)),
                ('notes', models.TextField(blank=True, default='')),
                ('requested_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('discrepancy_note', models.TextField(blank=True, default='')),
                ('resolution_note', models.TextField(blank=True, default='')),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('exam_session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transfers', to='core.examsession')),
                ('from_handler', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transfers_sent', to=settings.AUTH_USER_MODEL)),
                ('resolved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='transfers_resolved', to=settings.AUTH_USER_MODEL)),
                ('to_handler', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transfers_received', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'batch_transfers',
                'ordering': ['-requested_at'],
                'indexes': [
                    models.Index(fields=['exam_session', 'requested_at'], name='idx_transfer_session_req'),
                    models.Index(fields=['to_handler', 'status'], name='idx_transfer_to_status'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Incident',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('incident_number', models.CharField(max_length=20, unique=True)),
                ('type', models.CharField(choices=INCIDENT_TYPE_CHOICES, db_index=True, max_length=30)),
                ('severity', models.CharField(choices=SEVERITY_CHOICES, default='MEDIUM', max_length=10)),
                ('status', models.CharField(choices=[('REPORTED', 'Reported'), ('INVESTIGATING', 'Investigating'), ('RESOLVED', 'Resolved'), ('ESCALATED', 'Escalated'), ('CLOSED', 'Closed')], db_index=True, default='REPORTED', max_length=15)),
                ('title', models.CharField(max_length=200)),
                ('description', models.TextField()),
                ('location', models.CharField(blank=True, default='', max_length=200)),
                ('is_confidential', models.BooleanField(default=False)),
                ('assigned_at', models.IntegerField(blank=True, null=True)),
                ('resolved_at', models.IntegerField(blank=True, null=True)),
                ('closed_at', models.IntegerField(blank=True, null=True)),
                ('resolution_notes', models.TextField(blank=True, default='')),
                ('assignee', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='assigned_incidents', to=settings.AUTH_USER_MODEL)),
                ('exam_session', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='incidents', to='core.examsession')),
                ('reporter', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reported_incidents', to=settings.AUTH_USER_MODEL)),
                ('student', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='incidents', to='core.student')),
            ],
            options={
                'db_table': 'incidents',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='IncidentComment',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('content', models.TextField()),
                ('is_internal', models.BooleanField(default=False)),
                ('author', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='incident_comments', to=settings.AUTH_USER_MODEL)),
                ('incident', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='comments', to='core.incident')),
            ],
            options={
                'db_table': 'incident_comments',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='IncidentStatusHistory',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('from_status', models.CharField(blank=True, default='', max_length=15)),
                ('to_status', models.CharField(max_length=15)),
                ('notes', models.TextField(blank=True, default='')),
                ('timestamp', models.IntegerField()),
                ('changed_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('incident', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_history', to='core.incident')),
            ],
            options={
                'db_table': 'incident_status_history',
                'ordering': ['timestamp', 'id'],
            },
        ),
        migrations.CreateModel(
            name='IncidentTemplate',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=120, unique=True)),
                ('type', models.CharField(choices=INCIDENT_TYPE_CHOICES, max_length=30)),
                ('severity', models.CharField(choices=SEVERITY_CHOICES, default='MEDIUM', max_length=10)),
                ('title', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True, default='')),
                ('is_active', models.BooleanField(default=True)),
                ('created_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'incident_templates',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='AttendanceSession',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('course_code', models.CharField(max_length=20)),
                ('course_name', models.CharField(max_length=200)),
                ('lecturer_name', models.CharField(blank=True, default='', max_length=150)),
                ('venue', models.CharField(blank=True, default='', max_length=150)),
                ('device_id', models.CharField(db_index=True, max_length=120)),
                ('expected_student_count', models.IntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=[('IN_PROGRESS', 'In Progress'), ('PAUSED', 'Paused'), ('COMPLETED', 'Completed')], db_index=True, default='IN_PROGRESS', max_length=15)),
                ('start_time', models.IntegerField()),
                ('end_time', models.IntegerField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendance_sessions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'attendance_sessions',
                'ordering': ['-start_time'],
            },
        ),
        migrations.CreateModel(
            name='AttendanceLink',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('token', models.CharField(max_length=64, unique=True)),
                ('expires_at', models.IntegerField()),
                ('max_uses', models.IntegerField(blank=True, null=True)),
                ('uses_count', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('deactivated_at', models.IntegerField(blank=True, null=True)),
                ('geofence_lat', models.FloatField(blank=True, null=True)),
                ('geofence_lng', models.FloatField(blank=True, null=True)),
                ('geofence_radius_m', models.IntegerField(blank=True, null=True)),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='links', to='core.attendancesession')),
            ],
            options={
                'db_table': 'attendance_links',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='StudentAttendance',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('check_in_time', models.IntegerField()),
                ('method', models.CharField(choices=[('QR_CODE', 'QR Code'), ('INDEX_NUMBER', 'Index Number'), ('LINK', 'Attendance Link'), ('MANUAL', 'Manual')], default='INDEX_NUMBER', max_length=15)),
                ('status', models.CharField(choices=[('PRESENT', 'Present'), ('LATE', 'Late'), ('EXCUSED', 'Excused')], default='PRESENT', max_length=10)),
                ('is_confirmed', models.BooleanField(default=True)),
                ('link', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='records', to='core.attendancelink')),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='records', to='core.attendancesession')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='class_attendances', to='core.student')),
            ],
            options={
                'db_table': 'student_attendances',
                'ordering': ['check_in_time'],
                'constraints': [models.UniqueConstraint(fields=('session', 'student'), name='unique_session_student_attendance')],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('username', models.CharField(blank=True, default='', max_length=80)),
                ('action', models.CharField(db_index=True, max_length=60)),
                ('entity', models.CharField(max_length=50)),
                ('entity_id', models.CharField(blank=True, default='', max_length=36)),
                ('details', models.JSONField(blank=True, null=True)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True, default='')),
                ('timestamp', models.IntegerField(db_index=True)),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'audit_logs',
                'ordering': ['-timestamp', '-id'],
                'indexes': [
                    models.Index(fields=['user', 'action'], name='idx_audit_user_action'),
                    models.Index(fields=['entity', 'entity_id'], name='idx_audit_entity'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LoginAuditLog',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('username_attempted', models.CharField(max_length=150)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True, default='')),
                ('timestamp', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('success', models.BooleanField(db_index=True, default=False)),
                ('user', models.ForeignKey(blank=True, help_text='Authenticated user (null for failed attempts)', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='login_audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Login Audit Log',
                'verbose_name_plural': 'Login Audit Logs',
                'db_table': 'login_audit_logs',
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['user', 'timestamp'], name='idx_login_audit_user_ts'),
                    models.Index(fields=['success', 'timestamp'], name='idx_login_audit_success_ts'),
                ],
            },
        ),
    ]
