"""
Dashboard app tests – exam sessions, students, incidents and their attachments,
users, registration QR codes, analytics and audit logs.
"""
import json
import shutil
import tempfile
from datetime import date, timedelta
from unittest import mock

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, Client, override_settings
from django.urls import reverse
from django.utils import timezone

from core.models import (
    AuditLog, BatchTransfer, ExamAttendance, ExamSession, ExamSessionStudent, Incident,
    IncidentAttachment, IncidentStatusHistory, RegistrationSession, Student, TimestampMixin, User,
)
from core.utils.incidents import create_incident, incident_prefix


def _send(client, method, url, body=None):
    return getattr(client, method)(url, data=json.dumps(body or {}), content_type='application/json')


class DashboardTestBase(TestCase):
    """Admin, one user per handler role and a NOT_STARTED exam session."""

    PASSWORD = 'Handler123!'

    @classmethod
    def setUpTestData(cls):
        cls.admin = User.objects.create_superuser(
            username='admin', email='admin@custody.local', password=cls.PASSWORD,
            first_name='Ada', last_name='Admin',
        )

        def make(username, role, **extra):
            return User.objects.create_user(
                username=username, email=f'{username}@custody.local', password=cls.PASSWORD,
                first_name=username.title(), last_name='Tester', role=role, **extra,
            )

        cls.invigilator = make('invig', User.ROLE_INVIGILATOR)
        cls.lecturer = make('lect', User.ROLE_LECTURER, department='Computer Science')
        cls.head = make('hod', User.ROLE_DEPARTMENT_HEAD)
        cls.officer = make('officer', User.ROLE_FACULTY_OFFICER)
        cls.class_rep = make('rep', User.ROLE_CLASS_REP)

        cls.session = ExamSession.objects.create(
            course_code='CS101', course_name='Intro to Computing', venue='Hall A',
            exam_date=date(2026, 5, 4), department='Computer Science', faculty='Science',
        )
        cls.student = Student.objects.create(
            index_number='UG0001', first_name='Kofi', last_name='Mensah',
            program='Computer Science', level=100,
        )
        cls.other_student = Student.objects.create(
            index_number='UG0002', first_name='Ama', last_name='Owusu',
            program='Computer Science', level=200,
        )

    def setUp(self):
        self.client = Client()

    def login(self, user):
        self.client.login(username=user.username, password=self.PASSWORD)


# ── Exam sessions ────────────────────────────────────────────────────────

class ExamSessionApiTests(DashboardTestBase):

    def test_lecturer_creates_session_with_batch_code(self):
        self.login(self.lecturer)
        r = _send(self.client, 'post', reverse('dashboard_api:sessions'), {
            'course_code': 'math201', 'course_name': 'Linear Algebra',
            'venue': 'Hall B', 'exam_date': '2026-06-01', 'start_time': '09:00',
        })
        self.assertEqual(r.status_code, 201)
        data = json.loads(r.content)['exam_session']
        self.assertEqual(data['course_code'], 'MATH201')
        self.assertTrue(data['batch_qr_code'].startswith('BATCH-MATH201-'))
        self.assertEqual(data['status'], ExamSession.STATUS_NOT_STARTED)
        self.assertTrue(AuditLog.objects.filter(action='CREATE_EXAM_SESSION').exists())

    def test_create_requires_fields(self):
        self.login(self.lecturer)
        r = _send(self.client, 'post', reverse('dashboard_api:sessions'), {'course_code': 'X1'})
        self.assertEqual(r.status_code, 400)
        self.assertIn('course_name', json.loads(r.content)['error'])

    def test_invigilator_cannot_create_session(self):
        self.login(self.invigilator)
        r = _send(self.client, 'post', reverse('dashboard_api:sessions'), {
            'course_code': 'X1', 'course_name': 'X', 'venue': 'V', 'exam_date': '2026-06-01',
        })
        self.assertEqual(r.status_code, 403)

    def test_list_filters_by_status(self):
        ExamSession.objects.create(
            course_code='BIO110', course_name='Biology', venue='Lab',
            exam_date=date(2026, 5, 5), status=ExamSession.STATUS_GRADED,
        )
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:sessions'), {'status': ExamSession.STATUS_GRADED})
        data = json.loads(r.content)
        self.assertEqual(data['pagination']['total'], 1)
        self.assertEqual(data['sessions'][0]['course_code'], 'BIO110')
        self.assertEqual(data['sessions'][0]['attendance_count'], 0)

    def test_update_rejects_status_field(self):
        self.login(self.lecturer)
        r = _send(self.client, 'patch', reverse('dashboard_api:session_detail', args=[self.session.id]), {
            'status': ExamSession.STATUS_GRADED,
        })
        self.assertEqual(r.status_code, 400)

    def test_detail_lists_allowed_transitions(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:session_detail', args=[self.session.id]))
        data = json.loads(r.content)['exam_session']
        self.assertEqual(data['allowed_transitions'], [ExamSession.STATUS_IN_PROGRESS])
        self.assertIsNone(data['current_custodian'])

    def test_departments_and_faculties(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:departments'))
        self.assertEqual(json.loads(r.content)['departments'], ['Computer Science'])
        r = self.client.get(reverse('dashboard_api:faculties'))
        self.assertEqual(json.loads(r.content)['faculties'], ['Science'])

    def test_lookup_by_batch_code(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:session_by_qr', args=[self.session.batch_qr_code]))
        self.assertEqual(json.loads(r.content)['exam_session']['id'], str(self.session.id))

    def test_qr_code_is_png_data_url(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:session_qr_code', args=[self.session.id]))
        data = json.loads(r.content)
        self.assertTrue(data['qr_code'].startswith('data:image/png;base64,'))
        self.assertEqual(data['payload']['type'], 'EXAM_BATCH')


class SessionDeleteTests(DashboardTestBase):

    def test_non_admin_cannot_delete(self):
        self.login(self.lecturer)
        r = self.client.delete(reverse('dashboard_api:session_detail', args=[self.session.id]))
        self.assertEqual(r.status_code, 403)

    def test_delete_blocked_by_attendance(self):
        ExamAttendance.objects.create(student=self.student, exam_session=self.session)
        self.login(self.admin)
        r = self.client.delete(reverse('dashboard_api:session_detail', args=[self.session.id]))
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['attendanceCount'], 1)
        self.assertTrue(ExamSession.objects.filter(pk=self.session.pk).exists())

    def test_delete_blocked_by_custody_chain(self):
        BatchTransfer.objects.create(
            exam_session=self.session, from_handler=self.invigilator,
            to_handler=self.lecturer, exams_expected=20,
        )
        self.login(self.admin)
        r = self.client.delete(reverse('dashboard_api:session_detail', args=[self.session.id]))
        self.assertEqual(r.status_code, 400)
        data = json.loads(r.content)
        self.assertEqual(data['error'], 'Cannot delete exam session with custody transfers')
        self.assertEqual(data['transferCount'], 1)
        self.assertTrue(BatchTransfer.objects.filter(exam_session=self.session).exists())

    def test_admin_deletes_empty_session(self):
        self.login(self.admin)
        r = self.client.delete(reverse('dashboard_api:session_detail', args=[self.session.id]))
        self.assertEqual(r.status_code, 200)
        self.assertFalse(ExamSession.objects.filter(pk=self.session.pk).exists())


class StatusEditorTests(DashboardTestBase):

    def _set(self, user, status):
        self.login(user)
        return _send(self.client, 'post', reverse('dashboard_api:update_status', args=[self.session.id]), {
            'status': status,
        })

    def test_valid_transition(self):
        r = self._set(self.lecturer, ExamSession.STATUS_IN_PROGRESS)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(json.loads(r.content)['previous_status'], ExamSession.STATUS_NOT_STARTED)
        self.session.refresh_from_db()
        self.assertEqual(self.session.status, ExamSession.STATUS_IN_PROGRESS)

    def test_invalid_transition_lists_allowed(self):
        r = self._set(self.lecturer, ExamSession.STATUS_GRADED)
        self.assertEqual(r.status_code, 400)
        data = json.loads(r.content)
        self.assertEqual(data['allowedTransitions'], [ExamSession.STATUS_IN_PROGRESS])
        self.assertEqual(data['currentStatus'], ExamSession.STATUS_NOT_STARTED)

    def test_admin_may_skip_steps(self):
        r = self._set(self.admin, ExamSession.STATUS_GRADED)
        self.assertEqual(r.status_code, 200)

    def test_same_status_rejected(self):
        r = self._set(self.admin, ExamSession.STATUS_NOT_STARTED)
        self.assertEqual(r.status_code, 400)
        self.assertIn('already', json.loads(r.content)['error'])

    def test_unknown_status_rejected(self):
        r = self._set(self.admin, 'LOST')
        self.assertEqual(r.status_code, 400)
        self.assertIn('validStatuses', json.loads(r.content))

    def test_invigilator_cannot_use_status_editor(self):
        r = self._set(self.invigilator, ExamSession.STATUS_IN_PROGRESS)
        self.assertEqual(r.status_code, 403)

    def test_submitted_establishes_initial_custody(self):
        self.session.status = ExamSession.STATUS_IN_PROGRESS
        self.session.save()
        ExamAttendance.objects.create(
            student=self.student, exam_session=self.session, status=ExamAttendance.STATUS_SUBMITTED,
        )
        r = self._set(self.lecturer, ExamSession.STATUS_SUBMITTED)
        self.assertEqual(r.status_code, 200)
        transfer = BatchTransfer.objects.get(exam_session=self.session)
        self.assertEqual(transfer.from_handler, self.lecturer)
        self.assertEqual(transfer.to_handler, self.lecturer)
        self.assertEqual(transfer.status, BatchTransfer.STATUS_CONFIRMED)
        self.assertEqual(transfer.exams_expected, 1)


class EndExamTests(DashboardTestBase):

    def setUp(self):
        super().setUp()
        self.session.status = ExamSession.STATUS_IN_PROGRESS
        self.session.save()
        now = TimestampMixin.utc_timestamp()
        # Entered and left: counted as a submitted script
        ExamAttendance.objects.create(
            student=self.student, exam_session=self.session,
            entry_time=now - 3600, exit_time=now - 60,
        )
        # Entered and never submitted nor left: raises an incident
        ExamAttendance.objects.create(
            student=self.other_student, exam_session=self.session, entry_time=now - 3500,
        )

    def test_end_exam_settles_attendance_and_custody(self):
        self.login(self.invigilator)
        with mock.patch('dashboard.api.sessions.publish') as publish:
            r = self.client.post(reverse('dashboard_api:end_exam', args=[self.session.id]))
        self.assertEqual(r.status_code, 200)
        data = json.loads(r.content)
        self.assertEqual(data['exam_session']['status'], ExamSession.STATUS_SUBMITTED)
        self.assertEqual(data['exam_session']['scripts_count'], 1)
        self.assertEqual(data['initial_custody_transfer']['exams_expected'], 1)
        self.assertEqual(len(data['incidents_created']), 1)
        publish.assert_called_once()

        incident = Incident.objects.get()
        self.assertEqual(incident.type, Incident.TYPE_PROCEDURAL_VIOLATION)
        self.assertEqual(incident.severity, Incident.SEVERITY_LOW)
        self.assertEqual(incident.student, self.other_student)
        self.assertEqual(
            ExamAttendance.objects.get(student=self.student).status, ExamAttendance.STATUS_SUBMITTED,
        )

    def test_only_in_progress_sessions_can_end(self):
        self.session.status = ExamSession.STATUS_NOT_STARTED
        self.session.save()
        self.login(self.invigilator)
        r = self.client.post(reverse('dashboard_api:end_exam', args=[self.session.id]))
        self.assertEqual(r.status_code, 400)
        self.assertFalse(BatchTransfer.objects.exists())


class ExpectedStudentTests(DashboardTestBase):

    def test_add_by_index_numbers_creates_placeholders(self):
        self.login(self.lecturer)
        r = _send(self.client, 'post', reverse('dashboard_api:expected_students', args=[self.session.id]), {
            'index_numbers': ['UG0001', 'UG9999', 'UG0001'],
        })
        self.assertEqual(r.status_code, 201)
        data = json.loads(r.content)
        self.assertEqual(data['added'], 2)
        self.assertEqual(data['students_created'], 1)
        placeholder = Student.objects.get(index_number='UG9999')
        self.assertEqual(placeholder.first_name, 'Unknown')
        self.assertEqual(placeholder.level, 100)

    def test_readding_is_skipped(self):
        ExamSessionStudent.objects.create(exam_session=self.session, student=self.student)
        self.login(self.lecturer)
        r = _send(self.client, 'post', reverse('dashboard_api:expected_students', args=[self.session.id]), {
            'index_numbers': ['UG0001'],
        })
        data = json.loads(r.content)
        self.assertEqual(data['added'], 0)
        self.assertEqual(data['skipped'], 1)

    def test_add_from_csv_upload(self):
        self.login(self.invigilator)
        upload = SimpleUploadedFile('roster.csv', b'indexNumber\nUG0001\nUG0002\n', content_type='text/csv')
        r = self.client.post(
            reverse('dashboard_api:expected_students', args=[self.session.id]), {'file': upload},
        )
        self.assertEqual(r.status_code, 201)
        self.assertEqual(self.session.expected_students.count(), 2)

    def test_attendance_summary_lists_not_arrived(self):
        ExamSessionStudent.objects.create(exam_session=self.session, student=self.student)
        ExamSessionStudent.objects.create(exam_session=self.session, student=self.other_student)
        ExamAttendance.objects.create(student=self.student, exam_session=self.session)
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:attendance_summary', args=[self.session.id]))
        data = json.loads(r.content)
        self.assertEqual(data['summary']['expected'], 2)
        self.assertEqual(data['summary']['attended'], 1)
        self.assertEqual(data['summary']['attendance_rate'], 50.0)
        self.assertEqual([s['index_number'] for s in data['not_arrived']], ['UG0002'])

    def test_export_csv(self):
        ExamSessionStudent.objects.create(exam_session=self.session, student=self.student)
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:export_expected_students', args=[self.session.id]))
        self.assertEqual(r['Content-Type'], 'text/csv')
        body = r.content.decode()
        self.assertIn('indexNumber,firstName', body)
        self.assertIn('UG0001,Kofi,Mensah', body)
        self.assertIn('NOT_ARRIVED', body)

    def test_remove_expected_student(self):
        ExamSessionStudent.objects.create(exam_session=self.session, student=self.student)
        self.login(self.lecturer)
        r = self.client.delete(reverse(
            'dashboard_api:remove_expected_student', args=[self.session.id, self.student.id],
        ))
        self.assertEqual(r.status_code, 200)
        self.assertFalse(self.session.expected_students.exists())


# ── Students ─────────────────────────────────────────────────────────────

class StudentApiTests(DashboardTestBase):

    def test_search_students(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:students'), {'search': 'owusu'})
        data = json.loads(r.content)
        self.assertEqual([s['index_number'] for s in data['students']], ['UG0002'])

    def test_duplicate_index_number_conflicts(self):
        self.login(self.invigilator)
        r = _send(self.client, 'post', reverse('dashboard_api:students'), {
            'index_number': 'UG0001', 'first_name': 'A', 'last_name': 'B',
            'program': 'P', 'level': 100,
        })
        self.assertEqual(r.status_code, 409)

    def test_create_student_validates_level(self):
        self.login(self.invigilator)
        r = _send(self.client, 'post', reverse('dashboard_api:students'), {
            'index_number': 'UG0100', 'first_name': 'A', 'last_name': 'B',
            'program': 'P', 'level': 'first',
        })
        self.assertEqual(r.status_code, 400)

    def test_import_csv(self):
        self.login(self.invigilator)
        csv_body = (
            'IndexNumber,FirstName,LastName,Program,Level\n'
            'UG0001,Kofi,Mensah,Computer Science,100\n'
            'UG0300,Yaw,Boateng,Mathematics,300\n'
        ).encode()
        upload = SimpleUploadedFile('students.csv', csv_body, content_type='text/csv')
        r = self.client.post(reverse('dashboard_api:import_students'), {'file': upload})
        self.assertEqual(r.status_code, 200)
        data = json.loads(r.content)
        self.assertEqual(data['created'], 1)
        self.assertEqual(data['skipped'], 1)
        self.assertEqual(Student.objects.get(index_number='UG0300').level, 300)

    def test_import_rejects_bad_rows(self):
        self.login(self.invigilator)
        upload = SimpleUploadedFile(
            'students.csv', b'indexNumber,firstName,lastName,program,level\nUG0400,Kwame,,Maths,100\n',
        )
        r = self.client.post(reverse('dashboard_api:import_students'), {'file': upload})
        self.assertEqual(r.status_code, 400)
        self.assertIn('Row 2', json.loads(r.content)['error'])
        self.assertFalse(Student.objects.filter(index_number='UG0400').exists())

    def test_delete_student_with_attendance_is_blocked(self):
        ExamAttendance.objects.create(student=self.student, exam_session=self.session)
        self.login(self.admin)
        r = self.client.delete(reverse('dashboard_api:student_detail', args=[self.student.id]))
        self.assertEqual(r.status_code, 400)

    def test_csv_template(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:csv_template'))
        self.assertTrue(r.content.decode().startswith('indexNumber,firstName,lastName,program,level'))


# ── Incidents ────────────────────────────────────────────────────────────

class IncidentApiTests(DashboardTestBase):

    def _report(self, user, **overrides):
        body = {
            'type': Incident.TYPE_MISSING_SCRIPT, 'severity': Incident.SEVERITY_HIGH,
            'title': 'Script missing', 'description': 'One script short at collection',
            'exam_session_id': str(self.session.id),
        }
        body.update(overrides)
        self.login(user)
        return _send(self.client, 'post', reverse('dashboard_api:incidents'), body)

    def test_report_assigns_daily_number(self):
        r = self._report(self.invigilator)
        self.assertEqual(r.status_code, 201)
        data = json.loads(r.content)['incident']
        self.assertEqual(data['incident_number'], f'{incident_prefix()}0001')
        self.assertEqual(data['status'], Incident.STATUS_REPORTED)
        self.assertEqual(IncidentStatusHistory.objects.filter(incident_id=data['id']).count(), 1)

    def test_numbers_continue_within_day(self):
        self._report(self.invigilator)
        r = self._report(self.invigilator, title='Another')
        self.assertEqual(json.loads(r.content)['incident']['incident_number'], f'{incident_prefix()}0002')

    def test_malpractice_is_forced_confidential(self):
        r = self._report(self.invigilator, type=Incident.TYPE_MALPRACTICE, is_confidential=False)
        self.assertTrue(json.loads(r.content)['incident']['is_confidential'])

    def test_invalid_type_rejected(self):
        r = self._report(self.invigilator, type='FIRE')
        self.assertEqual(r.status_code, 400)

    def test_visibility(self):
        create_incident(
            self.lecturer, type=Incident.TYPE_OTHER, title='Public', description='d',
        )
        create_incident(
            self.lecturer, type=Incident.TYPE_MALPRACTICE, title='Secret', description='d',
        )

        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:incidents'))
        self.assertEqual(json.loads(r.content)['pagination']['total'], 0)

        self.login(self.head)
        r = self.client.get(reverse('dashboard_api:incidents'))
        titles = [i['title'] for i in json.loads(r.content)['incidents']]
        self.assertEqual(titles, ['Public'])

        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:incidents'))
        self.assertEqual(json.loads(r.content)['pagination']['total'], 2)

    def test_status_change_records_history(self):
        incident = create_incident(
            self.invigilator, type=Incident.TYPE_OTHER, title='T', description='d',
        )
        self.login(self.invigilator)
        r = _send(self.client, 'post', reverse('dashboard_api:update_incident_status', args=[incident.id]), {
            'status': Incident.STATUS_RESOLVED, 'resolution_notes': 'Found it',
        })
        self.assertEqual(r.status_code, 200)
        incident.refresh_from_db()
        self.assertIsNotNone(incident.resolved_at)
        self.assertEqual(incident.resolution_notes, 'Found it')
        history = list(incident.status_history.order_by('timestamp', 'id'))
        self.assertEqual(history[-1].from_status, Incident.STATUS_REPORTED)
        self.assertEqual(history[-1].to_status, Incident.STATUS_RESOLVED)

    def test_assign_moves_to_investigating(self):
        incident = create_incident(
            self.invigilator, type=Incident.TYPE_OTHER, title='T', description='d',
        )
        self.login(self.head)
        r = _send(self.client, 'post', reverse('dashboard_api:assign_incident', args=[incident.id]), {
            'assignee_id': str(self.officer.id),
        })
        self.assertEqual(r.status_code, 200)
        incident.refresh_from_db()
        self.assertEqual(incident.assignee, self.officer)
        self.assertEqual(incident.status, Incident.STATUS_INVESTIGATING)

    def test_internal_comments_hidden_from_reporter(self):
        incident = create_incident(
            self.invigilator, type=Incident.TYPE_OTHER, title='T', description='d',
        )
        self.login(self.head)
        url = reverse('dashboard_api:incident_comments', args=[incident.id])
        _send(self.client, 'post', url, {'content': 'internal note', 'is_internal': True})
        _send(self.client, 'post', url, {'content': 'public note'})

        self.login(self.invigilator)
        r = self.client.get(url)
        self.assertEqual([c['content'] for c in json.loads(r.content)['comments']], ['public note'])
        r = _send(self.client, 'post', url, {'content': 'sneaky', 'is_internal': True})
        self.assertEqual(r.status_code, 403)

    def test_stats(self):
        create_incident(self.invigilator, type=Incident.TYPE_OTHER, title='T', description='d')
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:incident_stats'))
        data = json.loads(r.content)
        self.assertEqual(data['total'], 1)
        self.assertEqual(data['openIncidents'], 1)
        self.assertEqual(data['byType'], {Incident.TYPE_OTHER: 1})

    def test_templates_restricted_to_faculty_officer(self):
        body = {
            'name': 'Missing script', 'type': Incident.TYPE_MISSING_SCRIPT,
            'title': 'Missing script', 'description': 'Script missing at collection',
        }
        self.login(self.invigilator)
        r = _send(self.client, 'post', reverse('dashboard_api:incident_templates'), body)
        self.assertEqual(r.status_code, 403)
        self.login(self.officer)
        r = _send(self.client, 'post', reverse('dashboard_api:incident_templates'), body)
        self.assertEqual(r.status_code, 201)

    def test_excel_export(self):
        create_incident(self.invigilator, type=Incident.TYPE_OTHER, title='T', description='d')
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:export_incidents_xlsx'))
        self.assertEqual(r.status_code, 200)
        self.assertIn('spreadsheetml', r['Content-Type'])

    def test_pdf_export(self):
        incident = create_incident(self.invigilator, type=Incident.TYPE_OTHER, title='T', description='d')
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:export_incident_pdf', args=[incident.id]))
        self.assertEqual(r['Content-Type'], 'application/pdf')
        self.assertTrue(r.content.startswith(b'%PDF'))


# ── Incident attachments ─────────────────────────────────────────────────

TEMP_MEDIA_ROOT = tempfile.mkdtemp()


@override_settings(MEDIA_ROOT=TEMP_MEDIA_ROOT)
class IncidentAttachmentTests(DashboardTestBase):

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(TEMP_MEDIA_ROOT, ignore_errors=True)
        super().tearDownClass()

    def setUp(self):
        super().setUp()
        self.incident = create_incident(
            self.invigilator, type=Incident.TYPE_DAMAGED_SCRIPT,
            title='Torn script', description='Pages 3-4 torn', exam_session=self.session,
        )
        self.url = reverse('dashboard_api:incident_attachments', args=[self.incident.id])

    def upload(self, user, *files):
        self.login(user)
        return self.client.post(self.url, {'files': list(files)})

    def _photo(self, name='torn.jpg'):
        return SimpleUploadedFile(name, b'\xff\xd8\xff fake jpeg', content_type='image/jpeg')

    def test_reporter_uploads_and_detail_lists_them(self):
        pdf = SimpleUploadedFile('statement.pdf', b'%PDF-1.4 statement', content_type='application/pdf')
        r = self.upload(self.invigilator, self._photo(), pdf)
        self.assertEqual(r.status_code, 201)
        uploaded = json.loads(r.content)['attachments']
        self.assertEqual([a['file_name'] for a in uploaded], ['torn.jpg', 'statement.pdf'])
        self.assertEqual(uploaded[1]['file_type'], 'application/pdf')
        self.assertTrue(AuditLog.objects.filter(action='UPLOAD_INCIDENT_ATTACHMENTS').exists())

        r = self.client.get(reverse('dashboard_api:incident_detail', args=[self.incident.id]))
        attachments = json.loads(r.content)['incident']['attachments']
        self.assertEqual(len(attachments), 2)
        self.assertEqual(attachments[0]['uploaded_by']['id'], str(self.invigilator.id))

    def test_no_files(self):
        self.login(self.invigilator)
        r = self.client.post(self.url, {})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['error'], 'No files uploaded')

    def test_disallowed_type_rejects_whole_batch(self):
        script = SimpleUploadedFile('run.exe', b'MZ', content_type='application/octet-stream')
        r = self.upload(self.invigilator, self._photo(), script)
        self.assertEqual(r.status_code, 400)
        self.assertIn('run.exe', json.loads(r.content)['error'])
        self.assertFalse(IncidentAttachment.objects.exists())

    def test_size_limit(self):
        with self.settings(INCIDENT_ATTACHMENT_MAX_BYTES=4):
            r = self.upload(self.invigilator, self._photo())
        self.assertEqual(r.status_code, 400)
        self.assertIn('too large', json.loads(r.content)['error'])

    def test_too_many_files(self):
        photos = [self._photo(f'p{n}.jpg') for n in range(6)]
        r = self.upload(self.invigilator, *photos)
        self.assertEqual(r.status_code, 400)

    def test_uninvolved_handler_cannot_upload(self):
        r = self.upload(self.lecturer, self._photo())
        self.assertEqual(r.status_code, 404)

    def test_delete_permissions(self):
        r = self.upload(self.head, self._photo())
        attachment_id = json.loads(r.content)['attachments'][0]['id']
        url = reverse('dashboard_api:delete_incident_attachment', args=[self.incident.id, attachment_id])

        self.client.logout()
        self.login(self.officer)
        self.assertEqual(self.client.delete(url).status_code, 403)

        self.client.logout()
        self.login(self.invigilator)
        r = self.client.delete(url)
        self.assertEqual(r.status_code, 200)
        self.assertFalse(IncidentAttachment.objects.filter(pk=attachment_id).exists())
        self.assertEqual(self.client.delete(url).status_code, 404)

    def test_attachment_of_other_incident_is_not_found(self):
        r = self.upload(self.invigilator, self._photo())
        attachment_id = json.loads(r.content)['attachments'][0]['id']
        other = create_incident(self.invigilator, type=Incident.TYPE_OTHER, title='Other', description='d')
        url = reverse('dashboard_api:delete_incident_attachment', args=[other.id, attachment_id])
        self.assertEqual(self.client.delete(url).status_code, 404)


# ── Users ────────────────────────────────────────────────────────────────

class UserApiTests(DashboardTestBase):

    def test_handlers_excludes_class_reps_and_self(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:handlers'))
        ids = {h['id'] for h in json.loads(r.content)['handlers']}
        self.assertIn(str(self.lecturer.id), ids)
        self.assertNotIn(str(self.class_rep.id), ids)
        self.assertNotIn(str(self.invigilator.id), ids)

    def test_list_filters_by_role(self):
        self.login(self.invigilator)
        r = self.client.get(reverse('dashboard_api:users'), {'role': User.ROLE_LECTURER})
        self.assertEqual([u['username'] for u in json.loads(r.content)['users']], ['lect'])

    def test_non_admin_cannot_create(self):
        self.login(self.lecturer)
        r = _send(self.client, 'post', reverse('dashboard_api:users'), {'username': 'x'})
        self.assertEqual(r.status_code, 403)

    def test_admin_creates_user_with_hashed_password(self):
        self.login(self.admin)
        r = _send(self.client, 'post', reverse('dashboard_api:users'), {
            'username': 'newlect', 'email': 'NewLect@custody.local', 'password': 'Str0ng-Passw0rd!',
            'first_name': 'New', 'last_name': 'Lecturer', 'role': User.ROLE_LECTURER,
        })
        self.assertEqual(r.status_code, 201)
        user = User.objects.get(username='newlect')
        self.assertEqual(user.email, 'newlect@custody.local')
        self.assertTrue(user.check_password('Str0ng-Passw0rd!'))
        self.assertNotEqual(user.password, 'Str0ng-Passw0rd!')

    def test_duplicate_username_conflicts(self):
        self.login(self.admin)
        r = _send(self.client, 'post', reverse('dashboard_api:users'), {
            'username': 'lect', 'email': 'other@custody.local', 'password': 'Str0ng-Passw0rd!',
            'first_name': 'L', 'last_name': 'L',
        })
        self.assertEqual(r.status_code, 409)

    def test_invalid_role_rejected(self):
        self.login(self.admin)
        r = _send(self.client, 'post', reverse('dashboard_api:users'), {
            'username': 'x', 'email': 'x@custody.local', 'password': 'Str0ng-Passw0rd!',
            'first_name': 'X', 'last_name': 'Y', 'role': 'JANITOR',
        })
        self.assertEqual(r.status_code, 400)

    def test_deactivate(self):
        self.login(self.admin)
        r = self.client.post(reverse('dashboard_api:deactivate_user', args=[self.invigilator.id]))
        self.assertEqual(r.status_code, 200)
        self.invigilator.refresh_from_db()
        self.assertFalse(self.invigilator.is_active)

    def test_admin_cannot_deactivate_self(self):
        self.login(self.admin)
        r = self.client.post(reverse('dashboard_api:deactivate_user', args=[self.admin.id]))
        self.assertEqual(r.status_code, 400)


# ── Analytics and audit logs ─────────────────────────────────────────────

class AnalyticsTests(DashboardTestBase):

    @classmethod
    def setUpTestData(cls):
        super().setUpTestData()
        now = timezone.now()
        BatchTransfer.objects.create(
            exam_session=cls.session, from_handler=cls.invigilator, to_handler=cls.lecturer,
            exams_expected=10, exams_received=10, status=BatchTransfer.STATUS_CONFIRMED,
            requested_at=now - timedelta(hours=3), confirmed_at=now - timedelta(hours=1),
        )
        BatchTransfer.objects.create(
            exam_session=cls.session, from_handler=cls.lecturer, to_handler=cls.head,
            exams_expected=10, exams_received=9, status=BatchTransfer.STATUS_DISCREPANCY_REPORTED,
            discrepancy_note='One short', requested_at=now, confirmed_at=now,
        )

    def test_non_admin_forbidden(self):
        self.login(self.lecturer)
        r = self.client.get(reverse('dashboard_api:analytics_overview'))
        self.assertEqual(r.status_code, 403)

    def test_overview(self):
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:analytics_overview'))
        data = json.loads(r.content)['overview']
        self.assertEqual(data['totalExams'], 1)
        self.assertEqual(data['activeBatches'], 1)
        self.assertEqual(data['totalHandlers'], 4)
        self.assertEqual(data['totalDiscrepancies'], 1)
        self.assertEqual(data['discrepancyRate'], 50.0)
        self.assertEqual(data['avgTransferTimeHours'], 2.0)

    def test_handler_performance_sorted_by_total(self):
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:handler_performance'))
        rows = json.loads(r.content)['handlers']
        self.assertEqual(rows[0]['handler']['id'], str(self.lecturer.id))
        metrics = rows[0]['metrics']
        self.assertEqual(metrics['totalTransfers'], 2)
        self.assertEqual(metrics['transfersReceived'], 1)
        self.assertEqual(metrics['discrepancies'], 1)
        self.assertEqual(metrics['currentCustody'], 1)

    def test_discrepancies(self):
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:analytics_discrepancies'))
        data = json.loads(r.content)
        self.assertEqual(data['summary'], {
            'total': 1, 'resolved': 0, 'unresolved': 1, 'resolutionRate': 0,
        })
        self.assertEqual(data['breakdown']['byDepartment'], {'Computer Science': 1})
        self.assertEqual(len(data['recentDiscrepancies']), 1)

    def test_exam_stats_date_filter(self):
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:exam_stats'), {'start_date': '2026-06-01'})
        self.assertEqual(json.loads(r.content)['summary']['totalExams'], 0)
        r = self.client.get(reverse('dashboard_api:exam_stats'))
        data = json.loads(r.content)
        self.assertEqual(data['breakdown']['byMonth'], {'2026-05': 1})
        self.assertEqual(data['breakdown']['byFaculty'], {'Science': 1})

    def test_export_workbook_has_a_sheet_per_view(self):
        from io import BytesIO
        from openpyxl import load_workbook

        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:export_analytics'))
        self.assertEqual(r.status_code, 200)
        wb = load_workbook(BytesIO(r.content))
        self.assertEqual(
            wb.sheetnames, ['Overview', 'Handler Performance', 'Discrepancies', 'Exam Statistics'],
        )


class AuditLogApiTests(DashboardTestBase):

    def setUp(self):
        super().setUp()
        AuditLog.objects.create(
            user=self.lecturer, username='lect', action='INITIATE_TRANSFER',
            entity='BatchTransfer', entity_id='abc', timestamp=1_000,
        )
        AuditLog.objects.create(
            user=self.invigilator, username='invig', action='RECORD_ENTRY',
            entity='ExamAttendance', entity_id='def', timestamp=2_000,
        )

    def test_admin_only(self):
        self.login(self.head)
        r = self.client.get(reverse('dashboard_api:audit_logs'))
        self.assertEqual(r.status_code, 403)

    def test_newest_first_with_filters(self):
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:audit_logs'))
        actions = [log['action'] for log in json.loads(r.content)['logs']]
        self.assertEqual(actions[:2], ['RECORD_ENTRY', 'INITIATE_TRANSFER'])

        r = self.client.get(reverse('dashboard_api:audit_logs'), {'user_id': str(self.lecturer.id)})
        self.assertEqual([log['action'] for log in json.loads(r.content)['logs']], ['INITIATE_TRANSFER'])

    def test_distinct_actions(self):
        self.login(self.admin)
        r = self.client.get(reverse('dashboard_api:audit_actions'))
        actions = json.loads(r.content)['actions']
        self.assertIn('INITIATE_TRANSFER', actions)
        self.assertEqual(len(actions), len(set(actions)))


# ── Self-registration QR codes ───────────────────────────────────────────

class RegistrationSessionTests(DashboardTestBase):

    def setUp(self):
        super().setUp()
        self.public = Client()

    def issue(self, **body):
        self.login(self.admin)
        body.setdefault('department', 'Computer Science')
        r = _send(self.client, 'post', reverse('dashboard_api:registration_sessions'), body)
        self.assertEqual(r.status_code, 201)
        return json.loads(r.content)

    def register(self, token, **overrides):
        body = {
            'qr_token': token, 'username': 'newbie', 'email': 'Newbie@custody.local',
            'first_name': 'Nana', 'last_name': 'Newbie', 'phone': '0241234567',
            'password': self.PASSWORD,
        }
        body.update(overrides)
        return _send(self.public, 'post', reverse('tracking_api:public_register'), body)

    def test_issue_returns_qr_code(self):
        data = self.issue(expires_in_minutes=30)
        self.assertEqual(data['session']['status'], 'active')
        self.assertEqual(data['session']['department'], 'Computer Science')
        self.assertEqual(data['qr_code_data']['token'], data['session']['qr_token'])
        self.assertEqual(data['qr_code_data']['type'], 'REGISTRATION')
        self.assertTrue(data['qr_code'].startswith('data:image/png;base64,'))
        self.assertAlmostEqual(
            data['session']['expires_at'], TimestampMixin.utc_timestamp() + 1800, delta=5,
        )

    def test_issue_validation(self):
        self.login(self.admin)
        url = reverse('dashboard_api:registration_sessions')
        for body in ({}, {'department': 'CS', 'expires_in_minutes': 0},
                     {'department': 'CS', 'expires_in_minutes': 1441}):
            with self.subTest(body=body):
                self.assertEqual(_send(self.client, 'post', url, body).status_code, 400)

    def test_admin_only(self):
        self.login(self.head)
        r = self.client.get(reverse('dashboard_api:registration_sessions'))
        self.assertEqual(r.status_code, 403)

    def test_register_creates_invigilator_and_signs_in(self):
        token = self.issue()['session']['qr_token']
        r = self.register(token)
        self.assertEqual(r.status_code, 201)
        user = User.objects.get(username='newbie')
        self.assertEqual(user.role, User.ROLE_INVIGILATOR)
        self.assertEqual(user.department, 'Computer Science')
        self.assertEqual(user.email, 'newbie@custody.local')
        self.assertTrue(user.check_password(self.PASSWORD))

        session = RegistrationSession.objects.get(qr_token=token)
        self.assertTrue(session.used)
        self.assertEqual(session.registered_user, user)
        self.assertTrue(AuditLog.objects.filter(action='USER_REGISTERED_QR', user=user).exists())

        r = self.public.get(reverse('me'))
        self.assertEqual(json.loads(r.content)['user']['username'], 'newbie')

    def test_token_is_single_use(self):
        token = self.issue()['session']['qr_token']
        self.register(token)
        r = self.register(token, username='second', email='second@custody.local', phone='0201234567')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['code'], 'TOKEN_USED')

    def test_unknown_and_expired_tokens(self):
        r = self.register('not-a-token')
        self.assertEqual(json.loads(r.content)['code'], 'INVALID_TOKEN')

        token = self.issue()['session']['qr_token']
        RegistrationSession.objects.filter(qr_token=token).update(
            expires_at=TimestampMixin.utc_timestamp() - 1,
        )
        r = self.register(token)
        self.assertEqual(json.loads(r.content)['code'], 'TOKEN_EXPIRED')
        self.assertFalse(User.objects.filter(username='newbie').exists())

    def test_field_validation(self):
        token = self.issue()['session']['qr_token']
        r = self.register(token, phone='12345')
        self.assertEqual(json.loads(r.content)['error'], 'Invalid phone number format')
        r = self.register(token, password='12345678')
        self.assertEqual(json.loads(r.content)['error'], 'Password rejected')
        r = self.register(token, last_name='')
        self.assertEqual(json.loads(r.content)['error'], 'Missing required fields: last_name')
        r = self.register(token, username='lect')
        self.assertEqual(r.status_code, 409)
        self.assertFalse(RegistrationSession.objects.get(qr_token=token).used)

    def test_duplicate_phone(self):
        User.objects.filter(pk=self.lecturer.pk).update(phone='0241234567')
        token = self.issue()['session']['qr_token']
        r = self.register(token)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(json.loads(r.content)['error'], 'Phone number is already registered')

    def test_deactivate_and_extend(self):
        session_id = self.issue()['session']['id']
        r = _send(self.client, 'post', reverse('dashboard_api:deactivate_registration_session', args=[session_id]))
        self.assertEqual(json.loads(r.content)['session']['status'], 'expired')

        url = reverse('dashboard_api:extend_registration_session', args=[session_id])
        self.assertEqual(_send(self.client, 'post', url, {'additional_minutes': 0}).status_code, 400)
        r = _send(self.client, 'post', url, {'additional_minutes': 15})
        self.assertEqual(json.loads(r.content)['session']['status'], 'active')

        r = self.client.get(reverse('dashboard_api:registration_sessions'), {'status': 'active'})
        self.assertEqual([s['id'] for s in json.loads(r.content)['sessions']], [session_id])

    def test_used_session_cannot_be_changed(self):
        data = self.issue()
        self.register(data['session']['qr_token'])
        url = reverse('dashboard_api:extend_registration_session', args=[data['session']['id']])
        r = _send(self.client, 'post', url, {'additional_minutes': 15})
        self.assertEqual(r.status_code, 400)
