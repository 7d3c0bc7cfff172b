"""
Core tests – custody rules, CSV parsing, incident numbering, QR rendering,
JSON authentication and the access middleware.
"""
import json
from datetime import date, datetime, timedelta, timezone
from io import StringIO
from types import SimpleNamespace
from unittest import mock

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, Client
from django.urls import reverse

from core.events import (
    BATCH_STATUS_UPDATED, TRANSFER_CONFIRMED, TRANSFER_REJECTED, TRANSFER_REQUESTED,
    batch_status_updated, publish,
)
from core.models import (
    AttendanceLink, AttendanceSession, AuditLog, BatchTransfer, ExamSession, Incident,
    IncidentTemplate, LoginAuditLog, TimestampMixin, User,
)
from core.utils import custody
from core.utils.attendance import haversine_m, parse_coordinates
from core.utils.csv_import import CsvImportError, parse_index_numbers_csv, parse_students_csv
from core.utils.incidents import create_incident, incident_prefix, next_incident_number
from core.utils.qr import qr_data_url

T0 = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def _transfer(status, sender, receiver, minutes, session='S1'):
    return SimpleNamespace(
        exam_session_id=session,
        from_handler_id=sender,
        to_handler_id=receiver,
        status=status,
        requested_at=T0 + timedelta(minutes=minutes),
    )


# ── Status workflow ──────────────────────────────────────────────────────

class StatusWorkflowTests(SimpleTestCase):

    def test_forward_path_is_allowed(self):
        path = [
            ExamSession.STATUS_NOT_STARTED, ExamSession.STATUS_IN_PROGRESS,
            ExamSession.STATUS_SUBMITTED, ExamSession.STATUS_IN_TRANSIT,
            ExamSession.STATUS_WITH_LECTURER, ExamSession.STATUS_UNDER_GRADING,
            ExamSession.STATUS_GRADED, ExamSession.STATUS_RETURNED, ExamSession.STATUS_COMPLETED,
        ]
        for current, new in zip(path, path[1:]):
            self.assertTrue(custody.is_valid_transition(current, new), f'{current} -> {new}')

    def test_completed_is_terminal(self):
        self.assertEqual(custody.allowed_transitions(ExamSession.STATUS_COMPLETED), [])

    def test_in_transit_can_return_to_submitted(self):
        self.assertTrue(custody.is_valid_transition(
            ExamSession.STATUS_IN_TRANSIT, ExamSession.STATUS_SUBMITTED,
        ))

    def test_invalid_transition_message(self):
        with self.assertRaises(custody.InvalidTransition) as ctx:
            custody.validate_transition(ExamSession.STATUS_NOT_STARTED, ExamSession.STATUS_GRADED)
        self.assertEqual(
            str(ctx.exception),
            'Cannot transition from NOT_STARTED to GRADED. Allowed transitions: IN_PROGRESS',
        )
        self.assertEqual(ctx.exception.allowed, [ExamSession.STATUS_IN_PROGRESS])

    def test_allowed_transitions_returns_copy(self):
        allowed = custody.allowed_transitions(ExamSession.STATUS_SUBMITTED)
        allowed.append('BOGUS')
        self.assertNotIn('BOGUS', custody.allowed_transitions(ExamSession.STATUS_SUBMITTED))


# ── Custody projection ───────────────────────────────────────────────────

class CustodyDeriverTests(SimpleTestCase):

    def test_confirmed_after_pending_is_in_custody(self):
        transfers = [
            _transfer(BatchTransfer.STATUS_PENDING, 'A', 'B', 0),
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'B', 5),
        ]
        [view] = custody.derive_custody_status(transfers, 'B')
        self.assertEqual(view.status, custody.CUSTODY_IN_CUSTODY)
        self.assertEqual(view.pending_transfer_count, 0)
        self.assertEqual(view.latest_transfer.status, BatchTransfer.STATUS_CONFIRMED)

    def test_viewer_roles(self):
        cases = [
            (BatchTransfer.STATUS_PENDING, 'B', custody.CUSTODY_PENDING_RECEIPT),
            (BatchTransfer.STATUS_PENDING, 'A', custody.CUSTODY_TRANSFER_INITIATED),
            (BatchTransfer.STATUS_CONFIRMED, 'A', custody.CUSTODY_RELINQUISHED),
            (BatchTransfer.STATUS_RESOLVED, 'B', custody.CUSTODY_IN_CUSTODY),
            (BatchTransfer.STATUS_DISCREPANCY_REPORTED, 'A', custody.CUSTODY_DISCREPANCY_REPORTED),
            (BatchTransfer.STATUS_DISCREPANCY_REPORTED, 'B', custody.CUSTODY_DISCREPANCY_REPORTED),
            (BatchTransfer.STATUS_CONFIRMED, 'C', custody.CUSTODY_UNKNOWN),
        ]
        for status, viewer, expected in cases:
            with self.subTest(status=status, viewer=viewer):
                self.assertEqual(custody.classify(_transfer(status, 'A', 'B', 0), viewer), expected)

    def test_empty_input(self):
        self.assertEqual(custody.derive_custody_status([], 'A'), [])

    def test_sessions_sorted_by_latest_activity(self):
        transfers = [
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'B', 0, session='OLD'),
            _transfer(BatchTransfer.STATUS_PENDING, 'B', 'C', 30, session='NEW'),
        ]
        views = custody.derive_custody_status(transfers, 'B')
        self.assertEqual([v.exam_session_id for v in views], ['NEW', 'OLD'])
        self.assertEqual(views[0].status, custody.CUSTODY_TRANSFER_INITIATED)

    def test_pending_after_latest_confirmed_is_counted(self):
        group = [
            _transfer(BatchTransfer.STATUS_PENDING, 'A', 'B', 0),
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'B', 5),
            _transfer(BatchTransfer.STATUS_PENDING, 'B', 'C', 10),
        ]
        self.assertEqual(custody.pending_transfer_count(group), 1)

    def test_current_custodian(self):
        transfers = [
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'B', 0),
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'B', 'C', 10),
            _transfer(BatchTransfer.STATUS_PENDING, 'C', 'D', 20),
        ]
        self.assertEqual(custody.current_custodian(transfers), 'C')
        self.assertIsNone(custody.current_custodian([_transfer(BatchTransfer.STATUS_PENDING, 'A', 'B', 0)]))

    def test_custodians_by_session(self):
        transfers = [
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'B', 0, session='S1'),
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'C', 0, session='S2'),
        ]
        self.assertEqual(custody.custodians_by_session(transfers), {'S1': 'B', 'S2': 'C'})

    def test_resolved_discrepancy_counts_as_handover(self):
        transfers = [
            _transfer(BatchTransfer.STATUS_CONFIRMED, 'A', 'B', 0),
            _transfer(BatchTransfer.STATUS_PENDING, 'B', 'C', 5),
            _transfer(BatchTransfer.STATUS_RESOLVED, 'B', 'C', 10),
        ]
        self.assertEqual(custody.current_custodian(transfers), 'C')
        self.assertEqual(custody.custodians_by_session(transfers), {'S1': 'C'})
        # The request made before the resolved handoff is superseded by it
        self.assertEqual(custody.pending_transfer_count(transfers), 0)
        [view] = custody.derive_custody_status(transfers, 'C')
        self.assertEqual(view.status, custody.CUSTODY_IN_CUSTODY)
        [view] = custody.derive_custody_status(transfers, 'B')
        self.assertEqual(view.status, custody.CUSTODY_RELINQUISHED)


# ── CSV parsing ──────────────────────────────────────────────────────────

class CsvImportTests(SimpleTestCase):

    def test_headers_are_case_insensitive(self):
        rows = parse_students_csv(
            'Index_Number,First Name,LASTNAME,program,Level\n'
            'UG0001,Kofi,Mensah,CS,100\n'
            '\n'
            'UG0002,Ama,Owusu,CS,200\n'
        )
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1], {
            'index_number': 'UG0002', 'first_name': 'Ama', 'last_name': 'Owusu',
            'program': 'CS', 'level': 200,
        })

    def test_missing_column(self):
        with self.assertRaisesMessage(CsvImportError, 'Missing required columns: program'):
            parse_students_csv('indexNumber,firstName,lastName,level\nUG1,A,B,100\n')

    def test_header_only(self):
        with self.assertRaisesMessage(CsvImportError, 'at least one data row'):
            parse_students_csv('indexNumber,firstName,lastName,program,level\n')

    def test_row_numbers_count_the_header(self):
        text = (
            'indexNumber,firstName,lastName,program,level\n'
            'UG1,A,B,CS,100\n'
            'UG2,A,B,CS,one\n'
        )
        with self.assertRaisesMessage(CsvImportError, 'Row 3: Level must be a valid number, got "one"'):
            parse_students_csv(text)

    def test_row_numbers_follow_file_lines_after_leading_blank(self):
        text = (
            '\n'
            'indexNumber,firstName,lastName,program,level\n'
            'UG1,A,B,CS,100\n'
            'UG2,A,B,CS,one\n'
        )
        with self.assertRaisesMessage(CsvImportError, 'Row 4: Level must be a valid number, got "one"'):
            parse_students_csv(text)

    def test_index_numbers_with_and_without_header(self):
        self.assertEqual(parse_index_numbers_csv('indexNumber\nUG1\nUG2\nUG1\n'), ['UG1', 'UG2'])
        self.assertEqual(parse_index_numbers_csv('UG3\nUG4\n'), ['UG3', 'UG4'])

    def test_index_numbers_empty(self):
        with self.assertRaises(CsvImportError):
            parse_index_numbers_csv('indexNumber\n')


# ── Small helpers ────────────────────────────────────────────────────────

class HelperTests(SimpleTestCase):

    def test_qr_data_url(self):
        url = qr_data_url({'type': 'STUDENT', 'indexNumber': 'UG0001'})
        self.assertTrue(url.startswith('data:image/png;base64,'))

    def test_haversine(self):
        self.assertEqual(haversine_m(5.6, -0.18, 5.6, -0.18), 0)
        # One degree of latitude is roughly 111 km
        self.assertAlmostEqual(haversine_m(0, 0, 1, 0), 111195, delta=5)

    def test_parse_coordinates(self):
        self.assertEqual(parse_coordinates('5.65', -0.18), (5.65, -0.18))
        for lat, lng in (('nan', 0), (0, 'inf'), (91, 0), (0, -180.5), (None, 0), ('north', 0)):
            with self.subTest(lat=lat, lng=lng):
                self.assertIsNone(parse_coordinates(lat, lng))

    def test_incident_prefix(self):
        self.assertEqual(incident_prefix(date(2026, 1, 9)), 'INC-20260109-')

    def test_batch_code_format(self):
        code = ExamSession.generate_batch_code('cs101')
        self.assertRegex(code, r'^BATCH-CS101-\d{13}-\d{1,3}$')


# ── Incident numbering ───────────────────────────────────────────────────

class IncidentNumberingTests(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.reporter = User.objects.create_user(
            username='invig', email='invig@custody.local', password='Handler123!',
            first_name='Ivan', last_name='Invigilator',
        )

    def test_sequence_per_day(self):
        first = create_incident(self.reporter, type=Incident.TYPE_OTHER, title='A', description='d')
        second = create_incident(self.reporter, type=Incident.TYPE_OTHER, title='B', description='d')
        self.assertEqual(first.incident_number, f'{incident_prefix()}0001')
        self.assertEqual(second.incident_number, f'{incident_prefix()}0002')
        self.assertEqual(first.status_history.count(), 1)

    def test_other_days_do_not_affect_sequence(self):
        Incident.objects.create(
            incident_number='INC-20000101-0042', type=Incident.TYPE_OTHER,
            title='Old', description='d', reporter=self.reporter,
        )
        self.assertEqual(next_incident_number(), f'{incident_prefix()}0001')

    def test_number_collision_retries(self):
        taken = f'{incident_prefix()}0001'
        Incident.objects.create(
            incident_number=taken, type=Incident.TYPE_OTHER,
            title='Taken', description='d', reporter=self.reporter,
        )
        numbers = iter([taken, f'{incident_prefix()}0002'])
        with mock.patch('core.utils.incidents.next_incident_number', side_effect=lambda: next(numbers)):
            incident = create_incident(self.reporter, type=Incident.TYPE_OTHER, title='B', description='d')
        self.assertEqual(incident.incident_number, f'{incident_prefix()}0002')


# ── Events ───────────────────────────────────────────────────────────────

class EventTests(SimpleTestCase):

    def test_publish_reaches_receivers(self):
        received = []

        def listener(sender, event, payload, **kwargs):
            received.append((event, payload))

        batch_status_updated.connect(listener)
        try:
            publish(BATCH_STATUS_UPDATED, exam_session_id='S1', status='IN_TRANSIT')
        finally:
            batch_status_updated.disconnect(listener)
        self.assertEqual(received, [(BATCH_STATUS_UPDATED, {'exam_session_id': 'S1', 'status': 'IN_TRANSIT'})])

    def test_transfer_events_are_logged(self):
        for event in (TRANSFER_REQUESTED, TRANSFER_CONFIRMED, TRANSFER_REJECTED):
            with self.subTest(event=event):
                with self.assertLogs('custody.events', level='INFO') as logs:
                    publish(event, transfer_id='T1')
                self.assertIn(f'EVENT | {event}', logs.output[0])


# ── Authentication and access control ────────────────────────────────────

class AuthApiTests(TestCase):

    PASSWORD = 'Handler123!'

    @classmethod
    def setUpTestData(cls):
        cls.user = User.objects.create_user(
            username='lect', email='lect@custody.local', password=cls.PASSWORD,
            first_name='Lena', last_name='Lecturer', role=User.ROLE_LECTURER,
        )

    def setUp(self):
        self.client = Client()

    def _login(self, username, password):
        return self.client.post(
            reverse('login'), data=json.dumps({'username': username, 'password': password}),
            content_type='application/json',
        )

    def test_csrf_endpoint_sets_cookie(self):
        r = self.client.get(reverse('csrf'))
        self.assertEqual(r.status_code, 200)
        self.assertIn('csrftoken', r.cookies)

    def test_login_and_me(self):
        r = self._login('lect', self.PASSWORD)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(json.loads(r.content)['user']['role'], User.ROLE_LECTURER)
        self.assertTrue(AuditLog.objects.filter(action='LOGIN', user=self.user).exists())
        self.assertTrue(LoginAuditLog.objects.filter(user=self.user, success=True).exists())

        r = self.client.get(reverse('me'))
        self.assertEqual(json.loads(r.content)['user']['username'], 'lect')

    def test_bad_credentials(self):
        r = self._login('lect', 'wrong')
        self.assertEqual(r.status_code, 401)
        self.assertTrue(LoginAuditLog.objects.filter(username_attempted='lect', success=False).exists())

    def test_missing_credentials(self):
        r = self._login('', '')
        self.assertEqual(r.status_code, 400)

    def test_logout(self):
        self._login('lect', self.PASSWORD)
        r = self.client.post(reverse('logout'))
        self.assertEqual(r.status_code, 200)
        r = self.client.get(reverse('me'))
        self.assertEqual(r.status_code, 401)

    def test_change_password(self):
        self._login('lect', self.PASSWORD)
        r = self.client.post(
            reverse('change_password'),
            data=json.dumps({'current_password': 'nope', 'new_password': 'An0ther-Secret!'}),
            content_type='application/json',
        )
        self.assertEqual(r.status_code, 400)
        r = self.client.post(
            reverse('change_password'),
            data=json.dumps({'current_password': self.PASSWORD, 'new_password': 'An0ther-Secret!'}),
            content_type='application/json',
        )
        self.assertEqual(r.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('An0ther-Secret!'))


class MiddlewareTests(TestCase):

    PASSWORD = 'Handler123!'

    @classmethod
    def setUpTestData(cls):
        cls.lecturer = User.objects.create_user(
            username='lect', email='lect@custody.local', password=cls.PASSWORD,
            first_name='Lena', last_name='Lecturer', role=User.ROLE_LECTURER,
        )

    def test_anonymous_gets_401_json(self):
        r = Client().get(reverse('dashboard_api:sessions'))
        self.assertEqual(r.status_code, 401)
        self.assertEqual(json.loads(r.content), {'error': 'Authentication required'})

    def test_public_link_route_is_open(self):
        r = Client().get(reverse('tracking_api:public_attend', args=['missing-token']))
        self.assertEqual(r.status_code, 404)
        self.assertEqual(json.loads(r.content)['code'], 'LINK_NOT_FOUND')

    def test_non_admin_blocked_from_admin_areas(self):
        client = Client()
        client.login(username='lect', password=self.PASSWORD)
        r = client.get(reverse('dashboard_api:audit_logs'))
        self.assertEqual(r.status_code, 403)
        r = client.post(reverse('dashboard_api:users'), data='{}', content_type='application/json')
        self.assertEqual(r.status_code, 403)
        r = client.get(reverse('dashboard_api:users'))
        self.assertEqual(r.status_code, 200)

    def test_security_headers(self):
        r = Client().get(reverse('csrf'))
        self.assertIn("default-src 'none'", r['Content-Security-Policy'])

    def test_unknown_api_route_returns_json_404(self):
        client = Client()
        client.login(username='lect', password=self.PASSWORD)
        r = client.get('/api/transfers/not-a-uuid/nothing')
        self.assertEqual(r.status_code, 404)


# ── Management commands ──────────────────────────────────────────────────

class CommandTests(TestCase):

    def test_create_admin(self):
        out = StringIO()
        call_command('create_admin', '--username', 'root', '--password', 'Sup3r-Secret!', stdout=out)
        user = User.objects.get(username='root')
        self.assertTrue(user.is_superuser)
        self.assertEqual(user.role, User.ROLE_ADMIN)
        self.assertIn('Admin account created', out.getvalue())

    def test_seed_incident_templates_is_idempotent(self):
        call_command('seed_incident_templates', stdout=StringIO())
        count = IncidentTemplate.objects.count()
        self.assertGreater(count, 0)
        out = StringIO()
        call_command('seed_incident_templates', stdout=out)
        self.assertEqual(IncidentTemplate.objects.count(), count)
        self.assertIn('0 created', out.getvalue())

    def test_expire_attendance_links(self):
        owner = User.objects.create_user(
            username='rep', email='rep@custody.local', password='Handler123!',
            first_name='Remi', last_name='Rep', role=User.ROLE_CLASS_REP,
        )
        session = AttendanceSession.objects.create(
            course_code='CS101', course_name='Intro', device_id='dev-1', created_by=owner,
        )
        now = TimestampMixin.utc_timestamp()
        expired = AttendanceLink.objects.create(
            session=session, token='a' * 32, created_by=owner, expires_at=now - 10,
        )
        live = AttendanceLink.objects.create(
            session=session, token='b' * 32, created_by=owner, expires_at=now + 600,
        )
        call_command('expire_attendance_links', stdout=StringIO())
        expired.refresh_from_db()
        live.refresh_from_db()
        self.assertFalse(expired.is_active)
        self.assertTrue(live.is_active)
