"""
Tracking app tests – transfers, custody view, exam attendance and class attendance.
"""
import json
from datetime import date, timedelta
from unittest import mock

from django.test import TestCase, Client
from django.urls import reverse
from django.utils import timezone

from core.events import (
    TRANSFER_CONFIRMED, TRANSFER_REJECTED, TRANSFER_REQUESTED, attendance_recorded,
    batch_status_updated, transfer_confirmed, transfer_rejected, transfer_requested,
)
from core.models import (
    AttendanceLink, AttendanceSession, BatchTransfer, ExamAttendance, ExamSession,
    Student, StudentAttendance, TimestampMixin, User,
)
from core.utils import attendance as rules


def _post(client, url, body=None):
    return client.post(url, data=json.dumps(body or {}), content_type='application/json')


class TrackingTestBase(TestCase):
    """Shared users, one exam session and two students."""

    PASSWORD = 'Handler123!'

    @classmethod
    def setUpTestData(cls):
        cls.admin = User.objects.create_superuser(
            username='admin', email='admin@custody.local', password=cls.PASSWORD,
            first_name='Ada', last_name='Admin',
        )
        cls.invigilator = User.objects.create_user(
            username='invig', email='invig@custody.local', password=cls.PASSWORD,
            first_name='Ivan', last_name='Invigilator', role=User.ROLE_INVIGILATOR,
        )
        cls.lecturer = User.objects.create_user(
            username='lect', email='lect@custody.local', password=cls.PASSWORD,
            first_name='Lena', last_name='Lecturer', role=User.ROLE_LECTURER,
        )
        cls.head = User.objects.create_user(
            username='hod', email='hod@custody.local', password=cls.PASSWORD,
            first_name='Hana', last_name='Head', role=User.ROLE_DEPARTMENT_HEAD,
        )
        cls.class_rep = User.objects.create_user(
            username='rep', email='rep@custody.local', password=cls.PASSWORD,
            first_name='Remi', last_name='Rep', role=User.ROLE_CLASS_REP,
        )
        cls.session = ExamSession.objects.create(
            course_code='CS101', course_name='Intro to Computing',
            venue='Hall A', exam_date=date(2026, 5, 4),
            status=ExamSession.STATUS_SUBMITTED,
        )
        cls.student = Student.objects.create(
            index_number='UG0001', first_name='Kofi', last_name='Mensah',
            program='Computer Science', level=100,
        )
        cls.other_student = Student.objects.create(
            index_number='UG0002', first_name='Ama', last_name='Owusu',
            program='Computer Science', level=100,
        )

    def setUp(self):
        self.client = Client()

    def login(self, user):
        self.client.login(username=user.username, password=self.PASSWORD)


# ── Authentication ───────────────────────────────────────────────────────

class TrackingAuthTests(TrackingTestBase):

    def test_api_requires_login(self):
        r = self.client.get(reverse('tracking_api:transfers'))
        self.assertEqual(r.status_code, 401)
        self.assertEqual(json.loads(r.content)['error'], 'Authentication required')

    def test_class_rep_cannot_initiate_transfer(self):
        self.login(self.class_rep)
        r = _post(self.client, reverse('tracking_api:transfers'), {
            'exam_session_id': str(self.session.id),
            'to_handler_id': str(self.lecturer.id),
            'exams_expected': 10,
        })
        self.assertEqual(r.status_code, 403)


# ── Transfers ────────────────────────────────────────────────────────────

class TransferTests(TrackingTestBase):

    def initiate(self, sender, receiver, expected=40):
        self.login(sender)
        return _post(self.client, reverse('tracking_api:transfers'), {
            'exam_session_id': str(self.session.id),
            'to_handler_id': str(receiver.id),
            'exams_expected': expected,
            'location': 'Exams Office',
        })

    def test_initiate_moves_submitted_batch_in_transit(self):
        r = self.initiate(self.invigilator, self.lecturer)
        self.assertEqual(r.status_code, 201)
        data = json.loads(r.content)
        self.assertEqual(data['transfer']['status'], BatchTransfer.STATUS_PENDING)
        self.session.refresh_from_db()
        self.assertEqual(self.session.status, ExamSession.STATUS_IN_TRANSIT)

    def test_cannot_transfer_to_yourself(self):
        r = self.initiate(self.invigilator, self.invigilator)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['error'], 'Cannot transfer to yourself')

    def test_expected_count_must_be_positive(self):
        r = self.initiate(self.invigilator, self.lecturer, expected=0)
        self.assertEqual(r.status_code, 400)

    def test_receiver_must_be_handler(self):
        r = self.initiate(self.invigilator, self.class_rep)
        self.assertEqual(r.status_code, 400)

    def test_confirm_matching_count(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        self.client.logout()
        self.login(self.lecturer)
        r = _post(self.client, reverse('tracking_api:confirm_transfer', args=[transfer_id]), {
            'exams_received': 40,
        })
        self.assertEqual(r.status_code, 200)
        transfer = BatchTransfer.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, BatchTransfer.STATUS_CONFIRMED)
        self.assertIsNotNone(transfer.confirmed_at)
        self.session.refresh_from_db()
        self.assertEqual(self.session.status, ExamSession.STATUS_WITH_LECTURER)

    def test_confirm_with_mismatch_reports_discrepancy(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        self.client.logout()
        self.login(self.lecturer)
        r = _post(self.client, reverse('tracking_api:confirm_transfer', args=[transfer_id]), {
            'exams_received': 38,
        })
        self.assertEqual(r.status_code, 200)
        transfer = BatchTransfer.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, BatchTransfer.STATUS_DISCREPANCY_REPORTED)
        self.assertEqual(transfer.discrepancy_note, 'Expected 40 scripts, received 38')
        self.session.refresh_from_db()
        self.assertEqual(self.session.status, ExamSession.STATUS_IN_TRANSIT)

    def test_only_receiver_can_confirm(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        r = _post(self.client, reverse('tracking_api:confirm_transfer', args=[transfer_id]), {
            'exams_received': 40,
        })
        self.assertEqual(r.status_code, 403)

    def test_second_confirm_is_rejected(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        self.client.logout()
        self.login(self.lecturer)
        url = reverse('tracking_api:confirm_transfer', args=[transfer_id])
        _post(self.client, url, {'exams_received': 40})
        first = BatchTransfer.objects.get(pk=transfer_id)

        r = _post(self.client, url, {'exams_received': 39})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['currentStatus'], BatchTransfer.STATUS_CONFIRMED)
        again = BatchTransfer.objects.get(pk=transfer_id)
        self.assertEqual(again.exams_received, 40)
        self.assertEqual(again.confirmed_at, first.confirmed_at)

    def test_reject_removes_transfer(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        self.client.logout()
        self.login(self.lecturer)
        r = _post(self.client, reverse('tracking_api:reject_transfer', args=[transfer_id]), {
            'reason': 'Wrong course',
        })
        self.assertEqual(r.status_code, 200)
        self.assertFalse(BatchTransfer.objects.filter(pk=transfer_id).exists())

    def test_resolve_requires_admin_and_discrepancy(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        url = reverse('tracking_api:resolve_transfer', args=[transfer_id])

        r = _post(self.client, url, {'resolution_note': 'Recounted'})
        self.assertEqual(r.status_code, 403)

        self.client.logout()
        self.login(self.admin)
        r = _post(self.client, url, {'resolution_note': 'Recounted'})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['currentStatus'], BatchTransfer.STATUS_PENDING)

        BatchTransfer.objects.filter(pk=transfer_id).update(
            status=BatchTransfer.STATUS_DISCREPANCY_REPORTED, exams_received=39,
        )
        r = _post(self.client, url, {'resolution_note': 'Script found in envelope'})
        self.assertEqual(r.status_code, 200)
        transfer = BatchTransfer.objects.get(pk=transfer_id)
        self.assertEqual(transfer.status, BatchTransfer.STATUS_RESOLVED)
        self.assertEqual(transfer.resolved_by, self.admin)

    def test_pending_lists_only_incoming(self):
        self.initiate(self.invigilator, self.lecturer)
        self.client.logout()
        self.login(self.lecturer)
        r = self.client.get(reverse('tracking_api:pending_transfers'))
        self.assertEqual(len(json.loads(r.content)['transfers']), 1)

        self.client.logout()
        self.login(self.head)
        r = self.client.get(reverse('tracking_api:pending_transfers'))
        self.assertEqual(json.loads(r.content)['transfers'], [])

    def test_uninvolved_handler_cannot_view_transfer(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        self.client.logout()
        self.login(self.head)
        r = self.client.get(reverse('tracking_api:transfer_detail', args=[transfer_id]))
        self.assertEqual(r.status_code, 403)

    def test_history_reports_current_custodian(self):
        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        self.client.logout()
        self.login(self.lecturer)
        _post(self.client, reverse('tracking_api:confirm_transfer', args=[transfer_id]), {
            'exams_received': 40,
        })
        r = self.client.get(reverse('tracking_api:transfer_history', args=[self.session.id]))
        data = json.loads(r.content)
        self.assertEqual(len(data['transfers']), 1)
        self.assertEqual(data['current_custodian']['id'], str(self.lecturer.id))

    def test_status_change_is_published(self):
        received = []

        def receiver(sender, event, payload, **kwargs):
            received.append(payload)

        batch_status_updated.connect(receiver)
        self.addCleanup(batch_status_updated.disconnect, receiver)

        self.initiate(self.invigilator, self.lecturer)
        self.assertEqual(received[-1]['previous_status'], ExamSession.STATUS_SUBMITTED)
        self.assertEqual(received[-1]['status'], ExamSession.STATUS_IN_TRANSIT)

    def test_list_rejects_malformed_id_filters(self):
        self.login(self.invigilator)
        for name in ('exam_session_id', 'from_handler_id', 'to_handler_id', 'handler_id'):
            with self.subTest(name=name):
                r = self.client.get(reverse('tracking_api:transfers'), {name: 'abc'})
                self.assertEqual(r.status_code, 400)
                self.assertEqual(json.loads(r.content)['error'], f'{name} must be a valid UUID')

    def test_list_filters_by_handler(self):
        self.initiate(self.invigilator, self.lecturer)
        self.client.logout()
        self.login(self.admin)
        r = self.client.get(reverse('tracking_api:transfers'), {'handler_id': str(self.lecturer.id)})
        self.assertEqual(len(json.loads(r.content)['transfers']), 1)
        r = self.client.get(reverse('tracking_api:transfers'), {'handler_id': str(self.head.id)})
        self.assertEqual(json.loads(r.content)['transfers'], [])

    def test_transfer_lifecycle_is_published(self):
        received = []

        def receiver(sender, event, payload, **kwargs):
            received.append((event, payload))

        for signal in (transfer_requested, transfer_confirmed, transfer_rejected):
            signal.connect(receiver)
            self.addCleanup(signal.disconnect, receiver)

        transfer_id = json.loads(self.initiate(self.invigilator, self.lecturer).content)['transfer']['id']
        event, payload = received[-1]
        self.assertEqual(event, TRANSFER_REQUESTED)
        self.assertEqual(payload['transfer_id'], transfer_id)
        self.assertEqual(payload['to_handler_id'], str(self.lecturer.id))
        self.assertEqual(payload['course_code'], 'CS101')

        self.client.logout()
        self.login(self.lecturer)
        _post(self.client, reverse('tracking_api:confirm_transfer', args=[transfer_id]), {
            'exams_received': 39,
        })
        event, payload = received[-1]
        self.assertEqual(event, TRANSFER_CONFIRMED)
        self.assertEqual(payload['from_handler_id'], str(self.invigilator.id))
        self.assertEqual(payload['status'], BatchTransfer.STATUS_DISCREPANCY_REPORTED)

        second_id = json.loads(self.initiate(self.lecturer, self.head).content)['transfer']['id']
        self.client.logout()
        self.login(self.head)
        _post(self.client, reverse('tracking_api:reject_transfer', args=[second_id]), {
            'reason': 'Not my course',
        })
        event, payload = received[-1]
        self.assertEqual(event, TRANSFER_REJECTED)
        self.assertEqual(payload['transfer_id'], second_id)
        self.assertEqual(payload['from_handler_id'], str(self.lecturer.id))
        self.assertEqual(payload['rejection_reason'], 'Not my course')


# ── Custody view ─────────────────────────────────────────────────────────

class CustodyViewTests(TrackingTestBase):

    def test_batches_for_sender_and_receiver(self):
        BatchTransfer.objects.create(
            exam_session=self.session, from_handler=self.invigilator,
            to_handler=self.lecturer, exams_expected=30,
        )
        self.login(self.lecturer)
        data = json.loads(self.client.get(reverse('tracking_api:my_batches')).content)
        self.assertEqual(data['total'], 1)
        self.assertEqual(data['batches'][0]['custody_status'], 'PENDING_RECEIPT')

        self.client.logout()
        self.login(self.invigilator)
        data = json.loads(self.client.get(reverse('tracking_api:my_batches')).content)
        self.assertEqual(data['batches'][0]['custody_status'], 'TRANSFER_INITIATED')

    def test_status_filter(self):
        BatchTransfer.objects.create(
            exam_session=self.session, from_handler=self.invigilator,
            to_handler=self.lecturer, exams_expected=30,
        )
        self.login(self.lecturer)
        r = self.client.get(reverse('tracking_api:my_batches'), {'status': 'IN_CUSTODY'})
        self.assertEqual(json.loads(r.content)['total'], 0)

    def test_session_chain(self):
        self.login(self.lecturer)
        r = self.client.get(reverse('tracking_api:session_chain', args=[self.session.id]))
        data = json.loads(r.content)
        self.assertEqual(data['chain'], [])
        self.assertIsNone(data['current_custodian'])
        self.assertFalse(data['viewer_holds_batch'])

    def test_resolved_discrepancy_puts_receiver_in_custody(self):
        BatchTransfer.objects.create(
            exam_session=self.session, from_handler=self.invigilator,
            to_handler=self.head, exams_expected=50, exams_received=50,
            status=BatchTransfer.STATUS_CONFIRMED,
            requested_at=timezone.now() - timedelta(hours=2),
        )
        BatchTransfer.objects.create(
            exam_session=self.session, from_handler=self.head,
            to_handler=self.lecturer, exams_expected=50, exams_received=47,
            status=BatchTransfer.STATUS_RESOLVED, resolution_note='Three scripts were absentees',
            requested_at=timezone.now() - timedelta(hours=1),
        )
        self.login(self.lecturer)
        data = json.loads(self.client.get(reverse('tracking_api:my_batches')).content)
        self.assertEqual(data['batches'][0]['custody_status'], 'IN_CUSTODY')

        r = self.client.get(reverse('tracking_api:session_chain', args=[self.session.id]))
        data = json.loads(r.content)
        self.assertEqual(data['current_custodian']['id'], str(self.lecturer.id))
        self.assertTrue(data['viewer_holds_batch'])


# ── Exam attendance ──────────────────────────────────────────────────────

class ExamAttendanceTests(TrackingTestBase):

    @classmethod
    def setUpTestData(cls):
        super().setUpTestData()
        cls.open_session = ExamSession.objects.create(
            course_code='MATH201', course_name='Linear Algebra',
            venue='Hall B', exam_date=date(2026, 5, 5),
        )

    def setUp(self):
        super().setUp()
        self.login(self.invigilator)

    def enter(self, student=None):
        return _post(self.client, reverse('tracking_api:record_entry'), {
            'exam_session_id': str(self.open_session.id),
            'index_number': (student or self.student).index_number,
        })

    def test_first_entry_starts_exam(self):
        r = self.enter()
        self.assertEqual(r.status_code, 201)
        self.assertEqual(json.loads(r.content)['exam_session_status'], ExamSession.STATUS_IN_PROGRESS)

    def test_duplicate_entry_is_conflict(self):
        self.enter()
        r = self.enter()
        self.assertEqual(r.status_code, 409)
        self.assertEqual(ExamAttendance.objects.filter(exam_session=self.open_session).count(), 1)

    def test_entry_rejected_after_submission(self):
        r = _post(self.client, reverse('tracking_api:record_entry'), {
            'exam_session_id': str(self.session.id),
            'index_number': self.student.index_number,
        })
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['currentStatus'], ExamSession.STATUS_SUBMITTED)

    def test_unknown_student(self):
        r = _post(self.client, reverse('tracking_api:record_entry'), {
            'exam_session_id': str(self.open_session.id),
            'index_number': 'NOPE',
        })
        self.assertEqual(r.status_code, 404)

    def test_malformed_session_id(self):
        r = _post(self.client, reverse('tracking_api:record_entry'), {
            'exam_session_id': 'not-a-uuid',
            'index_number': self.student.index_number,
        })
        self.assertEqual(r.status_code, 404)

    def test_entry_is_published(self):
        with mock.patch.object(attendance_recorded, 'send') as send:
            self.enter()
        self.assertEqual(send.call_args.kwargs['payload']['index_number'], 'UG0001')

    def test_exit_without_submission(self):
        attendance_id = json.loads(self.enter().content)['attendance']['id']
        r = _post(self.client, reverse('tracking_api:record_exit'), {'attendance_id': attendance_id})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(
            json.loads(r.content)['attendance']['status'],
            ExamAttendance.STATUS_LEFT_WITHOUT_SUBMITTING,
        )

    def test_submission_then_exit(self):
        attendance_id = json.loads(self.enter().content)['attendance']['id']
        _post(self.client, reverse('tracking_api:record_submission'), {'attendance_id': attendance_id})
        r = _post(self.client, reverse('tracking_api:record_exit'), {'attendance_id': attendance_id})
        self.assertEqual(json.loads(r.content)['attendance']['status'], ExamAttendance.STATUS_SUBMITTED)

        r = _post(self.client, reverse('tracking_api:record_exit'), {'attendance_id': attendance_id})
        self.assertEqual(r.status_code, 400)

    def test_discrepancy_note(self):
        attendance_id = json.loads(self.enter().content)['attendance']['id']
        url = reverse('tracking_api:update_discrepancy', args=[attendance_id])
        self.assertEqual(_post(self.client, url, {}).status_code, 400)
        r = _post(self.client, url, {'discrepancy_note': 'Answer booklet torn'})
        self.assertEqual(json.loads(r.content)['attendance']['discrepancy_note'], 'Answer booklet torn')

    def test_session_attendance_counts(self):
        self.enter()
        self.enter(self.other_student)
        r = self.client.get(reverse('tracking_api:session_attendance', args=[self.open_session.id]))
        data = json.loads(r.content)
        self.assertEqual(data['total'], 2)
        self.assertEqual(data['by_status'], {ExamAttendance.STATUS_PRESENT: 2})

    def test_get_attendance_requires_both_ids(self):
        r = self.client.get(reverse('tracking_api:get_attendance'), {'student_id': str(self.student.id)})
        self.assertEqual(r.status_code, 400)


# ── Class attendance ─────────────────────────────────────────────────────

class ClassAttendanceTests(TrackingTestBase):

    def setUp(self):
        super().setUp()
        self.login(self.class_rep)

    def start(self, device='tablet-1', **extra):
        body = {'course_code': 'cs101', 'course_name': 'Intro', 'device_id': device}
        body.update(extra)
        return _post(self.client, reverse('tracking_api:class_sessions'), body)

    def test_start_session(self):
        r = self.start()
        self.assertEqual(r.status_code, 201)
        self.assertEqual(json.loads(r.content)['session']['course_code'], 'CS101')

    def test_one_active_session_per_device(self):
        self.start()
        r = self.start()
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)['error'], 'Device already has an active session')

    def test_record_by_index_and_duplicate(self):
        session_id = json.loads(self.start().content)['session']['id']
        url = reverse('tracking_api:record_class_attendance', args=[session_id])
        r = _post(self.client, url, {'index_number': 'UG0001'})
        self.assertEqual(r.status_code, 201)
        self.assertEqual(json.loads(r.content)['record']['method'], StudentAttendance.METHOD_INDEX_NUMBER)

        r = _post(self.client, url, {'index_number': 'UG0001'})
        self.assertEqual(r.status_code, 409)
        self.assertEqual(json.loads(r.content)['code'], 'ALREADY_RECORDED')

    def test_record_by_student_qr(self):
        session_id = json.loads(self.start().content)['session']['id']
        qr = json.dumps(self.student.qr_payload(TimestampMixin.utc_timestamp()))
        r = _post(self.client, reverse('tracking_api:record_class_attendance', args=[session_id]), {
            'qr_data': qr,
        })
        self.assertEqual(r.status_code, 201)
        self.assertEqual(json.loads(r.content)['record']['method'], StudentAttendance.METHOD_QR_CODE)

    def test_expected_count_caps_recording(self):
        session_id = json.loads(self.start(expected_student_count=1).content)['session']['id']
        url = reverse('tracking_api:record_class_attendance', args=[session_id])
        _post(self.client, url, {'index_number': 'UG0001'})
        r = _post(self.client, url, {'index_number': 'UG0002'})
        self.assertEqual(json.loads(r.content)['code'], 'SESSION_FULL')

    def test_paused_session_refuses_records(self):
        session_id = json.loads(self.start().content)['session']['id']
        _post(self.client, reverse('tracking_api:pause_class_session', args=[session_id]))
        r = _post(self.client, reverse('tracking_api:record_class_attendance', args=[session_id]), {
            'index_number': 'UG0001',
        })
        self.assertEqual(json.loads(r.content)['code'], 'SESSION_NOT_ACTIVE')

        r = _post(self.client, reverse('tracking_api:resume_class_session', args=[session_id]))
        self.assertEqual(json.loads(r.content)['session']['status'], AttendanceSession.STATUS_IN_PROGRESS)

    def test_other_user_cannot_control_session(self):
        session_id = json.loads(self.start().content)['session']['id']
        self.client.logout()
        self.login(self.lecturer)
        r = _post(self.client, reverse('tracking_api:end_class_session', args=[session_id]))
        self.assertEqual(r.status_code, 403)

    def test_end_session_deactivates_links(self):
        session_id = json.loads(self.start().content)['session']['id']
        _post(self.client, reverse('tracking_api:class_session_links', args=[session_id]), {})
        r = _post(self.client, reverse('tracking_api:end_class_session', args=[session_id]))
        self.assertEqual(json.loads(r.content)['session']['status'], AttendanceSession.STATUS_COMPLETED)
        self.assertFalse(AttendanceLink.objects.filter(session_id=session_id, is_active=True).exists())

    def test_confirm_and_reject_records(self):
        session_id = json.loads(self.start().content)['session']['id']
        session = AttendanceSession.objects.get(pk=session_id)
        first = rules.record_attendance(session, self.student, StudentAttendance.METHOD_LINK)
        second = rules.record_attendance(session, self.other_student, StudentAttendance.METHOD_LINK)
        self.assertFalse(first.is_confirmed)

        r = _post(self.client, reverse('tracking_api:confirm_class_records', args=[session_id]), {
            'record_ids': [str(first.id)],
        })
        self.assertEqual(json.loads(r.content)['confirmed'], 1)
        r = _post(self.client, reverse('tracking_api:reject_class_records', args=[session_id]), {
            'record_ids': [str(second.id)],
        })
        self.assertEqual(json.loads(r.content)['rejected'], 1)
        self.assertEqual(session.records.count(), 1)

    def test_stats(self):
        session_id = json.loads(self.start(expected_student_count=4).content)['session']['id']
        _post(self.client, reverse('tracking_api:record_class_attendance', args=[session_id]), {
            'index_number': 'UG0001', 'status': 'LATE',
        })
        data = json.loads(self.client.get(
            reverse('tracking_api:class_session_stats', args=[session_id]),
        ).content)
        self.assertEqual(data['total_recorded'], 1)
        self.assertEqual(data['attendance_rate'], 25.0)
        self.assertEqual(data['by_status']['LATE'], 1)


class AttendanceLinkTests(TrackingTestBase):

    def setUp(self):
        super().setUp()
        self.login(self.lecturer)
        r = _post(self.client, reverse('tracking_api:class_sessions'), {
            'course_code': 'CS101', 'course_name': 'Intro', 'device_id': 'laptop-9',
        })
        self.session_id = json.loads(r.content)['session']['id']
        self.public = Client()

    def generate(self, **body):
        r = _post(self.client, reverse('tracking_api:class_session_links', args=[self.session_id]), body)
        self.assertEqual(r.status_code, 201)
        return json.loads(r.content)['link']

    def test_new_link_replaces_old(self):
        first = self.generate()
        second = self.generate()
        self.assertFalse(AttendanceLink.objects.get(token=first['token']).is_active)
        r = self.client.get(reverse('tracking_api:class_session_links', args=[self.session_id]))
        tokens = [link['token'] for link in json.loads(r.content)['links']]
        self.assertEqual(tokens, [second['token']])

    def test_public_validate_and_mark(self):
        token = self.generate()['token']
        r = self.public.get(reverse('tracking_api:public_attend', args=[token]))
        self.assertEqual(r.status_code, 200)
        self.assertTrue(json.loads(r.content)['valid'])

        r = _post(self.public, reverse('tracking_api:public_attend', args=[token]), {
            'index_number': 'UG0001',
        })
        self.assertEqual(r.status_code, 201)
        self.assertFalse(json.loads(r.content)['record']['is_confirmed'])
        self.assertEqual(AttendanceLink.objects.get(token=token).uses_count, 1)

    def test_unknown_link(self):
        r = self.public.get(reverse('tracking_api:public_attend', args=['deadbeef']))
        self.assertEqual(r.status_code, 404)
        self.assertEqual(json.loads(r.content)['code'], 'LINK_NOT_FOUND')

    def test_expired_link(self):
        token = self.generate()['token']
        AttendanceLink.objects.filter(token=token).update(expires_at=TimestampMixin.utc_timestamp() - 1)
        r = _post(self.public, reverse('tracking_api:public_attend', args=[token]), {
            'index_number': 'UG0001',
        })
        self.assertEqual(json.loads(r.content)['code'], 'LINK_EXPIRED')

    def test_max_uses(self):
        token = self.generate(max_uses=1)['token']
        url = reverse('tracking_api:public_attend', args=[token])
        _post(self.public, url, {'index_number': 'UG0001'})
        r = _post(self.public, url, {'index_number': 'UG0002'})
        self.assertEqual(json.loads(r.content)['code'], 'MAX_USES_REACHED')

    def test_geofence(self):
        token = self.generate(geofence={'lat': 5.6037, 'lng': -0.1870, 'radius_m': 100})['token']
        url = reverse('tracking_api:public_attend', args=[token])

        r = _post(self.public, url, {'index_number': 'UG0001'})
        self.assertEqual(json.loads(r.content)['code'], 'LOCATION_REQUIRED')

        r = _post(self.public, url, {'index_number': 'UG0001', 'latitude': 5.7, 'longitude': -0.1870})
        self.assertEqual(json.loads(r.content)['code'], 'OUTSIDE_GEOFENCE')

        r = _post(self.public, url, {'index_number': 'UG0001', 'latitude': 5.6038, 'longitude': -0.1870})
        self.assertEqual(r.status_code, 201)

    def test_non_finite_location_is_treated_as_missing(self):
        token = self.generate(geofence={'lat': 5.6037, 'lng': -0.1870, 'radius_m': 100})['token']
        url = reverse('tracking_api:public_attend', args=[token])
        for value in (float('nan'), 'nan', float('inf')):
            with self.subTest(value=value):
                r = _post(self.public, url, {'index_number': 'UG0001', 'latitude': value, 'longitude': value})
                self.assertEqual(r.status_code, 400)
                self.assertEqual(json.loads(r.content)['code'], 'LOCATION_REQUIRED')
        self.assertFalse(StudentAttendance.objects.exists())

    def test_geofence_must_be_a_real_area(self):
        url = reverse('tracking_api:class_session_links', args=[self.session_id])
        for geofence in (
            {'lat': 5.6, 'lng': -0.18, 'radius_m': 0},
            {'lat': 5.6, 'lng': -0.18, 'radius_m': -5},
            {'lat': 'nan', 'lng': -0.18, 'radius_m': 100},
            {'lat': 95, 'lng': -0.18, 'radius_m': 100},
            'Hall A',
        ):
            with self.subTest(geofence=geofence):
                r = _post(self.client, url, {'geofence': geofence})
                self.assertEqual(r.status_code, 400)
        self.assertFalse(AttendanceLink.objects.exists())

    def test_revoke(self):
        token = self.generate()['token']
        r = _post(self.client, reverse('tracking_api:revoke_attendance_link', args=[token]))
        self.assertEqual(r.status_code, 200)
        r = self.public.get(reverse('tracking_api:public_attend', args=[token]))
        self.assertEqual(json.loads(r.content)['code'], 'LINK_DEACTIVATED')

    def test_haversine(self):
        # One degree of latitude is about 111 km
        self.assertAlmostEqual(rules.haversine_m(0, 0, 1, 0), 111195, delta=50)
