"""
seed_demo_data.py
─────────────────────────────────────────────────────────────────────
Custody Demo Data Seeder
Creates:
  • one handler per role (password Demo@1234)
  • 30 students across two programmes
  • 3 exam sessions with expected students
  • a custody chain per session at a different stage:
      CS101  completed handoff invigilator → lecturer
      MATH201 transfer awaiting confirmation
      PHY110 handoff with a reported count discrepancy

Only inserts data through the Django ORM. Safe to re-run: existing
users, students and sessions are reused.

Usage:
  python scripts/seed_demo_data.py
─────────────────────────────────────────────────────────────────────
"""
import os
import sys
from datetime import date, time, timedelta

# Django bootstrap
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'custody_project.settings')
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import django
django.setup()

from django.core.management import call_command
from django.db import transaction
from django.utils import timezone

from core.models import BatchTransfer, ExamSession, ExamSessionStudent, Student, User

PASSWORD = 'Demo@1234'
EXAM_DATE = date.today() - timedelta(days=1)

HANDLERS = [
    # username, role, first, last, department
    ('invigilator', User.ROLE_INVIGILATOR, 'Kwame', 'Asante', 'Computer Science'),
    ('lecturer', User.ROLE_LECTURER, 'Abena', 'Boateng', 'Computer Science'),
    ('hod', User.ROLE_DEPARTMENT_HEAD, 'Yaw', 'Darko', 'Computer Science'),
    ('officer', User.ROLE_FACULTY_OFFICER, 'Efua', 'Mensah', 'Faculty Office'),
    ('classrep', User.ROLE_CLASS_REP, 'Kojo', 'Owusu', 'Computer Science'),
]

FIRST_NAMES = ['Ama', 'Kofi', 'Akosua', 'Kwabena', 'Adwoa', 'Yaa', 'Kwesi', 'Esi', 'Fiifi', 'Afia']
LAST_NAMES = ['Appiah', 'Agyeman', 'Ofori', 'Frimpong', 'Nkrumah', 'Tetteh']

SESSIONS = [
    # course_code, course_name, venue, start
    ('CS101', 'Introduction to Computing', 'Great Hall', time(9, 0)),
    ('MATH201', 'Linear Algebra', 'Block B, Room 4', time(13, 0)),
    ('PHY110', 'Mechanics', 'Science Auditorium', time(15, 30)),
]


def seed_users():
    users = {}
    for username, role, first, last, department in HANDLERS:
        user = User.objects.filter(username=username).first()
        if user is None:
            user = User.objects.create_user(
                username=username, email=f'{username}@custody.local', password=PASSWORD,
                first_name=first, last_name=last, role=role,
                department=department, faculty='Science',
            )
            print(f'  + user {username} ({role})')
        users[role] = user
    return users


def seed_students():
    students = []
    for n in range(30):
        index_number = f'UG{10001 + n}'
        student, created = Student.objects.get_or_create(
            index_number=index_number,
            defaults={
                'first_name': FIRST_NAMES[n % len(FIRST_NAMES)],
                'last_name': LAST_NAMES[n % len(LAST_NAMES)],
                'program': 'BSc Computer Science' if n % 2 == 0 else 'BSc Mathematics',
                'level': 100 + (n % 4) * 100,
            },
        )
        students.append(student)
    print(f'  + {len(students)} students')
    return students


def seed_sessions(users, students):
    lecturer = users[User.ROLE_LECTURER]
    sessions = []
    for course_code, course_name, venue, start in SESSIONS:
        session = ExamSession.objects.filter(course_code=course_code, exam_date=EXAM_DATE).first()
        if session is None:
            session = ExamSession.objects.create(
                course_code=course_code, course_name=course_name,
                lecturer=lecturer, lecturer_name=lecturer.full_name,
                department=lecturer.department, faculty=lecturer.faculty,
                venue=venue, exam_date=EXAM_DATE, start_time=start,
                status=ExamSession.STATUS_SUBMITTED,
                created_by=users[User.ROLE_FACULTY_OFFICER],
            )
            for student in students[:20]:
                ExamSessionStudent.objects.create(exam_session=session, student=student)
            session.total_students = 20
            session.save(update_fields=['total_students'])
            print(f'  + session {session.batch_qr_code}')
        sessions.append(session)
    return sessions


def seed_transfers(users, sessions):
    invigilator = users[User.ROLE_INVIGILATOR]
    lecturer = users[User.ROLE_LECTURER]
    now = timezone.now()
    confirmed, pending, disputed = sessions

    if not confirmed.transfers.exists():
        BatchTransfer.objects.create(
            exam_session=confirmed, from_handler=invigilator, to_handler=lecturer,
            exams_expected=20, exams_received=20, status=BatchTransfer.STATUS_CONFIRMED,
            requested_at=now - timedelta(hours=5), confirmed_at=now - timedelta(hours=4),
            location='Exams Office',
        )
        confirmed.status = ExamSession.STATUS_WITH_LECTURER
        confirmed.save(update_fields=['status'])

    if not pending.transfers.exists():
        BatchTransfer.objects.create(
            exam_session=pending, from_handler=invigilator, to_handler=lecturer,
            exams_expected=20, requested_at=now - timedelta(minutes=30),
        )
        pending.status = ExamSession.STATUS_IN_TRANSIT
        pending.save(update_fields=['status'])

    if not disputed.transfers.exists():
        BatchTransfer.objects.create(
            exam_session=disputed, from_handler=invigilator, to_handler=lecturer,
            exams_expected=20, exams_received=18,
            status=BatchTransfer.STATUS_DISCREPANCY_REPORTED,
            requested_at=now - timedelta(hours=2), confirmed_at=now - timedelta(hours=1),
            discrepancy_note='Expected 20, received 18',
        )
    print('  + custody chains')


def main():
    print('Seeding custody demo data...')
    with transaction.atomic():
        users = seed_users()
        students = seed_students()
        sessions = seed_sessions(users, students)
        seed_transfers(users, sessions)
    call_command('seed_incident_templates')
    print(f'Done. Demo handlers log in with password "{PASSWORD}".')


if __name__ == '__main__':
    main()
