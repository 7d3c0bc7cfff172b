"""
Management command: seed_incident_templates

Loads the default incident presets. Existing templates (matched by name)
are left alone unless --update is given.
"""
from django.core.management.base import BaseCommand

from core.models import Incident, IncidentTemplate

DEFAULT_TEMPLATES = [
    # Malpractice
    ('Cheating observed', Incident.TYPE_MALPRACTICE, Incident.SEVERITY_HIGH,
     'Student caught cheating during examination',
     "A student was observed copying from another candidate's script or using unauthorised materials."),
    ('Mobile phone in use', Incident.TYPE_MALPRACTICE, Incident.SEVERITY_HIGH,
     'Student using mobile phone during examination',
     'A student was found using a mobile phone in the examination venue.'),
    ('Impersonation suspected', Incident.TYPE_MALPRACTICE, Incident.SEVERITY_CRITICAL,
     'Student impersonation suspected',
     'The person sitting the paper may not be the registered candidate.'),
    # Scripts
    ('Script missing from batch', Incident.TYPE_MISSING_SCRIPT, Incident.SEVERITY_CRITICAL,
     'Script missing from batch',
     'A script recorded as submitted could not be found in the batch.'),
    ('Script damaged in transit', Incident.TYPE_DAMAGED_SCRIPT, Incident.SEVERITY_MEDIUM,
     'Script damaged during transport',
     'An examination script was damaged while the batch was moved between handlers.'),
    ('Batch count mismatch', Incident.TYPE_COUNT_DISCREPANCY, Incident.SEVERITY_HIGH,
     'Batch count does not match expected scripts',
     'The number of scripts received differs from the number handed over.'),
    # Candidates and venue
    ('Student taken ill', Incident.TYPE_STUDENT_ILLNESS, Incident.SEVERITY_MEDIUM,
     'Student taken ill during examination',
     'A student became unwell and needed medical attention or left the venue.'),
    ('Power outage', Incident.TYPE_VENUE_ISSUE, Incident.SEVERITY_MEDIUM,
     'Power outage during examination',
     'A power outage interrupted the examination.'),
    ('Late submission', Incident.TYPE_LATE_SUBMISSION, Incident.SEVERITY_LOW,
     'Script submitted after time was called',
     'A student handed in their script after the invigilator called time.'),
    ('Timing irregularity', Incident.TYPE_PROCEDURAL_VIOLATION, Incident.SEVERITY_MEDIUM,
     'Timing irregularities in examination',
     'The paper started late or ended early without authorisation.'),
    ('Other issue', Incident.TYPE_OTHER, Incident.SEVERITY_LOW,
     'Issue during examination',
     'An issue affected the smooth conduct of the examination.'),
]


class Command(BaseCommand):
    help = 'Load the default incident templates'

    def add_arguments(self, parser):
        parser.add_argument('--update', action='store_true',
                            help='Overwrite templates that already exist')

    def handle(self, *args, **options):
        created = updated = 0
        for name, type_, severity, title, description in DEFAULT_TEMPLATES:
            values = {'type': type_, 'severity': severity, 'title': title, 'description': description}
            template = IncidentTemplate.objects.filter(name=name).first()
            if template is None:
                IncidentTemplate.objects.create(name=name, **values)
                created += 1
            elif options['update']:
                for field, value in values.items():
                    setattr(template, field, value)
                template.save()
                updated += 1

        self.stdout.write(self.style.SUCCESS(
            f'Incident templates: {created} created, {updated} updated.'
        ))
