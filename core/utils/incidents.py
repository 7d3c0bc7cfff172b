"""
Incident numbering – INC-YYYYMMDD-NNNN, sequence restarting every UTC day.
"""
import logging
import re
from datetime import datetime, timezone

from django.db import IntegrityError, transaction

from core.models.incident import Incident, IncidentStatusHistory

audit_logger = logging.getLogger('custody.audit')

_NUMBER_RE = re.compile(r'^INC-(\d{8})-(\d{4,})$')
NUMBER_ATTEMPTS = 5


def incident_prefix(day=None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f'INC-{day:%Y%m%d}-'


def next_incident_number(day=None) -> str:
    """Next free number for ``day``, continuing from the highest one issued."""
    prefix = incident_prefix(day)
    highest = 0
    for number in Incident.objects.filter(
        incident_number__startswith=prefix,
    ).values_list('incident_number', flat=True):
        match = _NUMBER_RE.match(number)
        if match:
            highest = max(highest, int(match.group(2)))
    return f'{prefix}{highest + 1:04d}'


def create_incident(reporter, notes='Incident reported', **fields):
    """
    Create an incident with a fresh number and its first status history row.

    Two reporters may draw the same number; the loser retries with the next one.
    """
    if fields.get('type') == Incident.TYPE_MALPRACTICE:
        fields['is_confidential'] = True

    for attempt in range(NUMBER_ATTEMPTS):
        try:
            with transaction.atomic():
                incident = Incident.objects.create(
                    incident_number=next_incident_number(), reporter=reporter, **fields,
                )
                IncidentStatusHistory.objects.create(
                    incident=incident,
                    to_status=incident.status,
                    changed_by=reporter,
                    notes=notes,
                )
        except IntegrityError:
            if attempt == NUMBER_ATTEMPTS - 1:
                raise
            continue
        break

    audit_logger.info(
        'INCIDENT_REPORTED | incident=%s | type=%s | severity=%s | reporter=%s',
        incident.incident_number, incident.type, incident.severity,
        getattr(reporter, 'username', 'system'),
    )
    return incident
