"""
BatchTransfer model – one custody handoff of a batch between two handlers.
"""
import uuid
from django.db import models
from django.utils import timezone
from .mixins import TimestampMixin


def _iso(value):
    return value.isoformat() if value else None


class BatchTransfer(TimestampMixin):
    """
    A request/confirm record moving custody of an exam batch.

    Created PENDING by the sender; the receiver confirms with a count.
    A count that differs from ``exams_expected`` lands in
    DISCREPANCY_REPORTED until an admin resolves it.
    """

    STATUS_PENDING = 'PENDING'
    STATUS_CONFIRMED = 'CONFIRMED'
    STATUS_DISCREPANCY_REPORTED = 'DISCREPANCY_REPORTED'
    STATUS_RESOLVED = 'RESOLVED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_DISCREPANCY_REPORTED, 'Discrepancy Reported'),
        (STATUS_RESOLVED, 'Resolved'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam_session = models.ForeignKey(
        'core.ExamSession', on_delete=models.CASCADE, related_name='transfers', db_index=True,
    )
    from_handler = models.ForeignKey(
        'core.User', on_delete=models.PROTECT, related_name='transfers_sent',
    )
    to_handler = models.ForeignKey(
        'core.User', on_delete=models.PROTECT, related_name='transfers_received',
    )

    exams_expected = models.IntegerField()
    exams_received = models.IntegerField(null=True, blank=True)
    status = models.CharField(
        max_length=25, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True,
    )
    location = models.CharField(max_length=200, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    requested_at = models.DateTimeField(default=timezone.now, db_index=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    discrepancy_note = models.TextField(blank=True, default='')
    resolution_note = models.TextField(blank=True, default='')
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='transfers_resolved',
    )

    class Meta:
        db_table = 'batch_transfers'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['exam_session', 'requested_at'], name='idx_transfer_session_req'),
            models.Index(fields=['to_handler', 'status'], name='idx_transfer_to_status'),
        ]

    def __str__(self):
        return f'Transfer {self.exam_session_id}: {self.from_handler_id} -> {self.to_handler_id} [{self.status}]'

    @property
    def has_discrepancy(self):
        return self.exams_received is not None and self.exams_received != self.exams_expected

    def involves(self, user):
        return user.pk in (self.from_handler_id, self.to_handler_id)

    def to_dict(self):
        data = {
            'id': str(self.id),
            'exam_session_id': str(self.exam_session_id),
            'from_handler_id': str(self.from_handler_id),
            'to_handler_id': str(self.to_handler_id),
            'exams_expected': self.exams_expected,
            'exams_received': self.exams_received,
            'status': self.status,
            'location': self.location,
            'notes': self.notes,
            'requested_at': _iso(self.requested_at),
            'confirmed_at': _iso(self.confirmed_at),
            'discrepancy_note': self.discrepancy_note,
            'resolution_note': self.resolution_note,
            'resolved_at': _iso(self.resolved_at),
            'has_discrepancy': self.has_discrepancy,
        }
        # Embed handlers when they were fetched with select_related
        cache = self._state.fields_cache
        if 'from_handler' in cache:
            data['from_handler'] = self.from_handler.to_summary()
        if 'to_handler' in cache:
            data['to_handler'] = self.to_handler.to_summary()
        return data
