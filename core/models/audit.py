"""
AuditLog model – persistent trail of every state change in the custody system.
"""
from django.db import models
from .mixins import TimestampMixin


class AuditLog(models.Model):
    """One audited action: who did what to which entity, from where."""

    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL,
        null=True, blank=True, related_name='audit_logs'
    )
    username = models.CharField(max_length=80, blank=True, default='')

    # e.g. INITIATE_TRANSFER, CONFIRM_TRANSFER_WITH_DISCREPANCY
    action = models.CharField(max_length=60, db_index=True)
    entity = models.CharField(max_length=50)  # e.g. 'BatchTransfer', 'ExamSession'
    entity_id = models.CharField(max_length=36, blank=True, default='')

    details = models.JSONField(null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default='')

    timestamp = models.IntegerField(db_index=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-timestamp', '-id']
        indexes = [
            models.Index(fields=['user', 'action'], name='idx_audit_user_action'),
            models.Index(fields=['entity', 'entity_id'], name='idx_audit_entity'),
        ]

    def __str__(self):
        return f'[{self.action}] {self.username} on {self.entity} {self.entity_id}'

    def save(self, *args, **kwargs):
        if not self.timestamp:
            self.timestamp = TimestampMixin.utc_timestamp()
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': str(self.user_id) if self.user_id else None,
            'username': self.username,
            'action': self.action,
            'entity': self.entity,
            'entity_id': self.entity_id,
            'details': self.details,
            'ip_address': self.ip_address,
            'timestamp': self.timestamp,
        }
