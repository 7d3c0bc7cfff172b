"""
RegistrationSession – single-use QR token an admin issues so a new handler
can create their own account for a department.
"""
import uuid
from django.db import models
from .mixins import TimestampMixin


class RegistrationSession(TimestampMixin):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    qr_token = models.CharField(max_length=64, unique=True)
    department = models.CharField(max_length=120)
    expires_at = models.IntegerField()
    created_by = models.ForeignKey(
        'core.User', on_delete=models.CASCADE, related_name='+',
    )
    used = models.BooleanField(default=False)
    used_at = models.IntegerField(null=True, blank=True)
    registered_user = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, blank=True, related_name='+',
    )

    class Meta:
        db_table = 'registration_sessions'
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.department} ({self.qr_token[:8]}…)'

    @property
    def status(self):
        if self.used:
            return 'used'
        if self.expires_at <= TimestampMixin.utc_timestamp():
            return 'expired'
        return 'active'

    def qr_payload(self):
        """What the QR code encodes; the registration screen reads it back."""
        return {
            'type': 'REGISTRATION',
            'token': self.qr_token,
            'department': self.department,
            'expires_at': self.expires_at,
        }

    def to_dict(self):
        return {
            'id': str(self.id),
            'qr_token': self.qr_token,
            'department': self.department,
            'expires_at': self.expires_at,
            'status': self.status,
            'used': self.used,
            'used_at': self.used_at,
            'registered_user_id': str(self.registered_user_id) if self.registered_user_id else None,
            'created_by': str(self.created_by_id),
            'created_at': self.created_at,
        }
