"""
Student model – the people whose scripts travel through the custody chain.
"""
import uuid
from django.conf import settings
from django.core.validators import FileExtensionValidator
from django.db import models
from .mixins import TimestampMixin


def student_picture_path(instance, filename):
    ext = filename.rsplit('.', 1)[-1].lower()
    return f'students/{instance.index_number}.{ext}'


class Student(TimestampMixin):
    """A registered student, identified on paper and QR cards by index number."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    index_number = models.CharField(max_length=30, unique=True)
    first_name = models.CharField(max_length=80)
    last_name = models.CharField(max_length=80)
    program = models.CharField(max_length=150)
    level = models.IntegerField()

    profile_picture = models.FileField(
        upload_to=student_picture_path, blank=True, null=True,
        validators=[FileExtensionValidator(settings.STUDENT_PICTURE_EXTENSIONS)],
    )

    class Meta:
        db_table = 'students'
        ordering = ['index_number']

    def __str__(self):
        return f'{self.index_number} – {self.full_name}'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    def qr_payload(self, timestamp):
        """Payload encoded in the student's QR card."""
        return {
            'type': 'STUDENT',
            'id': str(self.id),
            'indexNumber': self.index_number,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'program': self.program,
            'level': self.level,
            'timestamp': timestamp,
        }

    def to_dict(self):
        return {
            'id': str(self.id),
            'index_number': self.index_number,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'program': self.program,
            'level': self.level,
            'profile_picture': self.profile_picture.url if self.profile_picture else None,
            'created_at': self.created_at,
        }
