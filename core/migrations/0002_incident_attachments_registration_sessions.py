import core.models.incident
import django.core.validators
import django.db.models.deletion
import uuid
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        ('created_at', models.IntegerField(blank=True, default=None, help_text='UTC Unix timestamp when created', null=True)),
        ('updated_at', models.IntegerField(blank=True, default=None, help_text='UTC Unix timestamp when last updated', null=True)),
    ]


ATTACHMENT_EXTENSIONS = ['jpg', 'jpeg', 'png', 'gif', 'webp', 'mp4', 'mpeg', 'mov', 'avi', 'webm', 'pdf']


class Migration(migrations.Migration):

    dependencies = [
        ('core', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='IncidentAttachment',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('file', models.FileField(max_length=255, upload_to=core.models.incident.incident_attachment_path, validators=[django.core.validators.FileExtensionValidator(ATTACHMENT_EXTENSIONS)])),
                ('file_name', models.CharField(max_length=255)),
                ('file_type', models.CharField(blank=True, default='', max_length=100)),
                ('file_size', models.IntegerField()),
                ('incident', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attachments', to='core.incident')),
                ('uploaded_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'incident_attachments',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='RegistrationSession',
            fields=[
                *_timestamps(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('qr_token', models.CharField(max_length=64, unique=True)),
                ('department', models.CharField(max_length=120)),
                ('expires_at', models.IntegerField()),
                ('used', models.BooleanField(default=False)),
                ('used_at', models.IntegerField(blank=True, null=True)),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('registered_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'registration_sessions',
                'ordering': ['-created_at'],
            },
        ),
    ]
