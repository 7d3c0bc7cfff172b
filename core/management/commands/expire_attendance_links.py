"""
Management command: expire_attendance_links

Deactivates attendance links whose expiry has passed. Run from cron.
"""
import logging

from django.core.management.base import BaseCommand

from core.models import AttendanceLink, TimestampMixin

logger = logging.getLogger('custody.audit')


class Command(BaseCommand):
    help = 'Deactivate expired attendance links'

    def handle(self, *args, **options):
        now = TimestampMixin.utc_timestamp()
        count = AttendanceLink.objects.filter(
            is_active=True, expires_at__lte=now,
        ).update(is_active=False, deactivated_at=now, updated_at=now)

        logger.info('LINKS_EXPIRED | count=%d', count)
        self.stdout.write(self.style.SUCCESS(f'Deactivated {count} expired link(s).'))
