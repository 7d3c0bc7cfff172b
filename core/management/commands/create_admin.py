"""
Management command: create_admin

Creates an ADMIN superuser interactively or via flags.
"""
import getpass

from django.core.management.base import BaseCommand
from core.models import User


class Command(BaseCommand):
    help = 'Create an admin account'

    def add_arguments(self, parser):
        parser.add_argument('--username', type=str, default='admin')
        parser.add_argument('--email', type=str, default='admin@custody.local')
        parser.add_argument('--password', type=str, default=None)
        parser.add_argument('--first-name', type=str, default='System')
        parser.add_argument('--last-name', type=str, default='Administrator')

    def handle(self, *args, **options):
        username = options['username']
        password = options['password']

        if User.objects.filter(username=username).exists():
            self.stdout.write(self.style.WARNING(f'User "{username}" already exists.'))
            return

        if not password:
            password = getpass.getpass('Password: ')
            confirm = getpass.getpass('Confirm password: ')
            if password != confirm:
                self.stdout.write(self.style.ERROR('Passwords do not match.'))
                return

        user = User.objects.create_superuser(
            username=username,
            email=options['email'],
            password=password,
            first_name=options['first_name'],
            last_name=options['last_name'],
        )
        self.stdout.write(self.style.SUCCESS(
            f'Admin account created: {user.username} ({user.email})'
        ))
