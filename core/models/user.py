"""
User (custom auth model) – every person who handles scripts or administers the system.
"""
import uuid
from django.db import models
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin, BaseUserManager
from .mixins import TimestampMixin


class UserManager(BaseUserManager):
    """Custom manager for the User model."""

    def create_user(self, username, email, password=None, **extra_fields):
        if not username:
            raise ValueError("Username is required")
        if not email:
            raise ValueError("Email is required")
        email = self.normalize_email(email)
        user = self.model(username=username, email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, username, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('role', User.ROLE_ADMIN)
        return self.create_user(username, email, password, **extra_fields)

    def handlers(self):
        """Active users allowed to hold or transfer custody of a batch."""
        return self.filter(is_active=True, role__in=User.HANDLER_ROLES)


class User(AbstractBaseUser, PermissionsMixin, TimestampMixin):
    """
    Custom user model.

    AUTH_USER_MODEL = 'core.User'
    """

    ROLE_ADMIN           = 'ADMIN'
    ROLE_INVIGILATOR     = 'INVIGILATOR'
    ROLE_LECTURER        = 'LECTURER'
    ROLE_DEPARTMENT_HEAD = 'DEPARTMENT_HEAD'
    ROLE_FACULTY_OFFICER = 'FACULTY_OFFICER'
    ROLE_CLASS_REP       = 'CLASS_REP'
    ROLE_CHOICES = [
        (ROLE_ADMIN,           'Admin'),
        (ROLE_INVIGILATOR,     'Invigilator'),
        (ROLE_LECTURER,        'Lecturer'),
        (ROLE_DEPARTMENT_HEAD, 'Department Head'),
        (ROLE_FACULTY_OFFICER, 'Faculty Officer'),
        (ROLE_CLASS_REP,       'Class Representative'),
    ]

    # Roles that may hold or hand over a batch of scripts
    HANDLER_ROLES = (
        ROLE_ADMIN, ROLE_INVIGILATOR, ROLE_LECTURER,
        ROLE_DEPARTMENT_HEAD, ROLE_FACULTY_OFFICER,
    )
    # Roles that see non-confidential incidents beyond their own
    OVERSIGHT_ROLES = (ROLE_DEPARTMENT_HEAD, ROLE_FACULTY_OFFICER)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = models.CharField(max_length=80, unique=True)
    email = models.EmailField(max_length=120, unique=True)
    first_name = models.CharField(max_length=80)
    last_name = models.CharField(max_length=80)

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_INVIGILATOR, db_index=True)
    department = models.CharField(max_length=120, blank=True, default='')
    faculty = models.CharField(max_length=120, blank=True, default='')
    phone = models.CharField(max_length=30, blank=True, default='')

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    objects = UserManager()

    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email', 'first_name', 'last_name']

    class Meta:
        db_table = 'users'
        ordering = ['last_name', 'first_name']

    def __str__(self):
        return f'{self.username}'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    @property
    def is_admin(self):
        return self.is_superuser or self.role == self.ROLE_ADMIN

    @property
    def is_handler(self):
        return self.role in self.HANDLER_ROLES

    @property
    def role_display(self):
        """Human-readable role label for the UI."""
        return dict(self.ROLE_CHOICES).get(self.role, self.role.title())

    def has_role(self, *roles):
        """True when the user holds one of ``roles``; admins always pass."""
        return self.is_admin or self.role in roles

    def to_dict(self):
        return {
            'id': str(self.id),
            'username': self.username,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'role': self.role,
            'role_display': self.role_display,
            'department': self.department,
            'faculty': self.faculty,
            'phone': self.phone,
            'is_active': self.is_active,
            'created_at': self.created_at,
        }

    def to_summary(self):
        """Compact form used when embedding a user in other records."""
        return {
            'id': str(self.id),
            'full_name': self.full_name,
            'role': self.role,
            'department': self.department,
        }
