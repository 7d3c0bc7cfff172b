"""
Base Django settings for custody_project.
Common settings shared between development and production.
"""
import os
import sys
from datetime import timedelta
from pathlib import Path
import environ

# Build paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Check if running tests (manage.py test or pytest-django)
TESTING = 'test' in sys.argv or 'pytest' in sys.modules

# Environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ['*']),
    CUSTODY_PAGE_SIZE=(int, 20),
    CUSTODY_MAX_PAGE_SIZE=(int, 100),
    ATTENDANCE_LINK_DEFAULT_MINUTES=(int, 30),
    STUDENT_PICTURE_MAX_BYTES=(int, 5 * 1024 * 1024),
    INCIDENT_ATTACHMENT_MAX_BYTES=(int, 10 * 1024 * 1024),
    REGISTRATION_SESSION_DEFAULT_MINUTES=(int, 60),
    API_SESSION_TIMEOUT=(int, 3600),
    HANDLER_SESSION_TIMEOUT=(int, 8 * 3600),
)
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env('SECRET_KEY', default='django-insecure-change-me-in-production')

# Django admin is mounted at a non-guessable path taken from .env
SECRET_ADMIN_URL = env('SECRET_ADMIN_URL', default='custody-admin')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Third-party apps
    'axes',
    # Project apps
    'core.apps.CoreConfig',
    'dashboard.apps.DashboardConfig',
    'tracking.apps.TrackingConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    # Django-axes rate limiting (must be after AuthenticationMiddleware)
    'axes.middleware.AxesMiddleware',
    # Role-based access control (must be after AuthenticationMiddleware)
    'core.middleware.RoleBasedAccessMiddleware',
    # Activity-based session timeout per API area
    'core.middleware.SessionTimeoutMiddleware',
    # Security headers
    'core.middleware.ContentSecurityPolicyMiddleware',
    'core.middleware.ReferrerPolicyMiddleware',
    'core.middleware.PermissionsPolicyMiddleware',
]

ROOT_URLCONF = 'custody_project.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'custody_project.wsgi.application'

# Custom user model
AUTH_USER_MODEL = 'core.User'

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
     'OPTIONS': {'min_length': 8}},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static & uploaded files
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
MEDIA_URL = 'media/'
MEDIA_ROOT = BASE_DIR / 'media'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Session settings
# SessionTimeoutMiddleware applies activity-based expiry on API paths;
# this is the fallback for admin and other paths.
SESSION_COOKIE_AGE = 3600
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = 'Lax'

# Client IPs allowed to set X-Forwarded-For (empty list trusts any proxy)
TRUSTED_PROXIES = env.list('TRUSTED_PROXIES', default=[])

# ==========================================================================
# CUSTODY SETTINGS
# ==========================================================================
CUSTODY_PAGE_SIZE = env('CUSTODY_PAGE_SIZE')
CUSTODY_MAX_PAGE_SIZE = env('CUSTODY_MAX_PAGE_SIZE')

# Attendance self-mark links
ATTENDANCE_LINK_BASE_URL = env('ATTENDANCE_LINK_BASE_URL', default='http://localhost:5173')
ATTENDANCE_LINK_DEFAULT_MINUTES = env('ATTENDANCE_LINK_DEFAULT_MINUTES')

# Student profile pictures
STUDENT_PICTURE_MAX_BYTES = env('STUDENT_PICTURE_MAX_BYTES')
STUDENT_PICTURE_EXTENSIONS = ['jpg', 'jpeg', 'png', 'webp']

# Incident evidence (images, video, PDF)
INCIDENT_ATTACHMENT_MAX_BYTES = env('INCIDENT_ATTACHMENT_MAX_BYTES')
INCIDENT_ATTACHMENT_MAX_FILES = 5
INCIDENT_ATTACHMENT_EXTENSIONS = [
    'jpg', 'jpeg', 'png', 'gif', 'webp', 'mp4', 'mpeg', 'mov', 'avi', 'webm', 'pdf',
]

# Handler self-registration QR codes
REGISTRATION_SESSION_DEFAULT_MINUTES = env('REGISTRATION_SESSION_DEFAULT_MINUTES')
REGISTRATION_SESSION_MAX_MINUTES = 24 * 60

# Activity timeouts (seconds)
API_SESSION_TIMEOUT = env('API_SESSION_TIMEOUT')
HANDLER_SESSION_TIMEOUT = env('HANDLER_SESSION_TIMEOUT')

# ==========================================================================
# DJANGO-AXES RATE LIMITING
# ==========================================================================
if TESTING:
    # Don't use axes in tests (it requires request object)
    AUTHENTICATION_BACKENDS = [
        'django.contrib.auth.backends.ModelBackend',
    ]
    AXES_ENABLED = False
else:
    AUTHENTICATION_BACKENDS = [
        'axes.backends.AxesBackend',  # AxesBackend with ModelBackend fallback
        'django.contrib.auth.backends.ModelBackend',
    ]

# Lock out after 5 failed attempts
AXES_FAILURE_LIMIT = 5
# Lock out for 15 minutes
AXES_COOLOFF_TIME = timedelta(minutes=15)
# Lock based on username and IP for better security
AXES_LOCKOUT_PARAMETERS = ['username', 'ip_address']
# Reset attempts on successful login
AXES_RESET_ON_SUCCESS = True
# Use cache for performance
AXES_CACHE = 'default'
# Enable in admin
AXES_ENABLE_ADMIN = True
