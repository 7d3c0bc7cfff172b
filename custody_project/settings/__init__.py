"""
Settings loader for custody_project.
DJANGO_ENV picks the module: 'production', anything else means development.
"""
import os

env = os.environ.get('DJANGO_ENV', 'development')

if env == 'production':
    from .production import *
else:
    from .development import *
