"""
Test settings. In-memory SQLite, fast hashing, quiet logs.
"""

from .base import *

DEPLOYMENT_MODE = 'test'

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

CATERFLOW = {
    **CATERFLOW,
    'ALLOW_NEGATIVE_STOCK': False,
    'AUDIT_SINK_URL': '',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'null': {
            'class': 'logging.NullHandler',
        },
    },
    'root': {
        'handlers': ['null'],
        'level': 'WARNING',
    },
}
