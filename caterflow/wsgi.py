"""
WSGI config for caterflow project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'caterflow.settings.local')

application = get_wsgi_application()
