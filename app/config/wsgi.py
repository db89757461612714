"""
WSGI config for the Django application.

Serves the Django admin. Background work runs in Celery, so a plain WSGI
server (gunicorn) is all the web tier needs.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
