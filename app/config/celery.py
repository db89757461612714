"""
Celery configuration for the Django application.

Celery runs the acquiring background workers:
- Expiry of transactions abandoned mid-flow
- Automatic settlement of card transactions past the settlement delay
- Nightly reconciliation of cached balances

Schedules live in the database (django-celery-beat's DatabaseScheduler)
and are seeded by the acquiring migrations. Tasks are auto-discovered from
each installed app's tasks.py.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
