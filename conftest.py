"""
Root pytest configuration for the Django project.

Provides environment defaults so the suite runs without a .env file
(SQLite database, in-memory cache, throwaway card encryption keys) and
sets Django up before collection. Anything exported in the shell wins,
so the same suite runs against PostgreSQL and Redis in CI.

App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os
import tempfile

import django

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///acquiring-test.sqlite3")
os.environ.setdefault("CACHE_URL", "locmemcache://")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault(
    "CARD_ENCRYPTION_KEYS",
    "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=,"
    "ZmVkY2JhOTg3NjU0MzIxMGZlZGNiYTk4NzY1NDMyMTA=",
)
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "acquiring-logs"))
os.environ.setdefault("ENV_FILE", os.path.join(tempfile.gettempdir(), "acquiring-no-env"))


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
