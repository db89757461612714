"""
Pytest configuration shared by every app under app/.

Tests are auto-marked unit/integration/e2e from their filename so that
``pytest -m unit`` gives a fast subset without touching every module.
"""

import pytest


def pytest_configure():
    """Use settings suited to tests once Django is configured."""
    from django.conf import settings

    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_scenarios.py → e2e (full payment and withdrawal journeys)
    - test_*_service.py, test_workers.py, etc. → integration
    - test_state_machines.py, test_encryption.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_scenarios.py"]

    integration_patterns = [
        "test_transaction_service.py",
        "test_verification_service.py",
        "test_withdrawal_service.py",
        "test_settlement_service.py",
        "test_ledger.py",
        "test_timeline.py",
        "test_workers.py",
        "test_optimistic_locking.py",
        "test_risk_circuit.py",
        "test_risk.py",
    ]

    unit_patterns = [
        "test_state_machines.py",
        "test_encryption.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


def _patch_postgresql_flush_for_cascade():
    """
    Patch PostgreSQL flush to always use CASCADE.

    TransactionTestCase (used by the concurrent withdrawal tests) resets the
    database with TRUNCATE, which fails on tables referenced by foreign keys
    unless CASCADE is given.
    """
    import django.db.models  # noqa: F401  (must load before the backend module)
    from django.db.backends.postgresql import operations

    original_sql_flush = operations.DatabaseOperations.sql_flush

    def sql_flush_with_cascade(
        self, style, tables, *, reset_sequences=False, allow_cascade=False
    ):
        return original_sql_flush(
            self, style, tables, reset_sequences=reset_sequences, allow_cascade=True
        )

    operations.DatabaseOperations.sql_flush = sql_flush_with_cascade


_patch_postgresql_flush_for_cascade()
