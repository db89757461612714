"""
Tests for the acquiring app.

This package contains test modules for:
- test_state_machines.py: django-fsm transitions of every model
- test_encryption.py: CardVault validation and sealing
- test_risk.py: Rule-based scorer and fail-closed scoring
- test_ledger.py: Balance fold, Money and reconciliation
- test_timeline.py: Append-only timeline and audited refusals
- test_*_service.py: Service operations
- test_workers.py: Celery workers
- test_scenarios.py: Full payment and withdrawal journeys

Usage:
    pytest acquiring/tests/
    pytest acquiring/tests/test_withdrawal_service.py
"""
