"""
Acquiring app configuration.

This app provides the merchant acquiring backend:
- Transaction lifecycle with risk scoring and manual review
- Step-up verification of card payments (SMS code, push approval)
- Balance ledger, settlement and withdrawals
"""

from django.apps import AppConfig


class AcquiringConfig(AppConfig):
    """Configuration for the acquiring application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "acquiring"
    verbose_name = "Acquiring"
