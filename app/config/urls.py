"""
URL configuration for the Django application.

The acquiring backend is driven by its service layer and Celery workers;
the only routed surface is the Django admin, used by operators to inspect
transactions, timelines, balances and withdrawals.

URL Structure:
    /admin/    - Django admin interface

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path("admin/", admin.site.urls),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Acquiring Admin"
admin.site.site_title = "Acquiring Operations"
admin.site.index_title = "Transactions, balances and withdrawals"
