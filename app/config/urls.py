"""
Root URL configuration.

URL Structure:
    /                              - ReDoc API documentation
    /schema/                       - OpenAPI schema (YAML)
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (load balancers, Docker)
    /api/v1/payments/              - Payment endpoints
        processors/                - List / connect processors
        processors/{id}/verify/    - Re-verify processor credentials
        processors/{id}/disconnect/ - Disconnect processor
        payments/                  - Create payment for an order
        payments/{id}/             - Payment detail
        payments/{id}/refunds/     - Create refund
        webhooks/{variant}/        - Provider webhook endpoint (POST)
        payouts/                   - Payout history
        payouts/{id}/              - Payout detail
        payouts/{id}/retry/        - Retry a failed payout
        schedules/                 - Get-or-create / update payout schedule
        schedules/{id}/hold/       - Toggle manual hold
        schedules/{id}/run/        - Run settlement now
        reports/settlement/        - Settlement report
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Payflow Admin"
admin.site.site_title = "Payflow"
admin.site.index_title = "Payments & Settlement"
