"""
URL configuration for the payments app.

Routes:
    - GET|POST processors/                     - List / connect processors
    - POST processors/{id}/verify/             - Re-verify credentials
    - POST processors/{id}/disconnect/         - Disconnect processor
    - POST payments/                           - Create payment for an order
    - GET payments/{id}/                       - Payment detail
    - POST payments/{id}/refunds/              - Refund payment
    - POST webhooks/{variant}/[{processor_id}/] - Provider webhooks
    - GET payouts/                             - Payout history
    - GET payouts/{id}/                        - Payout detail
    - POST payouts/{id}/retry/                 - Retry failed payout
    - GET|PUT schedules/                       - Payout schedule settings
    - POST schedules/{id}/hold/                - Manual hold
    - POST schedules/{id}/run/                 - Run settlement now
    - GET reports/settlement/                  - Settlement report

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments import views
from payments.webhooks.views import processor_webhook

app_name = "payments"

urlpatterns = [
    # Processors
    path("processors/", views.ProcessorListView.as_view(), name="processor_list"),
    path("processors/<uuid:pk>/verify/", views.ProcessorVerifyView.as_view(), name="processor_verify"),
    path(
        "processors/<uuid:pk>/disconnect/",
        views.ProcessorDisconnectView.as_view(),
        name="processor_disconnect",
    ),
    # Payments & refunds
    path("payments/", views.PaymentCreateView.as_view(), name="payment_create"),
    path("payments/<uuid:pk>/", views.PaymentDetailView.as_view(), name="payment_detail"),
    path("payments/<uuid:pk>/refunds/", views.RefundCreateView.as_view(), name="refund_create"),
    # Webhook endpoints
    path("webhooks/<str:variant>/", processor_webhook, name="webhook"),
    path(
        "webhooks/<str:variant>/<uuid:processor_id>/",
        processor_webhook,
        name="processor_webhook",
    ),
    # Payouts
    path("payouts/", views.PayoutListView.as_view(), name="payout_list"),
    path("payouts/<uuid:pk>/", views.PayoutDetailView.as_view(), name="payout_detail"),
    path("payouts/<uuid:pk>/retry/", views.PayoutRetryView.as_view(), name="payout_retry"),
    # Schedules
    path("schedules/", views.PayoutScheduleView.as_view(), name="schedule"),
    path("schedules/<uuid:pk>/hold/", views.ScheduleHoldView.as_view(), name="schedule_hold"),
    path("schedules/<uuid:pk>/run/", views.ScheduleRunView.as_view(), name="schedule_run"),
    # Reports
    path("reports/settlement/", views.SettlementReportView.as_view(), name="settlement_report"),
]
