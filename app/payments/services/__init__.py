"""
Payment services.

This package provides:
- ProcessorRegistry: processor selection, connection and health
- PaymentOrchestrator: payment creation with processor fallback
- WebhookService: verified, idempotent webhook application
- RefundService: refunds through the capturing processor
- SettlementService: payout batching per schedule
- PayoutService: payout lifecycle hooks and schedule management
- SettlementReportService: settlement reporting

Usage:
    from payments.services import OrderInfo, PaymentOrchestrator

    result = PaymentOrchestrator().create_payment(order, business_id=business_id)

    from payments.services import SettlementService

    payout = SettlementService.run_schedule(business_id, processor_id)
"""

from payments.services.orchestrator import OrderInfo, PaymentIntentResult, PaymentOrchestrator
from payments.services.payout_service import PayoutService
from payments.services.refund_service import RefundResult, RefundService
from payments.services.registry import ProcessorRegistry
from payments.services.report_service import (
    ProcessorBreakdown,
    SettlementReport,
    SettlementReportRow,
    SettlementReportService,
    SettlementSummary,
)
from payments.services.settlement_service import SettlementService, SettlementTotals
from payments.services.webhook_service import WebhookResult, WebhookService

__all__ = [
    "OrderInfo",
    "PaymentIntentResult",
    "PaymentOrchestrator",
    "PayoutService",
    "ProcessorBreakdown",
    "ProcessorRegistry",
    "RefundResult",
    "RefundService",
    "SettlementReport",
    "SettlementReportRow",
    "SettlementReportService",
    "SettlementService",
    "SettlementSummary",
    "SettlementTotals",
    "WebhookResult",
    "WebhookService",
]
