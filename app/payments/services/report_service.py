"""
Settlement report for a business over a period.

Rows are the captured payments whose capture time falls in [start, end),
ordered by capture time then id, with per-row net = gross - fee - refunded
(fee capped at what is left after refunds). The summary and per-processor
breakdown are derived from the same rows, so they always add up.

Usage:
    from payments.services import SettlementReportService

    report = SettlementReportService.generate(business_id, start, end)
    report.summary.net_cents
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from core.exceptions import ValidationError
from core.services import BaseService
from payments.models import Payment

if TYPE_CHECKING:
    import uuid
    from datetime import datetime


TWO_PLACES = Decimal("0.01")


@dataclass
class SettlementReportRow:
    payment_id: uuid.UUID
    order_id: uuid.UUID
    processor_id: uuid.UUID
    processor_variant: str
    gross_cents: int
    fee_cents: int
    refunded_cents: int
    net_cents: int
    status: str
    settled: bool
    payout_id: uuid.UUID | None
    succeeded_at: datetime


@dataclass
class SettlementSummary:
    payment_count: int = 0
    gross_cents: int = 0
    fee_cents: int = 0
    refunded_cents: int = 0
    net_cents: int = 0
    settled_count: int = 0


@dataclass
class ProcessorBreakdown:
    processor_id: uuid.UUID
    processor_variant: str
    payment_count: int = 0
    gross_cents: int = 0
    fee_cents: int = 0
    net_cents: int = 0

    @property
    def average_fee_percentage(self) -> Decimal:
        """Fees as a percentage of gross, 2 decimal places."""
        if not self.gross_cents:
            return Decimal("0.00")
        ratio = Decimal(self.fee_cents) * 100 / Decimal(self.gross_cents)
        return ratio.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass
class SettlementReport:
    business_id: uuid.UUID | str
    start: datetime
    end: datetime
    rows: list[SettlementReportRow] = field(default_factory=list)
    summary: SettlementSummary = field(default_factory=SettlementSummary)
    by_processor: list[ProcessorBreakdown] = field(default_factory=list)


class SettlementReportService(BaseService):
    """Read-only reporting over captured payments."""

    @classmethod
    def generate(
        cls,
        business_id: uuid.UUID | str,
        start: datetime,
        end: datetime,
        processor_id: uuid.UUID | str | None = None,
    ) -> SettlementReport:
        """
        Build the settlement report for [start, end).

        Raises:
            ValidationError: start is not before end
        """
        if start >= end:
            raise ValidationError(
                "Report start must be before end",
                error_code="INVALID_PERIOD",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )

        payments = (
            Payment.objects.captured()
            .filter(business_id=business_id, succeeded_at__gte=start, succeeded_at__lt=end)
            .order_by("succeeded_at", "id")
        )
        if processor_id:
            payments = payments.filter(processor_id=processor_id)

        report = SettlementReport(business_id=business_id, start=start, end=end)
        breakdown: dict[uuid.UUID, ProcessorBreakdown] = {}

        for payment in payments:
            fee = payment.settleable_fee
            net = payment.settleable_amount - fee
            report.rows.append(
                SettlementReportRow(
                    payment_id=payment.id,
                    order_id=payment.order_id,
                    processor_id=payment.processor_id,
                    processor_variant=payment.processor_variant,
                    gross_cents=payment.amount_cents,
                    fee_cents=fee,
                    refunded_cents=payment.refunded_amount_cents,
                    net_cents=net,
                    status=payment.status,
                    settled=payment.is_settled,
                    payout_id=payment.payout_id,
                    succeeded_at=payment.succeeded_at,
                )
            )

            summary = report.summary
            summary.payment_count += 1
            summary.gross_cents += payment.amount_cents
            summary.fee_cents += fee
            summary.refunded_cents += payment.refunded_amount_cents
            summary.net_cents += net
            summary.settled_count += int(payment.is_settled)

            entry = breakdown.setdefault(
                payment.processor_id,
                ProcessorBreakdown(processor_id=payment.processor_id, processor_variant=payment.processor_variant),
            )
            entry.payment_count += 1
            entry.gross_cents += payment.amount_cents
            entry.fee_cents += fee
            entry.net_cents += net

        report.by_processor = list(breakdown.values())

        cls.get_logger().info(
            "Settlement report generated",
            extra={
                "business_id": str(business_id),
                "rows": len(report.rows),
                "processor_id": str(processor_id) if processor_id else None,
            },
        )
        return report
