"""
Processor registry: which processor a business's payment goes to.

Selection is deterministic. The preferred processor wins when it is active;
otherwise active configs are tried in ascending priority, ties broken by
creation order and then id. The registry never performs network calls
during selection; connect/verify are the only operations that reach an
adapter.

Usage:
    from payments.services import ProcessorRegistry

    registry = ProcessorRegistry()
    config = registry.select_processor(business_id)
    for config in registry.candidates(business_id, preferred_processor_id):
        ...
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone
from django_fsm import can_proceed

from core.services import BaseService, ServiceResult
from payments.adapters import get_adapter
from payments.credentials import encrypt_credentials, validate_credentials
from payments.exceptions import (
    InvalidStateTransitionError,
    NoActiveProcessorError,
    ProcessorError,
    ProcessorNotFoundError,
)
from payments.models import PaymentProcessorConfig
from payments.models.processor import DEFAULT_FEE_PERCENTAGES, DEFAULT_PRIORITY
from payments.state_machines import PayoutFrequency, ProcessorStatus

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable, Mapping

    from payments.adapters.base import ProcessorAdapter


class ProcessorRegistry(BaseService):
    """
    Owns PaymentProcessorConfig selection and lifecycle.

    Args:
        adapters: Optional variant -> adapter mapping used instead of the
            default adapters (tests inject fakes here)
    """

    def __init__(self, adapters: Mapping[str, ProcessorAdapter] | None = None):
        self.adapters = adapters

    # =========================================================================
    # Selection
    # =========================================================================

    def candidates(
        self,
        business_id: uuid.UUID | str,
        preferred_processor_id: uuid.UUID | str | None = None,
        currency: str | None = None,
    ) -> list[PaymentProcessorConfig]:
        """
        Ordered fallback list for a payment.

        The preferred config comes first when it belongs to the business and
        is active; the remaining active configs follow in selection order.
        With ``currency`` only configs settling in that currency qualify.
        """
        queryset = PaymentProcessorConfig.objects.for_business(business_id).active()
        if currency is not None:
            queryset = queryset.filter(currency=currency.lower())
        active = list(queryset.in_selection_order())

        if preferred_processor_id is not None:
            preferred = [c for c in active if str(c.id) == str(preferred_processor_id)]
            if preferred:
                rest = [c for c in active if c.id != preferred[0].id]
                return preferred + rest

        return active

    def select_processor(
        self,
        business_id: uuid.UUID | str,
        preferred_processor_id: uuid.UUID | str | None = None,
        exclude: Iterable[uuid.UUID | str] = (),
        currency: str | None = None,
    ) -> PaymentProcessorConfig:
        """
        Pick the processor for the next payment attempt.

        Raises:
            NoActiveProcessorError: No active, non-excluded config exists
                (in ``currency``, when given)
        """
        excluded = {str(pk) for pk in exclude}
        for config in self.candidates(business_id, preferred_processor_id, currency=currency):
            if str(config.id) not in excluded:
                return config

        raise NoActiveProcessorError(
            "No active payment processor is configured for this business",
            details={"business_id": str(business_id), "excluded": sorted(excluded), "currency": currency},
        )

    # =========================================================================
    # Health
    # =========================================================================

    def mark_failed(self, config: PaymentProcessorConfig, error: str) -> PaymentProcessorConfig:
        """Take a processor out of the candidate pool after an adapter failure."""
        with transaction.atomic():
            locked = PaymentProcessorConfig.objects.select_for_update().get(id=config.id)
            if not can_proceed(locked.mark_failed):
                # Disconnected meanwhile; nothing to record
                return locked
            locked.mark_failed(error[:1000])
            locked.save()

        self.get_logger().warning(
            "Processor marked failed",
            extra={
                "processor_id": str(config.id),
                "business_id": str(config.business_id),
                "variant": config.variant,
            },
        )
        return locked

    def mark_used(self, config: PaymentProcessorConfig) -> None:
        now = timezone.now()
        PaymentProcessorConfig.objects.filter(id=config.id).update(last_used_at=now, updated_at=now)
        config.last_used_at = now

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def get_processor(
        self,
        processor_id: uuid.UUID | str,
        business_id: uuid.UUID | str | None = None,
    ) -> PaymentProcessorConfig:
        queryset = PaymentProcessorConfig.objects.all()
        if business_id is not None:
            queryset = queryset.for_business(business_id)
        try:
            return queryset.get(id=processor_id)
        except PaymentProcessorConfig.DoesNotExist:
            raise ProcessorNotFoundError(
                f"Processor {processor_id} not found",
                details={"processor_id": str(processor_id)},
            ) from None

    def list_processors(self, business_id: uuid.UUID | str) -> list[PaymentProcessorConfig]:
        return list(PaymentProcessorConfig.objects.for_business(business_id).in_selection_order())

    def connect_processor(
        self,
        business_id: uuid.UUID | str,
        variant: str,
        credentials: Mapping[str, str],
        priority: int = DEFAULT_PRIORITY,
        fee_percentage: Decimal | None = None,
        fixed_fee_cents: int = 0,
        display_name: str = "",
        settlement_schedule: str = PayoutFrequency.WEEKLY,
        currency: str = "usd",
    ) -> ServiceResult[PaymentProcessorConfig]:
        """
        Store a new processor config and verify its credentials.

        The config is always created (so the owner can fix and re-verify
        it); the result says whether verification activated it.

        Raises:
            ValidationError: Unknown variant or missing credential keys
        """
        validate_credentials(variant, credentials)

        if fee_percentage is None:
            fee_percentage = DEFAULT_FEE_PERCENTAGES.get(variant, Decimal("0.00"))

        config = PaymentProcessorConfig.objects.create(
            business_id=business_id,
            variant=variant,
            display_name=display_name,
            priority=priority,
            fee_percentage=fee_percentage,
            fixed_fee_cents=fixed_fee_cents,
            settlement_schedule=settlement_schedule,
            currency=currency.lower(),
            encrypted_credentials=encrypt_credentials(credentials),
        )

        self.get_logger().info(
            "Processor connected, verifying credentials",
            extra={
                "processor_id": str(config.id),
                "business_id": str(business_id),
                "variant": variant,
                "priority": priority,
            },
        )
        return self.verify_processor(config)

    def verify_processor(self, config: PaymentProcessorConfig) -> ServiceResult[PaymentProcessorConfig]:
        """
        Re-run credential verification.

        pending_verification/failed -> active on success, -> failed otherwise.
        A failed verification is reported, never retried here.
        """
        if config.status == ProcessorStatus.DISCONNECTED:
            return ServiceResult.failure(
                "Disconnected processors must be reconnected before verification",
                error_code="PROCESSOR_DISCONNECTED",
            )

        adapter = get_adapter(config.variant, self.adapters)
        try:
            adapter.verify_credentials(config.get_credentials())
        except ProcessorError as e:
            failed = self.mark_failed(config, str(e))
            result = self.handle_exception(e, "Processor credential verification failed", log_level=logging.WARNING)
            result.data = failed
            return result

        with transaction.atomic():
            locked = PaymentProcessorConfig.objects.select_for_update().get(id=config.id)
            if locked.status != ProcessorStatus.ACTIVE:
                locked.activate()
            else:
                locked.verified_at = timezone.now()
            locked.save()

        self.get_logger().info(
            "Processor verified",
            extra={"processor_id": str(config.id), "variant": config.variant},
        )
        return ServiceResult.success(locked)

    def disconnect_processor(self, config: PaymentProcessorConfig) -> PaymentProcessorConfig:
        """Permanently remove a processor from selection (history is kept)."""
        with transaction.atomic():
            locked = PaymentProcessorConfig.objects.select_for_update().get(id=config.id)
            if not can_proceed(locked.disconnect):
                raise InvalidStateTransitionError(
                    f"Processor {config.id} is already disconnected",
                    details={"processor_id": str(config.id), "status": locked.status},
                )
            locked.disconnect()
            locked.save()

        self.get_logger().info(
            "Processor disconnected",
            extra={"processor_id": str(config.id), "variant": config.variant},
        )
        return locked

    def reverify_failed(self) -> int:
        """Re-verify every failed config; returns how many became active again."""
        recovered = 0
        for config in PaymentProcessorConfig.objects.filter(status=ProcessorStatus.FAILED):
            if self.verify_processor(config):
                recovered += 1
        return recovered
