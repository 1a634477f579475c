"""
DRF views for the payments app.

This module provides API views for:
- Processor management (list, connect, verify, disconnect)
- Payment creation and lookup
- Refunds
- Payout history and retry
- Payout schedules (settings, hold, run now)
- Settlement reports

Related files:
    - services/: Business logic
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Provider webhook endpoints (unauthenticated)

Note:
    Business ownership and role checks belong to the platform's account
    layer; these views take business_id from the request. Application
    errors are returned as ``exc.to_dict()`` with the status from
    ``core.exceptions.http_status_for``.
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError, http_status_for
from payments.models import PayoutSchedule
from payments.serializers import (
    BusinessQuerySerializer,
    ConnectProcessorSerializer,
    CreatePaymentSerializer,
    CreateRefundSerializer,
    PaymentIntentResponseSerializer,
    PaymentSerializer,
    PayoutQuerySerializer,
    PayoutScheduleSerializer,
    PayoutSerializer,
    ProcessorConfigSerializer,
    RefundResultSerializer,
    ReportQuerySerializer,
    ScheduleHoldSerializer,
    ScheduleQuerySerializer,
    SettlementReportSerializer,
    UpdateScheduleSerializer,
)
from payments.services import (
    OrderInfo,
    PaymentOrchestrator,
    PayoutService,
    ProcessorRegistry,
    RefundService,
    SettlementReportService,
    SettlementService,
)


def error_response(exc: BaseApplicationError) -> Response:
    return Response(exc.to_dict(), status=http_status_for(exc))


# =============================================================================
# Processor Views
# =============================================================================


class ProcessorListView(APIView):
    """
    GET: List a business's processors in selection order
    POST: Connect a new processor and verify its credentials

    URL: /api/v1/payments/processors/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List processors",
        description="Processors configured for a business, in selection order. Credentials are never returned.",
        tags=["Payments - Processors"],
        parameters=[OpenApiParameter("business_id", str, required=True)],
        responses={200: ProcessorConfigSerializer(many=True)},
    )
    def get(self, request):
        query = BusinessQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        processors = ProcessorRegistry().list_processors(query.validated_data["business_id"])
        return Response(ProcessorConfigSerializer(processors, many=True).data)

    @extend_schema(
        summary="Connect processor",
        description=(
            "Store encrypted credentials for a processor and verify them. The processor "
            "is created even when verification fails so it can be fixed and re-verified."
        ),
        tags=["Payments - Processors"],
        request=ConnectProcessorSerializer,
        responses={201: ProcessorConfigSerializer},
    )
    def post(self, request):
        """
        Request body:
            {
                "business_id": "uuid",
                "variant": "stripe",
                "credentials": {"secret_key": "...", "webhook_secret": "..."},
                "priority": 10
            }

        Returns:
            {"processor": {...}, "verified": true, "error": null, "error_code": null}
        """
        serializer = ConnectProcessorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = ProcessorRegistry().connect_processor(**serializer.validated_data)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            {
                "processor": ProcessorConfigSerializer(result.data).data,
                "verified": result.success,
                "error": result.error,
                "error_code": result.error_code,
            },
            status=status.HTTP_201_CREATED,
        )


class ProcessorVerifyView(APIView):
    """
    POST: Re-run credential verification

    URL: /api/v1/payments/processors/{id}/verify/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Verify processor",
        description="Re-verify stored credentials; a failed processor becomes active again on success.",
        tags=["Payments - Processors"],
        request=None,
        responses={200: ProcessorConfigSerializer},
    )
    def post(self, request, pk):
        registry = ProcessorRegistry()
        try:
            config = registry.get_processor(pk)
        except BaseApplicationError as e:
            return error_response(e)

        result = registry.verify_processor(config)
        if result.data is None:
            return Response(
                {"error": result.error, "error_code": result.error_code},
                status=status.HTTP_409_CONFLICT,
            )

        return Response(
            {
                "processor": ProcessorConfigSerializer(result.data).data,
                "verified": result.success,
                "error": result.error,
                "error_code": result.error_code,
            }
        )


class ProcessorDisconnectView(APIView):
    """
    POST: Remove a processor from selection (payment history is kept)

    URL: /api/v1/payments/processors/{id}/disconnect/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Disconnect processor",
        tags=["Payments - Processors"],
        request=None,
        responses={200: ProcessorConfigSerializer},
    )
    def post(self, request, pk):
        registry = ProcessorRegistry()
        try:
            config = registry.disconnect_processor(registry.get_processor(pk))
        except BaseApplicationError as e:
            return error_response(e)

        return Response(ProcessorConfigSerializer(config).data)


# =============================================================================
# Payment & Refund Views
# =============================================================================


class PaymentCreateView(APIView):
    """
    POST: Create a payment for an order

    URL: /api/v1/payments/payments/

    The payment is created with the first processor that accepts it;
    confirmation arrives later through webhooks.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Create payment",
        description=(
            "Create a payment intent for an order, falling back across the business's "
            "active processors. Returns a client secret or a redirect URL."
        ),
        tags=["Payments"],
        request=CreatePaymentSerializer,
        responses={201: PaymentIntentResponseSerializer},
    )
    def post(self, request):
        serializer = CreatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = OrderInfo(
            order_id=data["order_id"],
            business_id=data["business_id"],
            amount_cents=data["amount_cents"],
            currency=data["currency"],
            description=data["description"],
            customer_email=data["customer_email"],
            customer_phone=data["customer_phone"],
        )
        options = {"metadata": data["metadata"]}
        if data["return_url"]:
            options["return_url"] = data["return_url"]

        try:
            result = PaymentOrchestrator().create_payment(
                order,
                business_id=data["business_id"],
                preferred_processor_id=data.get("preferred_processor_id"),
                options=options,
            )
        except BaseApplicationError as e:
            return error_response(e)

        response = PaymentIntentResponseSerializer(
            {
                "payment": result.payment,
                "client_secret": result.client_secret,
                "payment_url": result.payment_url,
                "requires_redirect": result.requires_redirect,
                "additional_data": result.additional_data,
            }
        )
        return Response(response.data, status=status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    """
    GET: Payment detail

    URL: /api/v1/payments/payments/{id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get payment",
        tags=["Payments"],
        responses={200: PaymentSerializer},
    )
    def get(self, request, pk):
        try:
            payment = PaymentOrchestrator().get_payment(pk)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PaymentSerializer(payment).data)


class RefundCreateView(APIView):
    """
    POST: Refund a captured payment (full when amount_cents is omitted)

    URL: /api/v1/payments/payments/{id}/refunds/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Refund payment",
        description=(
            "Refund a succeeded or partially refunded payment through the processor that "
            "captured it. Omit amount_cents to refund the remaining balance."
        ),
        tags=["Payments"],
        request=CreateRefundSerializer,
        responses={201: RefundResultSerializer},
    )
    def post(self, request, pk):
        serializer = CreateRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = RefundService().create_refund(
                pk,
                amount_cents=serializer.validated_data.get("amount_cents"),
                reason=serializer.validated_data["reason"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        response = RefundResultSerializer(
            {
                "refund_id": result.refund_id,
                "amount_cents": result.amount_cents,
                "status": result.status,
                "payment": result.payment,
            }
        )
        return Response(response.data, status=status.HTTP_201_CREATED)


# =============================================================================
# Payout Views
# =============================================================================


class PayoutListView(APIView):
    """
    GET: Payout history of a business, newest first

    URL: /api/v1/payments/payouts/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List payouts",
        tags=["Payments - Payouts"],
        parameters=[
            OpenApiParameter("business_id", str, required=True),
            OpenApiParameter("status", str),
            OpenApiParameter("processor_id", str),
        ],
        responses={200: PayoutSerializer(many=True)},
    )
    def get(self, request):
        query = PayoutQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        payouts = PayoutService.payout_history(**query.validated_data)
        return Response(PayoutSerializer(payouts, many=True).data)


class PayoutDetailView(APIView):
    """
    GET: Payout detail

    URL: /api/v1/payments/payouts/{id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get payout",
        tags=["Payments - Payouts"],
        responses={200: PayoutSerializer},
    )
    def get(self, request, pk):
        try:
            payout = PayoutService.get_payout(pk)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PayoutSerializer(payout).data)


class PayoutRetryView(APIView):
    """
    POST: Put a failed payout back to pending with the same payments

    URL: /api/v1/payments/payouts/{id}/retry/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Retry payout",
        tags=["Payments - Payouts"],
        request=None,
        responses={200: PayoutSerializer},
    )
    def post(self, request, pk):
        try:
            payout = PayoutService.retry_payout(pk)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PayoutSerializer(payout).data)


# =============================================================================
# Schedule Views
# =============================================================================


class PayoutScheduleView(APIView):
    """
    GET: Payout schedule for a business + processor (created on first access)
    PUT: Update schedule settings

    URL: /api/v1/payments/schedules/?business_id=...&processor_id=...
    """

    permission_classes = [IsAuthenticated]

    schedule_parameters = [
        OpenApiParameter("business_id", str, required=True),
        OpenApiParameter("processor_id", str, required=True),
    ]

    @extend_schema(
        summary="Get payout schedule",
        tags=["Payments - Schedules"],
        parameters=schedule_parameters,
        responses={200: PayoutScheduleSerializer},
    )
    def get(self, request):
        try:
            schedule = self._get_schedule(request)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PayoutScheduleSerializer(schedule).data)

    @extend_schema(
        summary="Update payout schedule",
        description="Changing frequency or payout day recomputes the next payout date.",
        tags=["Payments - Schedules"],
        parameters=schedule_parameters,
        request=UpdateScheduleSerializer,
        responses={200: PayoutScheduleSerializer},
    )
    def put(self, request):
        serializer = UpdateScheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            schedule = PayoutService.update_schedule(self._get_schedule(request), **serializer.validated_data)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PayoutScheduleSerializer(schedule).data)

    def _get_schedule(self, request) -> PayoutSchedule:
        query = ScheduleQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        business_id = query.validated_data["business_id"]

        processor = ProcessorRegistry().get_processor(query.validated_data["processor_id"], business_id=business_id)
        return PayoutService.get_or_create_schedule(business_id, processor)


class ScheduleDetailMixin:
    """Looks up a PayoutSchedule by primary key for the action views below."""

    def get_schedule(self, pk) -> PayoutSchedule | None:
        return PayoutSchedule.objects.select_related("processor").filter(id=pk).first()

    def not_found(self, pk) -> Response:
        return Response(
            {
                "error": "Payout schedule not found",
                "error_code": "SCHEDULE_NOT_FOUND",
                "details": {"schedule_id": str(pk)},
            },
            status=status.HTTP_404_NOT_FOUND,
        )


class ScheduleHoldView(ScheduleDetailMixin, APIView):
    """
    POST: Place or release a manual payout hold

    URL: /api/v1/payments/schedules/{id}/hold/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Hold or release payouts",
        tags=["Payments - Schedules"],
        request=ScheduleHoldSerializer,
        responses={200: PayoutScheduleSerializer},
    )
    def post(self, request, pk):
        serializer = ScheduleHoldSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        schedule = self.get_schedule(pk)
        if schedule is None:
            return self.not_found(pk)

        schedule = PayoutService.set_hold(
            schedule,
            held=serializer.validated_data["held"],
            reason=serializer.validated_data["reason"],
        )
        return Response(PayoutScheduleSerializer(schedule).data)


class ScheduleRunView(ScheduleDetailMixin, APIView):
    """
    POST: Run settlement for the schedule now

    URL: /api/v1/payments/schedules/{id}/run/

    Returns 201 with the payout when one was created, 200 with
    {"payout": null} when nothing was settled this cycle, and 409 when a
    run is already in progress for the pair.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Run settlement now",
        tags=["Payments - Schedules"],
        request=None,
        responses={200: PayoutSerializer, 201: PayoutSerializer},
    )
    def post(self, request, pk):
        schedule = self.get_schedule(pk)
        if schedule is None:
            return self.not_found(pk)

        try:
            payout = SettlementService.run_schedule(
                schedule.business_id,
                schedule.processor_id,
                raise_on_locked=True,
            )
        except BaseApplicationError as e:
            return error_response(e)

        if payout is None:
            return Response({"payout": None})
        return Response({"payout": PayoutSerializer(payout).data}, status=status.HTTP_201_CREATED)


# =============================================================================
# Report Views
# =============================================================================


class SettlementReportView(APIView):
    """
    GET: Settlement report for a business over [start, end)

    URL: /api/v1/payments/reports/settlement/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Settlement report",
        description="Captured payments in the period with fees, refunds and net, summarized per processor.",
        tags=["Payments - Reports"],
        parameters=[
            OpenApiParameter("business_id", str, required=True),
            OpenApiParameter("start", str, required=True),
            OpenApiParameter("end", str, required=True),
            OpenApiParameter("processor_id", str),
        ],
        responses={200: SettlementReportSerializer},
    )
    def get(self, request):
        query = ReportQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        try:
            report = SettlementReportService.generate(**query.validated_data)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(SettlementReportSerializer(report).data)
