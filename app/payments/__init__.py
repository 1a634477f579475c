"""
Payments app: multi-processor payment orchestration and settlement.

This app handles:
- Per-business processor configuration (Stripe, Razorpay, PhonePe, Paytm)
- Payment creation with deterministic processor fallback
- Signed webhook ingestion driving payment state
- Full and partial refunds through the capturing processor
- Settlement of captured payments into payouts per schedule

Usage:
    from payments.services import OrderInfo, PaymentOrchestrator

    result = PaymentOrchestrator().create_payment(order, business_id=business_id)

    from payments.services import SettlementService

    payout = SettlementService.run_schedule(business_id, processor_id)
"""
