"""
Payments app: settlement of coaching payments.

Money comes in as Stripe charges (Payment), Stripe's processing fee is
attached by the fee reconciliation job, and the payout orchestrator moves
the coach's share to their Stripe Connect account once the payout delay
has elapsed. Refunds claw money back according to a refund policy.

Related apps:
    - authentication: payers and coaches
    - notifications: payout and refund notifications

Usage:
    from payments.services import PaymentLedgerService, PayoutOrchestrator, RefundService

    PaymentLedgerService.mark_completed(payment.id)
    PayoutOrchestrator.run_batch()
    RefundService.process_refund(payment.id, Decimal("50.00"), "requested_by_customer")
"""
