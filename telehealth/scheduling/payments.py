import logging
from typing import Protocol

from telehealth.scheduling.refund_policy import RefundDecision

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    def request_refund(self, appointment_id: str, amount: int, refund_percentage: int) -> None:
        ...


class LoggingPaymentProcessor:
    """Records refund requests for the payments team when no processor is wired in."""

    def request_refund(self, appointment_id: str, amount: int, refund_percentage: int) -> None:
        logger.info(
            'Refund requested for appointment %s: %s%% of %s',
            appointment_id,
            refund_percentage,
            amount,
        )


def hand_off_refund(processor: PaymentProcessor, appointment_id: str, amount: int, refund: RefundDecision) -> bool:
    """Pass a cancellation refund to the payment processor.

    Late cancellations carry no automatic refund and are left for manual
    adjudication. Returns whether the processor was called.
    """
    if refund.requires_manual_review:
        logger.warning(
            'Appointment %s cancelled %.1f hours before start; refund needs manual review.',
            appointment_id,
            refund.hours_until_start,
        )
        return False

    if amount <= 0:
        return False

    processor.request_refund(appointment_id, amount, refund.percentage)
    return True
