"""
Payment Service

Records payments against orders and derives the order's payment status
from the sum of completed payments. The gateway itself is a PaymentProcessor
seam; the default accepts the payment as recorded at the desk.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlmodel import Session, select

from . import audit
from .errors import Conflict, DomainError, PaymentError, ValidationError
from .order_models import (
    OrderHeader,
    OrderPayment,
    OrderStatus,
    PaymentCreate,
    PaymentRecordStatus,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


class PaymentProcessor:
    """Charge the customer. Returns the transaction reference to store."""

    def process(self, order: OrderHeader, payment: PaymentCreate) -> str | None:
        return payment.transaction_reference


def derive_payment_status(paid: int, total: int) -> PaymentStatus:
    if paid == total:
        return PaymentStatus.paid
    if 0 < paid < total:
        return PaymentStatus.partial
    return PaymentStatus.unpaid


def paid_amount(session: Session, order_id: int) -> int:
    statement = select(func.coalesce(func.sum(OrderPayment.amount), 0)).where(
        OrderPayment.order_id == order_id,
        OrderPayment.status == PaymentRecordStatus.completed,
    )
    return int(session.exec(statement).one())


class PaymentRecorder:
    def __init__(
        self,
        session: Session,
        processor: PaymentProcessor | None = None,
        actor_id: int | None = None,
    ):
        self.session = session
        self.processor = processor or PaymentProcessor()
        self.actor_id = actor_id

    def apply(self, order: OrderHeader, payment: PaymentCreate) -> OrderPayment:
        """
        Record a payment inside the caller's transaction and derive the payment
        status. The order status is left to the order engine.
        """
        if isinstance(payment.amount, bool) or payment.amount <= 0:
            raise ValidationError("Payment amount must be a positive integer")
        if order.status == OrderStatus.cancelled:
            raise Conflict("Cannot record a payment on a cancelled order")
        if order.payment_status == PaymentStatus.refunded:
            raise Conflict("Cannot record a payment on a refunded order")

        already_paid = paid_amount(self.session, order.id)
        if already_paid + payment.amount > order.total:
            raise ValidationError(
                f"Payment of {payment.amount} exceeds outstanding balance "
                f"{order.total - already_paid}"
            )

        try:
            reference = self.processor.process(order, payment)
        except DomainError:
            raise
        except Exception as e:
            logger.error(f"Payment processing failed for order {order.id}: {e}", exc_info=True)
            raise PaymentError("Payment processing failed") from e

        record = OrderPayment(
            order_id=order.id,
            amount=payment.amount,
            payment_method=payment.payment_method,
            transaction_reference=reference,
            recorded_by_id=self.actor_id,
        )
        self.session.add(record)

        order.payment_status = derive_payment_status(already_paid + payment.amount, order.total)
        order.updated_at = datetime.now(timezone.utc)
        self.session.add(order)
        self.session.flush()

        audit.record(
            self.session,
            "payment.record",
            "order",
            order.id,
            user_id=self.actor_id,
            changes={
                "amount": payment.amount,
                "payment_method": payment.payment_method,
                "payment_status": order.payment_status.value,
            },
        )
        return record

