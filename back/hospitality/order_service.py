"""
Order Service

The order engine:
- Multi-line, multi-department order creation with per-line stock reservation
- Totals (subtotal, discounts, tax) in integer cents
- Header and line status workflows with per-department rollups
- Cancellation (releases reservations) and refunds

Each public operation runs in a single transaction. A failed reservation or
a failed synchronous payment rolls back the whole order, guest customer and
reservations included.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import audit
from .catalog_service import ledger_for, resolve_sellable
from .db import unit_of_work
from .errors import Conflict, NotFound, ValidationError
from .models import Customer, DepartmentSection
from .order_models import (
    LineStatus,
    OrderCreate,
    OrderDepartment,
    OrderDiscount,
    OrderFulfillment,
    OrderHeader,
    OrderLine,
    OrderPayment,
    OrderRefund,
    OrderStatus,
    PaymentCreate,
    PaymentRecordStatus,
    PaymentStatus,
)
from .payment_service import PaymentProcessor, PaymentRecorder, derive_payment_status, paid_amount
from .pricing import compute_totals, line_total, resolve_discounts
from .scopes import resolve_scope, scope_from_ids
from .settings import settings

logger = logging.getLogger(__name__)


ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.pending: {OrderStatus.processing, OrderStatus.fulfilled, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.fulfilled},
    OrderStatus.fulfilled: {OrderStatus.completed},
    OrderStatus.completed: set(),
    OrderStatus.cancelled: set(),
}

LINE_TRANSITIONS: dict[LineStatus, set[LineStatus]] = {
    LineStatus.pending: {LineStatus.processing, LineStatus.fulfilled},
    LineStatus.processing: {LineStatus.fulfilled, LineStatus.pending},
    LineStatus.fulfilled: set(),
}


def rollup_status(statuses: list[LineStatus]) -> LineStatus:
    """Least complete status wins: pending, then processing, then fulfilled."""
    if any(s == LineStatus.pending for s in statuses):
        return LineStatus.pending
    if any(s == LineStatus.processing for s in statuses):
        return LineStatus.processing
    return LineStatus.fulfilled


def generate_order_number(session: Session) -> str:
    """Generate unique order number: ORD-YYYYMMDD-XXXX"""
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    prefix = f"ORD-{today}-"

    last_order = session.exec(
        select(OrderHeader)
        .where(OrderHeader.order_number.startswith(prefix))
        .order_by(OrderHeader.order_number.desc())
    ).first()

    if last_order:
        try:
            next_seq = int(last_order.order_number.split("-")[-1]) + 1
        except ValueError:
            next_seq = 1
    else:
        next_seq = 1

    return f"{prefix}{next_seq:04d}"


def _parse_enum(enum_cls, value: str, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {label} '{value}'. Must be one of: {', '.join(s.value for s in enum_cls)}"
        )


class OrderEngine:
    def __init__(
        self,
        session: Session,
        actor_id: int | None = None,
        payment_processor: PaymentProcessor | None = None,
    ):
        self.session = session
        self.actor_id = actor_id
        self.payments = PaymentRecorder(session, payment_processor, actor_id)

    # ============ LOOKUPS ============

    def get_order(self, order_id: int, lock: bool = False) -> OrderHeader:
        statement = select(OrderHeader).where(OrderHeader.id == order_id)
        if lock:
            statement = statement.with_for_update()
        order = self.session.exec(statement).first()
        if not order:
            raise NotFound(f"Order {order_id} not found")
        return order

    def lines(self, order_id: int) -> list[OrderLine]:
        return list(
            self.session.exec(
                select(OrderLine).where(OrderLine.order_id == order_id).order_by(OrderLine.line_number)
            ).all()
        )

    def list_orders(
        self,
        status: OrderStatus | None = None,
        customer_id: int | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[OrderHeader]:
        statement = select(OrderHeader)
        if status:
            statement = statement.where(OrderHeader.status == status)
        if customer_id:
            statement = statement.where(OrderHeader.customer_id == customer_id)
        statement = (
            statement.order_by(OrderHeader.created_at.desc(), OrderHeader.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def list_for_department(self, code: str, status: LineStatus | None = None) -> list[OrderHeader]:
        """Open orders touching a department or section, via their rollup rows."""
        scope = resolve_scope(self.session, code)
        statement = (
            select(OrderHeader)
            .join(OrderDepartment, OrderDepartment.order_id == OrderHeader.id)
            .where(OrderDepartment.department_code == scope.code)
            .where(OrderHeader.status != OrderStatus.cancelled)
        )
        if status:
            statement = statement.where(OrderDepartment.status == status)
        statement = statement.order_by(OrderHeader.created_at.desc(), OrderHeader.id.desc())
        return list(self.session.exec(statement).all())

    # ============ CREATE ============

    def create_order(self, payload: OrderCreate, idempotency_key: str | None = None) -> OrderHeader:
        if idempotency_key:
            existing = self._by_idempotency_key(idempotency_key)
            if existing:
                logger.info(f"Replayed order {existing.order_number} for key {idempotency_key}")
                return existing

        try:
            with unit_of_work(self.session):
                order = self._create(payload, idempotency_key)
                if payload.payment and not payload.payment.is_deferred:
                    self._apply_payment(order, payload.payment)
        except IntegrityError:
            # A concurrent request with the same key won the insert
            existing = self._by_idempotency_key(idempotency_key) if idempotency_key else None
            if existing:
                return existing
            raise

        self.session.refresh(order)
        logger.info(
            f"Created order {order.order_number}: total={order.total} "
            f"status={order.status.value} payment={order.payment_status.value}"
        )
        return order

    # ============ PAYMENTS ============

    def record_payment(self, order_id: int, payment: PaymentCreate) -> OrderHeader:
        with unit_of_work(self.session):
            order = self.get_order(order_id, lock=True)
            self._apply_payment(order, payment)

        self.session.refresh(order)
        return order

    def _apply_payment(self, order: OrderHeader, payment: PaymentCreate) -> None:
        self.payments.apply(order, payment)
        # Settling a pending order starts it like a manual move to processing
        if order.payment_status == PaymentStatus.paid and order.status == OrderStatus.pending:
            self._transition(order, OrderStatus.processing)

    def _by_idempotency_key(self, key: str) -> OrderHeader | None:
        return self.session.exec(
            select(OrderHeader).where(OrderHeader.idempotency_key == key)
        ).first()

    def _validate_items(self, payload: OrderCreate) -> None:
        if not payload.items:
            raise ValidationError("Order must contain at least one item")
        for index, item in enumerate(payload.items, start=1):
            if not item.department_code or not item.department_code.strip():
                raise ValidationError(f"Item {index}: department code is required")
            if item.quantity <= 0:
                raise ValidationError(f"Item {index}: quantity must be greater than zero")
            if item.unit_price < 0:
                raise ValidationError(f"Item {index}: unit price cannot be negative")

    def _resolve_customer(self, customer_id: int | None) -> Customer:
        if customer_id is not None:
            customer = self.session.get(Customer, customer_id)
            if not customer:
                raise NotFound(f"Customer {customer_id} not found")
            return customer

        timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        customer = Customer(
            first_name="Guest",
            last_name="Customer",
            email=f"guest+{timestamp}@local",
            phone=settings.guest_phone,
            is_guest=True,
        )
        self.session.add(customer)
        self.session.flush()
        return customer

    def _create(self, payload: OrderCreate, idempotency_key: str | None) -> OrderHeader:
        self._validate_items(payload)
        customer = self._resolve_customer(payload.customer_id)

        if payload.section_id is not None and not self.session.get(DepartmentSection, payload.section_id):
            raise NotFound(f"Section {payload.section_id} not found")

        # Reserve stock line by line; any failure aborts the whole transaction
        resolved = []
        for item in payload.items:
            scope = resolve_scope(self.session, item.department_code)
            sellable = resolve_sellable(self.session, item.product_type, item.product_id, scope)
            if sellable.reservable:
                ledger_for(self.session, item.product_type, self.actor_id).reserve(
                    scope, sellable.id, item.quantity
                )
            resolved.append((item, scope, sellable))

        subtotal = sum(line_total(item.quantity, item.unit_price) for item, _, _ in resolved)
        discounts = resolve_discounts(self.session, payload.discounts or [], subtotal)
        totals = compute_totals(subtotal, sum(d.amount for d in discounts))

        order = OrderHeader(
            order_number=generate_order_number(self.session),
            idempotency_key=idempotency_key,
            customer_id=customer.id,
            section_id=payload.section_id,
            subtotal=totals.subtotal,
            discount_total=totals.discount_total,
            tax=totals.tax,
            total=totals.total,
            notes=payload.notes,
            payment_status=derive_payment_status(0, totals.total),
            created_by_id=self.actor_id,
        )
        self.session.add(order)
        self.session.flush()

        for line_number, (item, scope, sellable) in enumerate(resolved, start=1):
            self.session.add(
                OrderLine(
                    order_id=order.id,
                    line_number=line_number,
                    product_type=item.product_type,
                    product_id=sellable.id,
                    product_name=sellable.name,
                    department_code=scope.code,
                    department_id=scope.department_id,
                    section_id=scope.section_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=line_total(item.quantity, item.unit_price),
                )
            )

        for discount in discounts:
            self.session.add(
                OrderDiscount(
                    order_id=order.id,
                    discount_rule_id=discount.rule.id,
                    code=discount.rule.code,
                    discount_type=discount.rule.discount_type,
                    amount=discount.amount,
                )
            )

        self.session.flush()
        self._refresh_departments(order)

        audit.record(
            self.session,
            "order.create",
            "order",
            order.id,
            user_id=self.actor_id,
            changes={"order_number": order.order_number, "total": order.total, "lines": len(resolved)},
        )
        return order

    # ============ STATUS ============

    def _refresh_departments(self, order: OrderHeader) -> None:
        """Recompute the per-department rollup rows from the order's lines."""
        by_code: dict[str, list[OrderLine]] = defaultdict(list)
        for line in self.lines(order.id):
            by_code[line.department_code].append(line)

        existing = {
            row.department_code: row
            for row in self.session.exec(
                select(OrderDepartment).where(OrderDepartment.order_id == order.id)
            ).all()
        }
        now = datetime.now(timezone.utc)
        for code, lines in by_code.items():
            status = rollup_status([line.status for line in lines])
            row = existing.get(code)
            if row is None:
                row = OrderDepartment(
                    order_id=order.id,
                    department_code=code,
                    department_id=lines[0].department_id,
                    section_id=lines[0].section_id,
                    status=status,
                )
            elif row.status != status:
                row.status = status
                row.updated_at = now
            self.session.add(row)
        self.session.flush()

    def _fulfill_line(self, order: OrderHeader, line: OrderLine) -> None:
        if line.status == LineStatus.fulfilled:
            raise Conflict(f"Line {line.line_number} of order {order.order_number} is already fulfilled")

        ledger = ledger_for(self.session, line.product_type, self.actor_id)
        if ledger is not None:
            scope = scope_from_ids(self.session, line.department_id, line.section_id)
            ledger.commit(scope, line.product_id, line.quantity, reference=f"order:{order.id}")

        now = datetime.now(timezone.utc)
        line.status = LineStatus.fulfilled
        line.status_updated_at = now
        self.session.add(line)
        self.session.add(
            OrderFulfillment(
                order_id=order.id,
                order_line_id=line.id,
                quantity=line.quantity,
                fulfilled_by_id=self.actor_id,
                fulfilled_at=now,
            )
        )

    def update_order_status(self, order_id: int, new_status: str, reason: str | None = None) -> OrderHeader:
        status = _parse_enum(OrderStatus, new_status, "order status")

        with unit_of_work(self.session):
            order = self.get_order(order_id, lock=True)
            if status == OrderStatus.cancelled:
                self._cancel(order, reason or "Cancelled via status update")
            else:
                self._transition(order, status)

        self.session.refresh(order)
        return order

    def _transition(self, order: OrderHeader, status: OrderStatus) -> None:
        previous = order.status
        if status not in ORDER_TRANSITIONS[previous]:
            raise Conflict(f"Cannot change order status from {previous.value} to {status.value}")

        now = datetime.now(timezone.utc)
        if status == OrderStatus.processing:
            for line in self.lines(order.id):
                if line.status == LineStatus.pending:
                    line.status = LineStatus.processing
                    line.status_updated_at = now
                    self.session.add(line)
        elif status == OrderStatus.fulfilled:
            for line in self.lines(order.id):
                if line.status != LineStatus.fulfilled:
                    self._fulfill_line(order, line)

        order.status = status
        order.updated_at = now
        self.session.add(order)
        self.session.flush()
        self._refresh_departments(order)

        audit.record(
            self.session,
            "order.status",
            "order",
            order.id,
            user_id=self.actor_id,
            changes={"from": previous.value, "to": status.value},
        )
        logger.info(f"Order {order.order_number} status {previous.value} -> {status.value}")

    def update_line_status(self, order_id: int, line_id: int, new_status: str) -> OrderHeader:
        status = _parse_enum(LineStatus, new_status, "line status")

        with unit_of_work(self.session):
            order = self.get_order(order_id, lock=True)
            if order.status in (OrderStatus.cancelled, OrderStatus.completed):
                raise Conflict(f"Order {order.order_number} is {order.status.value}")

            line = self.session.get(OrderLine, line_id)
            if not line or line.order_id != order.id:
                raise NotFound(f"Line {line_id} not found on order {order_id}")

            if line.status == LineStatus.fulfilled:
                raise Conflict(f"Line {line.line_number} of order {order.order_number} is already fulfilled")
            if status not in LINE_TRANSITIONS[line.status]:
                raise Conflict(f"Cannot change line status from {line.status.value} to {status.value}")

            if status == LineStatus.fulfilled:
                self._fulfill_line(order, line)
            else:
                line.status = status
                line.status_updated_at = datetime.now(timezone.utc)
                self.session.add(line)
            self.session.flush()

            statuses = [l.status for l in self.lines(order.id)]
            if all(s == LineStatus.fulfilled for s in statuses):
                order.status = OrderStatus.fulfilled
            elif order.status == OrderStatus.pending and status != LineStatus.pending:
                order.status = OrderStatus.processing
            order.updated_at = datetime.now(timezone.utc)
            self.session.add(order)
            self._refresh_departments(order)

        self.session.refresh(order)
        logger.info(f"Order {order.order_number} line {line_id} -> {status.value}")
        return order

    # ============ CANCEL / REFUND ============

    def cancel_order(self, order_id: int, reason: str | None = None) -> OrderHeader:
        with unit_of_work(self.session):
            order = self.get_order(order_id, lock=True)
            self._cancel(order, reason)
        self.session.refresh(order)
        logger.info(f"Cancelled order {order.order_number}")
        return order

    def _cancel(self, order: OrderHeader, reason: str | None) -> None:
        if order.status != OrderStatus.pending:
            raise Conflict(f"Only pending orders can be cancelled; order is {order.status.value}")

        for line in self.lines(order.id):
            if line.status == LineStatus.fulfilled:
                continue
            ledger = ledger_for(self.session, line.product_type, self.actor_id)
            if ledger is None:
                continue
            scope = scope_from_ids(self.session, line.department_id, line.section_id)
            ledger.release(scope, line.product_id, line.quantity)

        if paid_amount(self.session, order.id) > 0:
            self._refund_payments(order, reason or "Order cancelled")

        now = datetime.now(timezone.utc)
        order.status = OrderStatus.cancelled
        order.cancel_reason = reason
        order.cancelled_at = now
        order.updated_at = now
        self.session.add(order)
        self.session.flush()

        audit.record(
            self.session,
            "order.cancel",
            "order",
            order.id,
            user_id=self.actor_id,
            changes={"reason": reason},
        )

    def _refund_payments(self, order: OrderHeader, reason: str | None) -> int:
        amount = paid_amount(self.session, order.id)
        payments = self.session.exec(
            select(OrderPayment).where(
                OrderPayment.order_id == order.id,
                OrderPayment.status == PaymentRecordStatus.completed,
            )
        ).all()
        for payment in payments:
            payment.status = PaymentRecordStatus.refunded
            self.session.add(payment)

        self.session.add(
            OrderRefund(order_id=order.id, amount=amount, reason=reason, refunded_by_id=self.actor_id)
        )
        order.payment_status = PaymentStatus.refunded
        order.updated_at = datetime.now(timezone.utc)
        self.session.add(order)
        return amount

    def record_refund(self, order_id: int, reason: str | None = None) -> OrderHeader:
        with unit_of_work(self.session):
            order = self.get_order(order_id, lock=True)
            if order.status != OrderStatus.pending or order.payment_status not in (
                PaymentStatus.paid,
                PaymentStatus.partial,
            ):
                raise Conflict(
                    f"Order cannot be refunded (status {order.status.value}, "
                    f"payment {order.payment_status.value})"
                )
            amount = self._refund_payments(order, reason)
            audit.record(
                self.session,
                "order.refund",
                "order",
                order.id,
                user_id=self.actor_id,
                changes={"amount": amount, "reason": reason},
            )

        self.session.refresh(order)
        logger.info(f"Refunded {amount} on order {order.order_number}")
        return order

    # ============ DISCOUNTS ============

    def apply_discount(self, order_id: int, code: str) -> OrderHeader:
        """Add a discount code to a pending, unpaid order and recompute its totals."""
        with unit_of_work(self.session):
            order = self.get_order(order_id, lock=True)
            if order.status != OrderStatus.pending:
                raise Conflict("Discounts can only be applied to pending orders")
            if paid_amount(self.session, order.id) > 0 or order.payment_status == PaymentStatus.refunded:
                raise Conflict("Discounts cannot be applied after payment")

            applied_codes = set(
                self.session.exec(select(OrderDiscount.code).where(OrderDiscount.order_id == order.id)).all()
            )
            if code.strip().upper() in applied_codes:
                raise Conflict(f"Discount {code.strip().upper()} is already applied")

            (discount,) = resolve_discounts(
                self.session, [code], order.subtotal, already_applied=order.discount_total
            )
            self.session.add(
                OrderDiscount(
                    order_id=order.id,
                    discount_rule_id=discount.rule.id,
                    code=discount.rule.code,
                    discount_type=discount.rule.discount_type,
                    amount=discount.amount,
                )
            )
            totals = compute_totals(order.subtotal, order.discount_total + discount.amount)
            order.discount_total = totals.discount_total
            order.tax = totals.tax
            order.total = totals.total
            order.payment_status = derive_payment_status(0, totals.total)
            order.updated_at = datetime.now(timezone.utc)
            self.session.add(order)

            audit.record(
                self.session,
                "order.discount",
                "order",
                order.id,
                user_id=self.actor_id,
                changes={"code": discount.rule.code, "amount": discount.amount},
            )

        self.session.refresh(order)
        return order
