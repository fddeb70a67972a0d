"""
Order API Routes

- Order creation with optional synchronous payment
- Header and line status updates
- Payments, discounts, cancellation and refunds
- Department dashboards
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, status
from sqlmodel import Session, select

from . import models
from .db import get_session, unit_of_work
from .errors import Conflict, ValidationError
from .events import publish_order_update
from .order_models import (
    DiscountApply,
    DiscountRule,
    DiscountRuleCreate,
    DiscountType,
    LineStatus,
    OrderCancel,
    OrderCreate,
    OrderDepartment,
    OrderDiscount,
    OrderHeader,
    OrderLineStatusUpdate,
    OrderPayment,
    OrderRefundRequest,
    OrderStatus,
    OrderStatusUpdate,
    PaymentCreate,
)
from .order_service import OrderEngine
from .payment_service import PaymentProcessor
from .permissions import Permissions
from .security import PermissionChecker
from .settings import settings

router = APIRouter()


def get_payment_processor() -> PaymentProcessor:
    return PaymentProcessor()


def order_to_dict(session: Session, engine: OrderEngine, order: OrderHeader) -> dict:
    lines = engine.lines(order.id)
    departments = session.exec(
        select(OrderDepartment).where(OrderDepartment.order_id == order.id).order_by(OrderDepartment.id)
    ).all()
    payments = session.exec(
        select(OrderPayment).where(OrderPayment.order_id == order.id).order_by(OrderPayment.id)
    ).all()
    discounts = session.exec(
        select(OrderDiscount).where(OrderDiscount.order_id == order.id).order_by(OrderDiscount.id)
    ).all()

    return {
        "id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "section_id": order.section_id,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "subtotal": order.subtotal,
        "discount_total": order.discount_total,
        "tax": order.tax,
        "total": order.total,
        "currency": settings.currency,
        "notes": order.notes,
        "cancel_reason": order.cancel_reason,
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat(),
        "lines": [
            {
                "id": line.id,
                "line_number": line.line_number,
                "product_type": line.product_type.value,
                "product_id": line.product_id,
                "product_name": line.product_name,
                "department_code": line.department_code,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "line_total": line.line_total,
                "status": line.status.value,
            }
            for line in lines
        ],
        "departments": [
            {"department_code": d.department_code, "status": d.status.value} for d in departments
        ],
        "payments": [
            {
                "id": p.id,
                "amount": p.amount,
                "payment_method": p.payment_method,
                "transaction_reference": p.transaction_reference,
                "status": p.status.value,
                "processed_at": p.processed_at.isoformat(),
            }
            for p in payments
        ],
        "discounts": [{"code": d.code, "amount": d.amount} for d in discounts],
    }


def _publish(order_data: dict) -> None:
    publish_order_update(
        {"type": "order_updated", **order_data},
        sorted({line["department_code"] for line in order_data["lines"]}),
    )


# ============ ORDERS ============

@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(
    order_create: OrderCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_CREATE))],
    processor: Annotated[PaymentProcessor, Depends(get_payment_processor)],
    session: Session = Depends(get_session),
    idempotency_key: Annotated[str | None, Header()] = None,
):
    """Create an order, reserving stock for every line."""
    engine = OrderEngine(session, current_user.id, processor)
    order = engine.create_order(order_create, idempotency_key=idempotency_key)
    data = order_to_dict(session, engine, order)
    _publish(data)
    return data


@router.get("/orders")
def list_orders(
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_READ))],
    session: Session = Depends(get_session),
    status: OrderStatus | None = None,
    customer_id: int | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    engine = OrderEngine(session, current_user.id)
    orders = engine.list_orders(status=status, customer_id=customer_id, page=page, limit=limit)
    return [order_to_dict(session, engine, order) for order in orders]


@router.get("/orders/{order_id}")
def get_order(
    order_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_READ))],
    session: Session = Depends(get_session),
):
    engine = OrderEngine(session, current_user.id)
    return order_to_dict(session, engine, engine.get_order(order_id))


@router.put("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    status_update: OrderStatusUpdate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_UPDATE))],
    session: Session = Depends(get_session),
):
    engine = OrderEngine(session, current_user.id)
    order = engine.update_order_status(order_id, status_update.status)
    data = order_to_dict(session, engine, order)
    _publish(data)
    return data


@router.put("/orders/{order_id}/lines/{line_id}/status")
def update_line_status(
    order_id: int,
    line_id: int,
    status_update: OrderLineStatusUpdate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_UPDATE))],
    session: Session = Depends(get_session),
):
    engine = OrderEngine(session, current_user.id)
    order = engine.update_line_status(order_id, line_id, status_update.status)
    data = order_to_dict(session, engine, order)
    _publish(data)
    return data


@router.post("/orders/{order_id}/payments")
def record_payment(
    order_id: int,
    payment: PaymentCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_PAY))],
    processor: Annotated[PaymentProcessor, Depends(get_payment_processor)],
    session: Session = Depends(get_session),
):
    engine = OrderEngine(session, current_user.id, processor)
    order = engine.record_payment(order_id, payment)
    data = order_to_dict(session, engine, order)
    _publish(data)
    return data


@router.post("/orders/{order_id}/discounts")
def apply_discount(
    order_id: int,
    discount: DiscountApply,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_UPDATE))],
    session: Session = Depends(get_session),
):
    engine = OrderEngine(session, current_user.id)
    return order_to_dict(session, engine, engine.apply_discount(order_id, discount.code))


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_CANCEL))],
    session: Session = Depends(get_session),
    cancel: OrderCancel | None = None,
):
    """Cancel a pending order and release its reservations."""
    engine = OrderEngine(session, current_user.id)
    order = engine.cancel_order(order_id, cancel.reason if cancel else None)
    data = order_to_dict(session, engine, order)
    _publish(data)
    return data


@router.post("/orders/{order_id}/refund")
def refund_order(
    order_id: int,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_REFUND))],
    session: Session = Depends(get_session),
    refund: OrderRefundRequest | None = None,
):
    engine = OrderEngine(session, current_user.id)
    order = engine.record_refund(order_id, refund.reason if refund else None)
    data = order_to_dict(session, engine, order)
    _publish(data)
    return data


@router.get("/departments/{code}/orders")
def list_department_orders(
    code: str,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.ORDERS_READ))],
    session: Session = Depends(get_session),
    status: LineStatus | None = None,
):
    """Orders touching a department or section (`dept:slug`)."""
    engine = OrderEngine(session, current_user.id)
    return [order_to_dict(session, engine, o) for o in engine.list_for_department(code, status)]


# ============ DISCOUNT RULES ============

@router.post("/discount-rules", response_model=DiscountRule, status_code=status.HTTP_201_CREATED)
def create_discount_rule(
    rule_create: DiscountRuleCreate,
    current_user: Annotated[models.User, Depends(PermissionChecker(Permissions.DISCOUNTS_MANAGE))],
    session: Session = Depends(get_session),
):
    code = rule_create.code.strip().upper()
    if not code:
        raise ValidationError("Discount code is required")
    if rule_create.discount_type == DiscountType.percentage and not 0 < rule_create.value <= 100:
        raise ValidationError("Percentage discounts must be between 1 and 100")
    if rule_create.value < 0 or rule_create.min_order_amount < 0:
        raise ValidationError("Discount amounts cannot be negative")
    with unit_of_work(session):
        if session.exec(select(DiscountRule).where(DiscountRule.code == code)).first():
            raise Conflict(f"Discount code {code} already exists")
        rule = DiscountRule(
            code=code,
            name=rule_create.name,
            discount_type=rule_create.discount_type,
            value=rule_create.value,
            min_order_amount=rule_create.min_order_amount,
        )
        session.add(rule)
    session.refresh(rule)
    return rule
