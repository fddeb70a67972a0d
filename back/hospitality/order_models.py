from datetime import datetime, timezone
from enum import Enum

from pydantic import StrictInt
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from .inventory_models import ProductType


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    fulfilled = "fulfilled"
    completed = "completed"
    cancelled = "cancelled"


class LineStatus(str, Enum):
    pending = "pending"
    processing = "processing"  # Being prepared / in service
    fulfilled = "fulfilled"    # Handed over, stock committed


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"
    refunded = "refunded"


class PaymentRecordStatus(str, Enum):
    completed = "completed"
    refunded = "refunded"


class DiscountType(str, Enum):
    percentage = "percentage"  # value is a whole percent
    fixed = "fixed"            # value is cents


class DiscountRule(SQLModel, table=True):
    __tablename__ = "discount_rule"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str
    discount_type: DiscountType
    value: int
    min_order_amount: int = Field(default=0)  # cents
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OrderHeader(SQLModel, table=True):
    __tablename__ = "order_header"

    id: int | None = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True)  # ORD-YYYYMMDD-XXXX
    # Client supplied key; a repeated create with the same key returns this order
    idempotency_key: str | None = Field(default=None, unique=True, index=True)
    customer_id: int = Field(foreign_key="customer.id", index=True)
    section_id: int | None = Field(default=None, foreign_key="department_section.id")
    status: OrderStatus = Field(default=OrderStatus.pending, index=True)
    payment_status: PaymentStatus = Field(default=PaymentStatus.unpaid, index=True)

    # Money in cents
    subtotal: int = Field(default=0)
    discount_total: int = Field(default=0)
    tax: int = Field(default=0)
    total: int = Field(default=0)

    notes: str | None = None
    cancel_reason: str | None = None
    cancelled_at: datetime | None = None
    created_by_id: int | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    lines: list["OrderLine"] = Relationship(back_populates="order")
    departments: list["OrderDepartment"] = Relationship(back_populates="order")
    payments: list["OrderPayment"] = Relationship(back_populates="order")
    discounts: list["OrderDiscount"] = Relationship(back_populates="order")
    fulfillments: list["OrderFulfillment"] = Relationship(back_populates="order")


class OrderLine(SQLModel, table=True):
    __tablename__ = "order_line"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order_header.id", index=True)
    line_number: int
    product_type: ProductType = Field(default=ProductType.inventory_item)
    product_id: int
    product_name: str  # Snapshot at order time
    department_code: str = Field(index=True)  # "restaurant" or "restaurant:main"
    department_id: int = Field(foreign_key="department.id")
    section_id: int | None = Field(default=None, foreign_key="department_section.id")
    quantity: int
    unit_price: int
    line_total: int
    status: LineStatus = Field(default=LineStatus.pending, index=True)
    status_updated_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    order: OrderHeader = Relationship(back_populates="lines")


class OrderDepartment(SQLModel, table=True):
    """Status rollup of an order's lines for one department or section."""
    __tablename__ = "order_department"
    __table_args__ = (UniqueConstraint("order_id", "department_code"),)

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order_header.id", index=True)
    department_code: str = Field(index=True)
    department_id: int = Field(foreign_key="department.id", index=True)
    section_id: int | None = Field(default=None, foreign_key="department_section.id")
    status: LineStatus = Field(default=LineStatus.pending, index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    order: OrderHeader = Relationship(back_populates="departments")


class OrderPayment(SQLModel, table=True):
    __tablename__ = "order_payment"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order_header.id", index=True)
    amount: int  # cents
    payment_method: str = Field(default="cash")
    transaction_reference: str | None = None
    status: PaymentRecordStatus = Field(default=PaymentRecordStatus.completed)
    recorded_by_id: int | None = Field(default=None, foreign_key="user.id")
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    order: OrderHeader = Relationship(back_populates="payments")


class OrderDiscount(SQLModel, table=True):
    __tablename__ = "order_discount"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order_header.id", index=True)
    discount_rule_id: int = Field(foreign_key="discount_rule.id")
    code: str
    discount_type: DiscountType
    amount: int  # cents actually deducted

    order: OrderHeader = Relationship(back_populates="discounts")


class OrderFulfillment(SQLModel, table=True):
    __tablename__ = "order_fulfillment"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order_header.id", index=True)
    order_line_id: int = Field(foreign_key="order_line.id", unique=True)
    quantity: int
    fulfilled_by_id: int | None = Field(default=None, foreign_key="user.id")
    fulfilled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    order: OrderHeader = Relationship(back_populates="fulfillments")


class OrderRefund(SQLModel, table=True):
    __tablename__ = "order_refund"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order_header.id", index=True)
    amount: int  # cents
    reason: str | None = None
    refunded_by_id: int | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============ REQUEST / RESPONSE MODELS ============

class OrderItemCreate(SQLModel):
    product_id: int
    quantity: StrictInt
    department_code: str
    unit_price: StrictInt
    product_type: ProductType = ProductType.inventory_item


class PaymentCreate(SQLModel):
    amount: StrictInt
    payment_method: str = "cash"
    transaction_reference: str | None = None
    is_deferred: bool = False  # Take payment later; order stays pending


class OrderCreate(SQLModel):
    customer_id: int | None = None
    section_id: int | None = None
    items: list[OrderItemCreate]
    discounts: list[str] | None = None  # Discount codes
    notes: str | None = None
    payment: PaymentCreate | None = None


class OrderStatusUpdate(SQLModel):
    status: str


class OrderLineStatusUpdate(SQLModel):
    status: str


class OrderCancel(SQLModel):
    reason: str | None = None


class OrderRefundRequest(SQLModel):
    reason: str | None = None


class DiscountApply(SQLModel):
    code: str


class DiscountRuleCreate(SQLModel):
    code: str
    name: str
    discount_type: DiscountType
    value: StrictInt
    min_order_amount: StrictInt = 0
