from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models import LedgerEntryType, OrderStatus, QuoteStatus, TrackingStatus


class LineItemIn(BaseModel):
    product_name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    product_id: int | None = None


class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int | None
    product_name: str
    quantity: int
    unit_price: Decimal
    total: Decimal


class OrderCreateIn(BaseModel):
    client_name: str
    client_id: int | None = None
    items: list[LineItemIn] = Field(default_factory=list)
    discount: Decimal = Decimal('0')
    notes: str | None = None
    reference_link: str | None = None
    scheduled_date: date | None = None
    delivery_address: dict | None = None


class OrderUpdateIn(BaseModel):
    model_config = ConfigDict(extra='forbid')

    client_name: str | None = None
    client_id: int | None = None
    discount: Decimal | None = None
    notes: str | None = None
    reference_link: str | None = None
    scheduled_date: date | None = None
    delivery_address: dict | None = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    number: str
    quote_id: int | None
    status: OrderStatus
    client_id: int | None
    client_name: str
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    revenue_added: bool
    notes: str | None
    reference_link: str | None
    scheduled_date: date | None
    created_at: datetime | None
    updated_at: datetime | None
    completed_at: datetime | None


class BoardColumnOut(BaseModel):
    status: OrderStatus
    orders: list[OrderOut]


class QuoteCreateIn(BaseModel):
    client_name: str
    client_id: int | None = None
    items: list[LineItemIn] = Field(default_factory=list)
    discount: Decimal = Decimal('0')
    notes: str | None = None
    valid_until: date | None = None


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    number: str
    client_id: int | None
    client_name: str
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    notes: str | None
    status: QuoteStatus
    valid_until: date | None


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entry_type: LedgerEntryType = Field(serialization_alias='type')
    amount: Decimal
    category: str
    description: str
    entry_date: date = Field(serialization_alias='date')
    notes: str | None
    order_id: int | None


class AuditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor: str | None
    action: str
    ip: str | None
    meta: dict = Field(serialization_alias='metadata')
    created_at: datetime | None


class LedgerSummaryOut(BaseModel):
    income: Decimal
    expense: Decimal
    balance: Decimal


class TrackingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int | None
    order_number: str | None
    client_name: str
    tracking_code: str
    carrier: str
    status: TrackingStatus
    events: list
    estimated_delivery: date | None
    last_update: datetime | None


class TransitionIn(BaseModel):
    to_status: str
    from_status: str | None = None
    expense_amount: Decimal | str | None = None
    reference_link: str | None = None
    tracking_code: str | None = None
    estimated_delivery: date | None = None
    skip_tracking: bool = False


class TransitionPlanOut(BaseModel):
    from_status: OrderStatus
    to_status: OrderStatus
    revenue_action: str
    expense_action: str
    creates_tracking: bool
    required_collection: str | None
    is_noop: bool


class TransitionOut(BaseModel):
    order: OrderOut
    plan: TransitionPlanOut
    changed: bool
    income_entry: LedgerEntryOut | None = None
    expense_entry: LedgerEntryOut | None = None
    tracking: TrackingOut | None = None
    tracking_error: str | None = None
