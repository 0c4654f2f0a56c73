from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
Identifier = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class OrderStatus(str, Enum):
    AWAITING_PAYMENT = 'awaiting_payment'
    CREATING_ART = 'creating_art'
    PRODUCTION = 'production'
    SHIPPING = 'shipping'
    DELIVERED = 'delivered'


class QuoteStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    CONVERTED = 'converted'


class LedgerEntryType(str, Enum):
    INCOME = 'income'
    EXPENSE = 'expense'


class TrackingStatus(str, Enum):
    PENDING = 'pending'
    IN_TRANSIT = 'in_transit'
    OUT_FOR_DELIVERY = 'out_for_delivery'
    DELIVERED = 'delivered'


class DocumentSequence(Base):
    __tablename__ = 'document_sequences'

    prefix: Mapped[str] = mapped_column(String(16), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Quote(Base):
    __tablename__ = 'quotes'
    __table_args__ = (
        UniqueConstraint('number', name='quotes_number_key'),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    client_id: Mapped[int | None] = mapped_column(BigInteger)
    client_name: Mapped[str] = mapped_column(Text, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    discount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[QuoteStatus] = mapped_column(
        SQLEnum(QuoteStatus, name='quote_status', values_callable=_enum_values),
        nullable=False,
        default=QuoteStatus.PENDING,
        server_default='pending',
    )
    valid_until: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('number', name='orders_number_key'),
        CheckConstraint('total >= 0', name='orders_total_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    quote_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('quotes.id', ondelete='SET NULL'))
    client_id: Mapped[int | None] = mapped_column(BigInteger)
    client_name: Mapped[str] = mapped_column(Text, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    discount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status', values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.AWAITING_PAYMENT,
        server_default='awaiting_payment',
    )
    revenue_added: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    income_entry_id: Mapped[int | None] = mapped_column(BigInteger)
    production_expense_entry_id: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(Text)
    reference_link: Mapped[str | None] = mapped_column(Text)
    scheduled_date: Mapped[date | None] = mapped_column(Date)
    delivery_address: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class LineItem(Base):
    __tablename__ = 'quote_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='quote_items_positive_quantity_ck'),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    quote_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('quotes.id', ondelete='CASCADE'))
    order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'))
    product_id: Mapped[int | None] = mapped_column(BigInteger)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)


class LedgerEntry(Base):
    __tablename__ = 'transactions'
    __table_args__ = (
        CheckConstraint('amount >= 0', name='transactions_non_negative_amount_ck'),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        'type',
        SQLEnum(LedgerEntryType, name='transaction_type', values_callable=_enum_values),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    entry_date: Mapped[date] = mapped_column('date', Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='SET NULL'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderTracking(Base):
    __tablename__ = 'order_trackings'
    __table_args__ = (
        UniqueConstraint('order_id', name='order_trackings_order_id_key'),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='SET NULL'))
    order_number: Mapped[str | None] = mapped_column(String(32))
    client_name: Mapped[str] = mapped_column(Text, nullable=False)
    tracking_code: Mapped[str] = mapped_column(String(64), nullable=False)
    carrier: Mapped[str] = mapped_column(Text, nullable=False, default='correios', server_default='correios')
    status: Mapped[TrackingStatus] = mapped_column(
        SQLEnum(TrackingStatus, name='tracking_status', values_callable=_enum_values),
        nullable=False,
        default=TrackingStatus.PENDING,
        server_default='pending',
    )
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    estimated_delivery: Mapped[date | None] = mapped_column(Date)
    last_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    actor: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
