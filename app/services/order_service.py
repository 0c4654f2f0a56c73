from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import OrderNotFoundError, ValidationError
from app.models import LineItem, Order, OrderStatus, Quote, QuoteStatus
from app.services.numbering_service import insert_with_number

URL_PATTERN = re.compile(r'https?://[^\s<>"]+', re.IGNORECASE)

# Workflow fields are owned by the transition service.
EDITABLE_ORDER_FIELDS = {
    'client_id',
    'client_name',
    'discount',
    'notes',
    'reference_link',
    'scheduled_date',
    'delivery_address',
}


@dataclass(frozen=True)
class LineItemInput:
    product_name: str
    quantity: int
    unit_price: Decimal
    product_id: int | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value, *, field: str) -> Decimal:
    try:
        amount = Decimal(str(value if value is not None else '0'))
    except InvalidOperation as exc:
        raise ValidationError(f'Invalid {field}') from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f'{field} cannot be negative')
    return amount.quantize(Decimal('0.01'))


def _clean_items(items: list[LineItemInput]) -> list[LineItemInput]:
    cleaned = []
    for item in items:
        name = (item.product_name or '').strip()
        if not name:
            raise ValidationError('Product name is required')
        if item.quantity is None or int(item.quantity) <= 0:
            raise ValidationError(f'Quantity for {name} must be at least 1')
        cleaned.append(
            LineItemInput(
                product_name=name,
                quantity=int(item.quantity),
                unit_price=_money(item.unit_price, field='Unit price'),
                product_id=item.product_id,
            )
        )
    return cleaned


def _totals(items: list[LineItemInput], discount: Decimal) -> tuple[Decimal, Decimal]:
    subtotal = sum((item.unit_price * item.quantity for item in items), Decimal('0.00'))
    if discount > subtotal:
        raise ValidationError('Discount cannot exceed the subtotal')
    return subtotal.quantize(Decimal('0.01')), (subtotal - discount).quantize(Decimal('0.01'))


def _add_items(db: Session, items: list[LineItemInput], *, quote_id: int | None = None, order_id: int | None = None) -> None:
    db.add_all(
        [
            LineItem(
                quote_id=quote_id,
                order_id=order_id,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total=(item.unit_price * item.quantity).quantize(Decimal('0.01')),
            )
            for item in items
        ]
    )


def extract_reference_link(notes: str | None) -> str | None:
    match = URL_PATTERN.search(notes or '')
    if not match:
        return None
    return match.group(0).rstrip('.,;)')


def order_reference_link(order: Order) -> str | None:
    return order.reference_link or extract_reference_link(order.notes)


def get_order(db: Session, *, order_id: int) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(f'Order {order_id} not found')
    return order


def list_orders(db: Session, *, status: OrderStatus | None = None, limit: int = 500) -> list[Order]:
    query = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
    if status is not None:
        query = query.where(Order.status == status)
    return db.execute(query).scalars().all()


def list_order_items(db: Session, *, order_id: int) -> list[LineItem]:
    return db.execute(select(LineItem).where(LineItem.order_id == order_id).order_by(LineItem.id.asc())).scalars().all()


def list_quotes(db: Session, *, status: QuoteStatus | None = None, limit: int = 500) -> list[Quote]:
    query = select(Quote).order_by(Quote.created_at.desc(), Quote.id.desc()).limit(limit)
    if status is not None:
        query = query.where(Quote.status == status)
    return db.execute(query).scalars().all()


def create_order(
    db: Session,
    *,
    client_name: str,
    items: list[LineItemInput],
    client_id: int | None = None,
    discount: Decimal | str | None = None,
    notes: str | None = None,
    reference_link: str | None = None,
    scheduled_date: date | None = None,
    delivery_address: dict | None = None,
    quote_id: int | None = None,
) -> Order:
    name = (client_name or '').strip()
    if not name:
        raise ValidationError('Client name is required')
    clean_items = _clean_items(items)
    clean_discount = _money(discount, field='Discount')
    subtotal, total = _totals(clean_items, clean_discount)

    order = insert_with_number(
        db,
        settings.order_number_prefix,
        lambda number: Order(
            number=number,
            quote_id=quote_id,
            client_id=client_id,
            client_name=name,
            subtotal=subtotal,
            discount=clean_discount,
            total=total,
            status=OrderStatus.AWAITING_PAYMENT,
            revenue_added=False,
            notes=(notes or '').strip() or None,
            reference_link=(reference_link or '').strip() or None,
            scheduled_date=scheduled_date,
            delivery_address=delivery_address,
        ),
    )
    _add_items(db, clean_items, order_id=order.id)
    db.flush()
    return order


def create_quote(
    db: Session,
    *,
    client_name: str,
    items: list[LineItemInput],
    client_id: int | None = None,
    discount: Decimal | str | None = None,
    notes: str | None = None,
    valid_until: date | None = None,
) -> Quote:
    name = (client_name or '').strip()
    if not name:
        raise ValidationError('Client name is required')
    clean_items = _clean_items(items)
    clean_discount = _money(discount, field='Discount')
    subtotal, total = _totals(clean_items, clean_discount)

    quote = insert_with_number(
        db,
        settings.quote_number_prefix,
        lambda number: Quote(
            number=number,
            client_id=client_id,
            client_name=name,
            subtotal=subtotal,
            discount=clean_discount,
            total=total,
            notes=(notes or '').strip() or None,
            status=QuoteStatus.PENDING,
            valid_until=valid_until,
        ),
    )
    _add_items(db, clean_items, quote_id=quote.id)
    db.flush()
    return quote


def convert_quote_to_order(db: Session, *, quote_id: int) -> Order:
    quote = db.execute(select(Quote).where(Quote.id == quote_id).with_for_update()).scalar_one_or_none()
    if quote is None:
        raise LookupError(f'Quote {quote_id} not found')
    if quote.status == QuoteStatus.CONVERTED:
        raise ValidationError(f'Quote {quote.number} was already converted')
    if quote.status == QuoteStatus.REJECTED:
        raise ValidationError(f'Quote {quote.number} was rejected')

    quote_items = db.execute(
        select(LineItem).where(LineItem.quote_id == quote.id).order_by(LineItem.id.asc())
    ).scalars().all()
    order = insert_with_number(
        db,
        settings.order_number_prefix,
        lambda number: Order(
            number=number,
            quote_id=quote.id,
            client_id=quote.client_id,
            client_name=quote.client_name,
            subtotal=quote.subtotal,
            discount=quote.discount,
            total=quote.total,
            status=OrderStatus.AWAITING_PAYMENT,
            revenue_added=False,
            notes=quote.notes,
        ),
    )
    _add_items(
        db,
        [
            LineItemInput(
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                product_id=item.product_id,
            )
            for item in quote_items
        ],
        order_id=order.id,
    )
    quote.status = QuoteStatus.CONVERTED
    quote.updated_at = _now()
    db.flush()
    return order


def update_order(db: Session, *, order_id: int, changes: dict) -> Order:
    forbidden = set(changes) - EDITABLE_ORDER_FIELDS
    if forbidden:
        raise ValidationError(f'Cannot edit {", ".join(sorted(forbidden))} directly')

    order = get_order(db, order_id=order_id)
    if 'client_name' in changes:
        name = (changes['client_name'] or '').strip()
        if not name:
            raise ValidationError('Client name is required')
        order.client_name = name
    if 'discount' in changes:
        discount = _money(changes['discount'], field='Discount')
        if discount > order.subtotal:
            raise ValidationError('Discount cannot exceed the subtotal')
        if order.revenue_added and discount != order.discount:
            raise ValidationError('Move the order back to awaiting payment before changing its total')
        order.discount = discount
        order.total = (order.subtotal - discount).quantize(Decimal('0.01'))
    for field in ('notes', 'reference_link'):
        if field in changes:
            setattr(order, field, (changes[field] or '').strip() or None)
    for field in ('client_id', 'scheduled_date', 'delivery_address'):
        if field in changes:
            setattr(order, field, changes[field])
    order.updated_at = _now()
    db.flush()
    return order
