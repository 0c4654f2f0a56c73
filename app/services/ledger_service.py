from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import LedgerEntry, LedgerEntryType, Order
from app.services.transition_rules import ExpenseAction, RevenueAction, parse_amount

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _delete_linked_entry(db: Session, *, entry_id: int | None, order: Order, label: str) -> LedgerEntry | None:
    if entry_id is None:
        logger.info('Order %s has no linked %s entry to remove', order.number, label)
        return None
    entry = db.execute(select(LedgerEntry).where(LedgerEntry.id == entry_id)).scalar_one_or_none()
    if entry is None:
        logger.warning('Linked %s entry %s for order %s no longer exists', label, entry_id, order.number)
        return None
    db.delete(entry)
    db.flush()
    logger.info('Removed %s entry %s (%s) for order %s', label, entry.id, entry.amount, order.number)
    return entry


def apply_revenue_action(
    db: Session,
    order: Order,
    action: RevenueAction,
    *,
    on_date: date | None = None,
) -> LedgerEntry | None:
    """Recognize or retract revenue for `order`.

    Returns the income entry that was created or deleted, or None when nothing
    changed. `revenue_added` is re-checked here so a replayed `add` is harmless.
    """
    if action == RevenueAction.NONE:
        return None

    if action == RevenueAction.ADD:
        if order.revenue_added:
            logger.info('Revenue already recognized for order %s; skipping', order.number)
            return None
        entry = LedgerEntry(
            entry_type=LedgerEntryType.INCOME,
            amount=order.total,
            category=settings.sales_category,
            description=f'Pedido {order.number} - {order.client_name}',
            entry_date=on_date or _now().date(),
            order_id=order.id,
        )
        db.add(entry)
        db.flush()
        order.income_entry_id = entry.id
        order.revenue_added = True
        order.updated_at = _now()
        db.flush()
        logger.info('Recognized revenue %s for order %s (entry %s)', entry.amount, order.number, entry.id)
        return entry

    if not order.revenue_added:
        logger.info('Revenue not recognized for order %s; nothing to remove', order.number)
        return None
    removed = _delete_linked_entry(db, entry_id=order.income_entry_id, order=order, label='income')
    order.income_entry_id = None
    order.revenue_added = False
    order.updated_at = _now()
    db.flush()
    return removed


def apply_expense_action(
    db: Session,
    order: Order,
    action: ExpenseAction,
    *,
    amount: Decimal | str | None = None,
    reference_link: str | None = None,
    on_date: date | None = None,
) -> LedgerEntry | None:
    if action == ExpenseAction.NONE:
        return None

    if action == ExpenseAction.ADD:
        value = parse_amount(amount)
        link = (reference_link or '').strip() or None
        entry = LedgerEntry(
            entry_type=LedgerEntryType.EXPENSE,
            amount=value,
            category=settings.production_category,
            description=f'Produção {order.number} - {order.client_name}',
            entry_date=on_date or _now().date(),
            notes=link,
            order_id=order.id,
        )
        db.add(entry)
        db.flush()
        order.production_expense_entry_id = entry.id
        if link:
            order.reference_link = link
        order.updated_at = _now()
        db.flush()
        logger.info('Recorded production expense %s for order %s (entry %s)', value, order.number, entry.id)
        return entry

    removed = _delete_linked_entry(
        db,
        entry_id=order.production_expense_entry_id,
        order=order,
        label='production expense',
    )
    order.production_expense_entry_id = None
    order.updated_at = _now()
    db.flush()
    return removed


def list_entries(
    db: Session,
    *,
    order_id: int | None = None,
    entry_type: LedgerEntryType | None = None,
    limit: int = 500,
) -> list[LedgerEntry]:
    query = select(LedgerEntry).order_by(LedgerEntry.entry_date.desc(), LedgerEntry.id.desc()).limit(limit)
    if order_id is not None:
        query = query.where(LedgerEntry.order_id == order_id)
    if entry_type is not None:
        query = query.where(LedgerEntry.entry_type == entry_type)
    return db.execute(query).scalars().all()


def ledger_summary(db: Session, *, from_date: date | None = None, to_date: date | None = None) -> dict:
    query = select(LedgerEntry.entry_type, func.coalesce(func.sum(LedgerEntry.amount), 0)).group_by(
        LedgerEntry.entry_type
    )
    if from_date is not None:
        query = query.where(LedgerEntry.entry_date >= from_date)
    if to_date is not None:
        query = query.where(LedgerEntry.entry_date <= to_date)
    totals = {entry_type: Decimal(str(total)) for entry_type, total in db.execute(query).all()}
    income = totals.get(LedgerEntryType.INCOME, Decimal('0')).quantize(Decimal('0.01'))
    expense = totals.get(LedgerEntryType.EXPENSE, Decimal('0')).quantize(Decimal('0.01'))
    return {
        'income': income,
        'expense': expense,
        'balance': income - expense,
    }
