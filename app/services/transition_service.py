from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import OrderNotFoundError, PersistenceError, TransitionConflictError, ValidationError
from app.models import LedgerEntry, Order, OrderStatus, OrderTracking
from app.services.audit_service import log_audit
from app.services.ledger_service import apply_expense_action, apply_revenue_action
from app.services.tracking_service import create_tracking
from app.services.transition_rules import (
    ExpenseAction,
    RevenueAction,
    TransitionInput,
    TransitionPlan,
    parse_status,
    plan_transition,
    validate_transition_input,
)

logger = logging.getLogger(__name__)

STATUS_UPDATE_FAILED = 'Could not update order status'


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    plan: TransitionPlan
    income_entry: LedgerEntry | None = None
    expense_entry: LedgerEntry | None = None
    tracking: OrderTracking | None = None
    tracking_error: str | None = None

    @property
    def changed(self) -> bool:
        return not self.plan.is_noop


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _lock_order(db: Session, order_id: int) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(f'Order {order_id} not found')
    return order


def preview_transition(db: Session, *, order_id: int, to_status: OrderStatus | str) -> TransitionPlan:
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(f'Order {order_id} not found')
    return plan_transition(order.status, to_status, revenue_added=order.revenue_added)


def _create_tracking_best_effort(db: Session, order: Order, data: TransitionInput) -> tuple[OrderTracking | None, str | None]:
    try:
        with db.begin_nested():
            tracking = create_tracking(
                db,
                order,
                code=data.tracking_code or '',
                estimated_delivery=data.estimated_delivery,
            )
    except (SQLAlchemyError, ValidationError) as exc:
        logger.warning('Tracking for order %s was not created: %s', order.number, exc)
        return None, 'Order status updated, but the tracking record could not be created'
    return tracking, None


def transition_order(
    db: Session,
    *,
    order_id: int,
    to_status: OrderStatus | str,
    data: TransitionInput | None = None,
    expected_status: OrderStatus | str | None = None,
    actor: str | None = None,
    ip: str | None = None,
) -> TransitionResult:
    """Move an order to `to_status` and apply every implied side effect.

    Status, revenue and production expense changes share the caller's
    database transaction, so the caller's commit makes them visible together
    and a rollback discards them together. Tracking creation runs in its own
    savepoint and may fail without blocking the status change.

    Raises ValidationError, OrderNotFoundError or TransitionConflictError
    before anything is written, and PersistenceError if a write fails.
    """
    target = parse_status(to_status)
    expected = parse_status(expected_status) if expected_status is not None else None
    order = _lock_order(db, order_id)

    if expected is not None and order.status != expected:
        raise TransitionConflictError(
            order_id=order.id,
            expected_status=expected.value,
            actual_status=order.status.value,
        )

    plan = plan_transition(order.status, target, revenue_added=order.revenue_added)
    if plan.is_noop:
        return TransitionResult(order=order, plan=plan)

    clean = validate_transition_input(plan, data or TransitionInput())

    try:
        income_entry = apply_revenue_action(db, order, plan.revenue_action)
        expense_entry = apply_expense_action(
            db,
            order,
            plan.expense_action,
            amount=clean.expense_amount,
            reference_link=clean.reference_link,
        )
        order.status = target
        if target == OrderStatus.DELIVERED:
            order.completed_at = _now()
        elif plan.from_status == OrderStatus.DELIVERED:
            order.completed_at = None
        order.updated_at = _now()
        db.flush()
    except SQLAlchemyError as exc:
        logger.exception('Status change %s -> %s failed for order %s', plan.from_status.value, target.value, order_id)
        raise PersistenceError(STATUS_UPDATE_FAILED) from exc

    tracking = None
    tracking_error = None
    if plan.creates_tracking and clean.tracking_code:
        tracking, tracking_error = _create_tracking_best_effort(db, order, clean)

    log_audit(
        db,
        actor=actor,
        action='ORDER_STATUS_CHANGED',
        order_id=order.id,
        ip=ip,
        metadata={
            'order_number': order.number,
            'from_status': plan.from_status.value,
            'to_status': target.value,
            'revenue_action': plan.revenue_action.value,
            'expense_action': plan.expense_action.value,
            'income_entry_id': income_entry.id if income_entry and plan.revenue_action == RevenueAction.ADD else None,
            'expense_entry_id': (
                expense_entry.id if expense_entry and plan.expense_action == ExpenseAction.ADD else None
            ),
            'tracking_id': tracking.id if tracking else None,
            'tracking_skipped': bool(plan.creates_tracking and clean.skip_tracking),
        },
    )
    logger.info(
        'Order %s moved %s -> %s (revenue=%s, expense=%s)',
        order.number,
        plan.from_status.value,
        target.value,
        plan.revenue_action.value,
        plan.expense_action.value,
    )
    return TransitionResult(
        order=order,
        plan=plan,
        income_entry=income_entry,
        expense_entry=expense_entry,
        tracking=tracking,
        tracking_error=tracking_error,
    )
