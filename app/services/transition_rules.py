"""Side-effect rules for moving an order between pipeline columns.

Everything here is pure: the server uses it to apply a transition and the
board uses it to decide which collection step to show before committing.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from app.errors import ValidationError
from app.models import OrderStatus

ORDER_PIPELINE: tuple[OrderStatus, ...] = (
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.CREATING_ART,
    OrderStatus.PRODUCTION,
    OrderStatus.SHIPPING,
    OrderStatus.DELIVERED,
)


class RevenueAction(str, Enum):
    NONE = 'none'
    ADD = 'add'
    REMOVE = 'remove'


class ExpenseAction(str, Enum):
    NONE = 'none'
    ADD = 'add'
    REMOVE = 'remove'


class CollectionKind(str, Enum):
    EXPENSE = 'expense'
    TRACKING = 'tracking'


@dataclass(frozen=True)
class TransitionPlan:
    from_status: OrderStatus
    to_status: OrderStatus
    revenue_action: RevenueAction
    expense_action: ExpenseAction
    creates_tracking: bool

    @property
    def is_noop(self) -> bool:
        return self.from_status == self.to_status

    @property
    def required_collection(self) -> CollectionKind | None:
        if self.expense_action == ExpenseAction.ADD:
            return CollectionKind.EXPENSE
        if self.creates_tracking:
            return CollectionKind.TRACKING
        return None


@dataclass(frozen=True)
class TransitionInput:
    expense_amount: Decimal | None = None
    reference_link: str | None = None
    tracking_code: str | None = None
    estimated_delivery: date | None = None
    skip_tracking: bool = False


def parse_status(value: OrderStatus | str) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f'Invalid order status: {value!r}') from exc


def parse_amount(value: Decimal | str | int | float | None, *, field: str = 'Expense amount') -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'{field} is required')
    try:
        amount = Decimal(str(value).strip().replace(',', '.'))
    except InvalidOperation as exc:
        raise ValidationError(f'{field} must be a number') from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f'{field} must be greater than zero')
    return amount.quantize(Decimal('0.01'))


def derive_revenue_action(from_status: OrderStatus, to_status: OrderStatus, *, revenue_added: bool) -> RevenueAction:
    if from_status == OrderStatus.AWAITING_PAYMENT and to_status != OrderStatus.AWAITING_PAYMENT and not revenue_added:
        return RevenueAction.ADD
    if to_status == OrderStatus.AWAITING_PAYMENT and from_status != OrderStatus.AWAITING_PAYMENT and revenue_added:
        return RevenueAction.REMOVE
    return RevenueAction.NONE


def derive_expense_action(from_status: OrderStatus, to_status: OrderStatus) -> ExpenseAction:
    if to_status == OrderStatus.PRODUCTION and from_status != OrderStatus.PRODUCTION:
        return ExpenseAction.ADD
    if from_status == OrderStatus.PRODUCTION and to_status == OrderStatus.CREATING_ART:
        return ExpenseAction.REMOVE
    return ExpenseAction.NONE


def plan_transition(
    from_status: OrderStatus | str,
    to_status: OrderStatus | str,
    *,
    revenue_added: bool,
) -> TransitionPlan:
    current = parse_status(from_status)
    target = parse_status(to_status)
    if current == target:
        return TransitionPlan(current, target, RevenueAction.NONE, ExpenseAction.NONE, False)
    return TransitionPlan(
        from_status=current,
        to_status=target,
        revenue_action=derive_revenue_action(current, target, revenue_added=revenue_added),
        expense_action=derive_expense_action(current, target),
        creates_tracking=target == OrderStatus.SHIPPING,
    )


def normalize_tracking_code(code: str | None) -> str:
    return ''.join((code or '').split()).upper()


def validate_transition_input(plan: TransitionPlan, data: TransitionInput) -> TransitionInput:
    """Return `data` with normalized values, or raise ValidationError."""
    expense_amount = data.expense_amount
    reference_link = (data.reference_link or '').strip() or None
    tracking_code = data.tracking_code
    skip_tracking = data.skip_tracking

    if plan.expense_action == ExpenseAction.ADD:
        expense_amount = parse_amount(expense_amount)
    else:
        expense_amount = None
        reference_link = None

    if plan.creates_tracking:
        tracking_code = normalize_tracking_code(tracking_code)
        if not tracking_code and not skip_tracking:
            raise ValidationError('Tracking code is required unless tracking is skipped')
        if skip_tracking:
            tracking_code = None
    else:
        tracking_code = None
        skip_tracking = False

    return TransitionInput(
        expense_amount=expense_amount,
        reference_link=reference_link,
        tracking_code=tracking_code or None,
        estimated_delivery=data.estimated_delivery if tracking_code else None,
        skip_tracking=skip_tracking,
    )
