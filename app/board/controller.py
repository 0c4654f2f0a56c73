from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Union

from app.board.gateway import OrderGateway
from app.board.store import (
    BoardCard,
    OptimisticBoard,
    RefreshReceived,
    TransitionConfirmed,
    TransitionFailed as TransitionFailedEvent,
    TransitionStarted,
)
from app.errors import PersistenceError, TransitionInFlightError, ValidationError
from app.models import OrderStatus
from app.services.transition_rules import (
    CollectionKind,
    TransitionInput,
    parse_status,
    plan_transition,
    validate_transition_input,
)
from app.services.transition_service import STATUS_UPDATE_FAILED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpenseDetails:
    amount: Decimal | str
    reference_link: str | None = None


@dataclass(frozen=True)
class TrackingDetails:
    code: str | None = None
    estimated_delivery: date | None = None
    skipped: bool = False


CollectedDetails = Union[ExpenseDetails, TrackingDetails]
# Returns None when the user cancels the collection step.
Collector = Callable[[CollectionKind, BoardCard], Awaitable[CollectedDetails | None]]


@dataclass(frozen=True)
class TransitionSucceeded:
    order_id: int
    final_status: OrderStatus


@dataclass(frozen=True)
class TransitionFailed:
    order_id: int
    reason: str


@dataclass(frozen=True)
class CollectionRequired:
    kind: CollectionKind
    order_id: int


Notification = Union[TransitionSucceeded, TransitionFailed, CollectionRequired]


class OutcomeKind(str, Enum):
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    INVALID = 'invalid'
    REJECTED = 'rejected'
    NOOP = 'noop'


@dataclass(frozen=True)
class TransitionOutcome:
    kind: OutcomeKind
    order_id: int
    status: OrderStatus | None
    reason: str | None = None
    tracking_created: bool = False
    tracking_error: str | None = None


def _input_from_details(kind: CollectionKind | None, details: CollectedDetails | None) -> TransitionInput:
    if kind == CollectionKind.EXPENSE:
        if not isinstance(details, ExpenseDetails):
            raise ValidationError('Expense amount is required')
        return TransitionInput(expense_amount=details.amount, reference_link=details.reference_link)
    if kind == CollectionKind.TRACKING:
        if not isinstance(details, TrackingDetails):
            raise ValidationError('Tracking code is required unless tracking is skipped')
        if details.skipped:
            return TransitionInput(skip_tracking=True)
        return TransitionInput(tracking_code=details.code, estimated_delivery=details.estimated_delivery)
    return TransitionInput()


class BoardController:
    """Drives drag-and-drop moves on the order board.

    A move is planned from the card's current state, may pause on the
    collector for extra data, is applied optimistically to the view store,
    and is then settled by the gateway's answer: confirmed on success,
    snapped back on failure.
    """

    def __init__(self, gateway: OrderGateway, collector: Collector, board: OptimisticBoard | None = None) -> None:
        self.gateway = gateway
        self.collector = collector
        self.board = board or OptimisticBoard()
        self._listeners: list[Callable[[Notification], None]] = []

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception('Board listener failed on %r', notification)

    def _fail(self, kind: OutcomeKind, card: BoardCard, reason: str) -> TransitionOutcome:
        self._emit(TransitionFailed(order_id=card.id, reason=reason))
        return TransitionOutcome(kind=kind, order_id=card.id, status=card.status, reason=reason)

    async def refresh(self) -> None:
        try:
            cards = await self.gateway.list_orders()
        except PersistenceError as exc:
            logger.warning('Board refresh failed: %s', exc)
            return
        self.board.dispatch(RefreshReceived(cards=tuple(cards)))

    async def on_drop(self, order_id: int, from_status: str, to_status: str) -> TransitionOutcome:
        card = self.board.card(order_id)
        if card is None:
            reason = f'Order {order_id} is not on the board'
            self._emit(TransitionFailed(order_id=order_id, reason=reason))
            return TransitionOutcome(kind=OutcomeKind.INVALID, order_id=order_id, status=None, reason=reason)
        try:
            reported = parse_status(from_status)
        except ValidationError as exc:
            return self._fail(OutcomeKind.INVALID, card, str(exc))
        if reported != card.status:
            # The server compares against what the user saw and answers 409 if it moved on.
            logger.info('Drop for order %s reported %s but the board has %s', card.number, reported.value, card.status.value)
        return await self.attempt_transition(card, to_status, expected_status=reported)

    async def attempt_transition(
        self,
        card: BoardCard,
        new_status: OrderStatus | str,
        *,
        expected_status: OrderStatus | None = None,
    ) -> TransitionOutcome:
        try:
            target = parse_status(new_status)
        except ValidationError as exc:
            return self._fail(OutcomeKind.INVALID, card, str(exc))

        if target == card.status:
            return TransitionOutcome(kind=OutcomeKind.NOOP, order_id=card.id, status=card.status)
        if self.board.state.is_in_flight(card.id):
            return self._fail(OutcomeKind.REJECTED, card, str(TransitionInFlightError(card.id)))

        plan = plan_transition(card.status, target, revenue_added=card.revenue_added)
        kind = plan.required_collection
        details = None
        if kind is not None:
            self._emit(CollectionRequired(kind=kind, order_id=card.id))
            details = await self.collector(kind, card)
            if details is None:
                logger.info('Move of order %s to %s cancelled at the %s step', card.number, target.value, kind.value)
                return TransitionOutcome(kind=OutcomeKind.CANCELLED, order_id=card.id, status=card.status)

        try:
            data = validate_transition_input(plan, _input_from_details(kind, details))
        except ValidationError as exc:
            return self._fail(OutcomeKind.INVALID, card, str(exc))

        # The collector may have awaited for a while; re-check before starting.
        try:
            self.board.dispatch(TransitionStarted(order_id=card.id, to_status=target))
        except (TransitionInFlightError, LookupError) as exc:
            return self._fail(OutcomeKind.REJECTED, card, str(exc))

        try:
            receipt = await self.gateway.commit_transition(
                card.id,
                from_status=expected_status or card.status,
                to_status=target,
                data=data,
            )
        except PersistenceError as exc:
            self.board.dispatch(TransitionFailedEvent(order_id=card.id))
            logger.warning('Move of order %s to %s failed: %s', card.number, target.value, exc)
            return self._fail(OutcomeKind.FAILED, card, str(exc) or STATUS_UPDATE_FAILED)
        except Exception:
            self.board.dispatch(TransitionFailedEvent(order_id=card.id))
            logger.exception('Move of order %s to %s failed unexpectedly', card.number, target.value)
            return self._fail(OutcomeKind.FAILED, card, STATUS_UPDATE_FAILED)

        self.board.dispatch(TransitionConfirmed(order_id=card.id, card=receipt.card))
        self._emit(TransitionSucceeded(order_id=card.id, final_status=receipt.card.status))
        return TransitionOutcome(
            kind=OutcomeKind.SUCCEEDED,
            order_id=card.id,
            status=receipt.card.status,
            tracking_created=receipt.tracking_created,
            tracking_error=receipt.tracking_error,
        )
