"""Optimistic view of the order board.

`reduce` is a pure function over immutable `BoardState` values; the board
controller drives it through `OptimisticBoard`, which only holds the
current state.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Union

from app.errors import TransitionInFlightError
from app.models import OrderStatus
from app.services.transition_rules import ORDER_PIPELINE, parse_status


@dataclass(frozen=True)
class BoardCard:
    id: int
    number: str
    client_name: str
    total: Decimal
    status: OrderStatus
    revenue_added: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping) -> BoardCard:
        return cls(
            id=int(payload['id']),
            number=str(payload['number']),
            client_name=str(payload.get('client_name') or ''),
            total=Decimal(str(payload.get('total') or '0')),
            status=parse_status(payload['status']),
            revenue_added=bool(payload.get('revenue_added')),
        )

    @classmethod
    def from_order(cls, order) -> BoardCard:
        return cls(
            id=order.id,
            number=order.number,
            client_name=order.client_name,
            total=order.total,
            status=order.status,
            revenue_added=order.revenue_added,
        )


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class BoardState:
    cards: tuple[BoardCard, ...] = ()
    in_flight: frozenset[int] = frozenset()
    # pre-transition card per in-flight order id
    originals: Mapping[int, BoardCard] = field(default_factory=lambda: _frozen({}))

    def card(self, order_id: int) -> BoardCard | None:
        for card in self.cards:
            if card.id == order_id:
                return card
        return None

    def is_in_flight(self, order_id: int) -> bool:
        return order_id in self.in_flight


@dataclass(frozen=True)
class TransitionStarted:
    order_id: int
    to_status: OrderStatus


@dataclass(frozen=True)
class TransitionConfirmed:
    order_id: int
    card: BoardCard | None = None


@dataclass(frozen=True)
class TransitionFailed:
    order_id: int


@dataclass(frozen=True)
class RefreshReceived:
    cards: tuple[BoardCard, ...]


BoardEvent = Union[TransitionStarted, TransitionConfirmed, TransitionFailed, RefreshReceived]


def _replace_card(cards: tuple[BoardCard, ...], new_card: BoardCard) -> tuple[BoardCard, ...]:
    return tuple(new_card if card.id == new_card.id else card for card in cards)


def _start(state: BoardState, event: TransitionStarted) -> BoardState:
    if event.order_id in state.in_flight:
        raise TransitionInFlightError(event.order_id)
    current = state.card(event.order_id)
    if current is None:
        raise LookupError(f'Order {event.order_id} is not on the board')
    moved = replace(current, status=parse_status(event.to_status))
    return BoardState(
        cards=_replace_card(state.cards, moved),
        in_flight=state.in_flight | {event.order_id},
        originals=_frozen({**state.originals, event.order_id: current}),
    )


def _settle(state: BoardState, order_id: int, card: BoardCard | None) -> BoardState:
    originals = {key: value for key, value in state.originals.items() if key != order_id}
    cards = _replace_card(state.cards, card) if card is not None else state.cards
    return BoardState(
        cards=cards,
        in_flight=state.in_flight - {order_id},
        originals=_frozen(originals),
    )


def _refresh(state: BoardState, event: RefreshReceived) -> BoardState:
    if not state.in_flight:
        return BoardState(cards=tuple(event.cards))

    # Never clobber an optimistic value whose write has not resolved yet.
    refreshed_ids = set()
    cards = []
    for card in event.cards:
        refreshed_ids.add(card.id)
        if card.id in state.in_flight:
            cards.append(state.card(card.id) or card)
        else:
            cards.append(card)
    for order_id in sorted(state.in_flight - refreshed_ids):
        pending = state.card(order_id)
        if pending is not None:
            cards.append(pending)
    return replace(state, cards=tuple(cards))


def reduce(state: BoardState, event: BoardEvent) -> BoardState:
    if isinstance(event, TransitionStarted):
        return _start(state, event)
    if isinstance(event, TransitionConfirmed):
        if event.order_id not in state.in_flight:
            return state
        return _settle(state, event.order_id, event.card)
    if isinstance(event, TransitionFailed):
        if event.order_id not in state.in_flight:
            return state
        return _settle(state, event.order_id, state.originals.get(event.order_id))
    if isinstance(event, RefreshReceived):
        return _refresh(state, event)
    raise TypeError(f'Unsupported board event: {event!r}')


def columns(state: BoardState) -> dict[OrderStatus, list[BoardCard]]:
    grouped: dict[OrderStatus, list[BoardCard]] = {status: [] for status in ORDER_PIPELINE}
    for card in state.cards:
        grouped[card.status].append(card)
    return grouped


class OptimisticBoard:
    def __init__(self, cards: list[BoardCard] | tuple[BoardCard, ...] = ()) -> None:
        self.state = BoardState(cards=tuple(cards))

    def dispatch(self, event: BoardEvent) -> BoardState:
        self.state = reduce(self.state, event)
        return self.state

    def card(self, order_id: int) -> BoardCard | None:
        return self.state.card(order_id)

    def columns(self) -> dict[OrderStatus, list[BoardCard]]:
        return columns(self.state)
