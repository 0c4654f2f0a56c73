from __future__ import annotations

import unittest
from dataclasses import replace
from decimal import Decimal

from app.board.store import (
    BoardCard,
    BoardState,
    OptimisticBoard,
    RefreshReceived,
    TransitionConfirmed,
    TransitionFailed,
    TransitionStarted,
    columns,
    reduce,
)
from app.errors import TransitionInFlightError
from app.models import OrderStatus


def _card(order_id: int, status: OrderStatus = OrderStatus.AWAITING_PAYMENT, **kwargs) -> BoardCard:
    return BoardCard(
        id=order_id,
        number=f'PED{order_id:05d}',
        client_name=f'Client {order_id}',
        total=Decimal('100.00'),
        status=status,
        **kwargs,
    )


class BoardReducerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.state = BoardState(cards=(_card(1), _card(2, OrderStatus.CREATING_ART)))

    def test_start_moves_card_and_remembers_original(self) -> None:
        state = reduce(self.state, TransitionStarted(order_id=1, to_status=OrderStatus.PRODUCTION))
        self.assertEqual(state.card(1).status, OrderStatus.PRODUCTION)
        self.assertTrue(state.is_in_flight(1))
        self.assertEqual(state.originals[1].status, OrderStatus.AWAITING_PAYMENT)
        # The previous state value is untouched.
        self.assertEqual(self.state.card(1).status, OrderStatus.AWAITING_PAYMENT)

    def test_second_start_for_same_order_is_rejected(self) -> None:
        state = reduce(self.state, TransitionStarted(order_id=1, to_status=OrderStatus.PRODUCTION))
        with self.assertRaises(TransitionInFlightError):
            reduce(state, TransitionStarted(order_id=1, to_status=OrderStatus.SHIPPING))

    def test_start_for_unknown_order_is_rejected(self) -> None:
        with self.assertRaises(LookupError):
            reduce(self.state, TransitionStarted(order_id=99, to_status=OrderStatus.SHIPPING))

    def test_confirm_applies_server_card(self) -> None:
        state = reduce(self.state, TransitionStarted(order_id=1, to_status=OrderStatus.PRODUCTION))
        server = _card(1, OrderStatus.PRODUCTION, revenue_added=True)
        state = reduce(state, TransitionConfirmed(order_id=1, card=server))
        self.assertEqual(state.card(1), server)
        self.assertFalse(state.is_in_flight(1))
        self.assertNotIn(1, state.originals)

    def test_failure_restores_original(self) -> None:
        state = reduce(self.state, TransitionStarted(order_id=1, to_status=OrderStatus.PRODUCTION))
        state = reduce(state, TransitionFailed(order_id=1))
        self.assertEqual(state.card(1), _card(1))
        self.assertFalse(state.in_flight)

    def test_late_settlement_is_ignored(self) -> None:
        self.assertIs(reduce(self.state, TransitionFailed(order_id=1)), self.state)
        self.assertIs(reduce(self.state, TransitionConfirmed(order_id=1)), self.state)

    def test_refresh_replaces_everything_when_idle(self) -> None:
        fresh = (_card(3, OrderStatus.DELIVERED),)
        state = reduce(self.state, RefreshReceived(cards=fresh))
        self.assertEqual(state.cards, fresh)

    def test_refresh_keeps_in_flight_card(self) -> None:
        state = reduce(self.state, TransitionStarted(order_id=1, to_status=OrderStatus.PRODUCTION))
        stale = (_card(2, OrderStatus.SHIPPING), _card(1))
        state = reduce(state, RefreshReceived(cards=stale))

        self.assertEqual([card.id for card in state.cards], [2, 1])
        self.assertEqual(state.card(1).status, OrderStatus.PRODUCTION)
        self.assertEqual(state.card(2).status, OrderStatus.SHIPPING)

        # A failure after the refresh still rolls back to the pre-move card.
        state = reduce(state, TransitionFailed(order_id=1))
        self.assertEqual(state.card(1).status, OrderStatus.AWAITING_PAYMENT)

    def test_refresh_missing_in_flight_card_keeps_it(self) -> None:
        state = reduce(self.state, TransitionStarted(order_id=1, to_status=OrderStatus.PRODUCTION))
        state = reduce(state, RefreshReceived(cards=(_card(2),)))
        self.assertEqual([card.id for card in state.cards], [2, 1])

    def test_unknown_event(self) -> None:
        with self.assertRaises(TypeError):
            reduce(self.state, object())


class OptimisticBoardTests(unittest.TestCase):
    def test_columns_follow_pipeline_order(self) -> None:
        board = OptimisticBoard([_card(1), _card(2, OrderStatus.DELIVERED), _card(3)])
        grouped = board.columns()
        self.assertEqual(list(grouped), list(OrderStatus))
        self.assertEqual([card.id for card in grouped[OrderStatus.AWAITING_PAYMENT]], [1, 3])
        self.assertEqual(grouped[OrderStatus.SHIPPING], [])

    def test_dispatch_updates_state(self) -> None:
        board = OptimisticBoard([_card(1)])
        board.dispatch(TransitionStarted(order_id=1, to_status=OrderStatus.SHIPPING))
        self.assertEqual(board.card(1).status, OrderStatus.SHIPPING)
        self.assertEqual(columns(board.state)[OrderStatus.SHIPPING], [board.card(1)])

    def test_card_from_payload(self) -> None:
        card = BoardCard.from_payload(
            {'id': '5', 'number': 'PED00005', 'client_name': None, 'total': '12.5', 'status': 'shipping'}
        )
        self.assertEqual(card, replace(_card(5, OrderStatus.SHIPPING), client_name='', total=Decimal('12.5')))


if __name__ == '__main__':
    unittest.main()
