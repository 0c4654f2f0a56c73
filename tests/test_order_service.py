from __future__ import annotations

import unittest
from decimal import Decimal

from app.db import create_db_engine, create_session_factory
from app.errors import OrderNotFoundError, ValidationError
from app.models import Base, OrderStatus, QuoteStatus
from app.services.ledger_service import apply_revenue_action
from app.services.order_service import (
    LineItemInput,
    convert_quote_to_order,
    create_order,
    create_quote,
    extract_reference_link,
    get_order,
    list_order_items,
    list_orders,
    order_reference_link,
    update_order,
)
from app.services.transition_rules import RevenueAction


class ReferenceLinkTests(unittest.TestCase):
    def test_extracts_first_url_from_notes(self) -> None:
        notes = 'Cliente pediu ajuste. Arte: https://drive.example.com/file/123, revisar cores.'
        self.assertEqual(extract_reference_link(notes), 'https://drive.example.com/file/123')

    def test_no_url(self) -> None:
        self.assertIsNone(extract_reference_link('sem link'))
        self.assertIsNone(extract_reference_link(None))


class OrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        self.Session = create_session_factory(self.engine)
        self.db = self.Session()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _items(self) -> list[LineItemInput]:
        return [
            LineItemInput(product_name='Caneca', quantity=10, unit_price=Decimal('18.50')),
            LineItemInput(product_name=' Arte ', quantity=1, unit_price=Decimal('65')),
        ]

    def test_create_order_computes_totals(self) -> None:
        order = create_order(self.db, client_name=' Maria ', items=self._items(), discount='10')
        self.assertEqual(order.client_name, 'Maria')
        self.assertEqual(order.subtotal, Decimal('250.00'))
        self.assertEqual(order.total, Decimal('240.00'))
        self.assertEqual(order.status, OrderStatus.AWAITING_PAYMENT)
        self.assertFalse(order.revenue_added)
        items = list_order_items(self.db, order_id=order.id)
        self.assertEqual([item.product_name for item in items], ['Caneca', 'Arte'])
        self.assertEqual(items[0].total, Decimal('185.00'))

    def test_create_order_validates_input(self) -> None:
        with self.assertRaises(ValidationError):
            create_order(self.db, client_name='  ', items=self._items())
        with self.assertRaises(ValidationError):
            create_order(self.db, client_name='Maria', items=[LineItemInput('Caneca', 0, Decimal('1'))])
        with self.assertRaises(ValidationError):
            create_order(self.db, client_name='Maria', items=self._items(), discount='999')

    def test_convert_quote_copies_items_once(self) -> None:
        quote = create_quote(self.db, client_name='Pedro', items=self._items())
        order = convert_quote_to_order(self.db, quote_id=quote.id)

        self.assertEqual(order.quote_id, quote.id)
        self.assertEqual(order.total, quote.total)
        self.assertEqual(len(list_order_items(self.db, order_id=order.id)), 2)
        self.assertEqual(quote.status, QuoteStatus.CONVERTED)

        with self.assertRaises(ValidationError):
            convert_quote_to_order(self.db, quote_id=quote.id)
        with self.assertRaises(LookupError):
            convert_quote_to_order(self.db, quote_id=999)

    def test_update_order_rejects_workflow_fields(self) -> None:
        order = create_order(self.db, client_name='Maria', items=self._items())
        for field in ('status', 'revenue_added', 'total'):
            with self.assertRaises(ValidationError):
                update_order(self.db, order_id=order.id, changes={field: 'x'})

    def test_update_order_recomputes_total(self) -> None:
        order = create_order(self.db, client_name='Maria', items=self._items())
        updated = update_order(
            self.db,
            order_id=order.id,
            changes={'discount': '50', 'notes': 'ver https://example.com/arte'},
        )
        self.assertEqual(updated.total, Decimal('200.00'))
        self.assertEqual(order_reference_link(updated), 'https://example.com/arte')

    def test_discount_is_locked_once_revenue_is_recognized(self) -> None:
        order = create_order(self.db, client_name='Maria', items=self._items())
        apply_revenue_action(self.db, order, RevenueAction.ADD)
        with self.assertRaises(ValidationError):
            update_order(self.db, order_id=order.id, changes={'discount': '5'})
        update_order(self.db, order_id=order.id, changes={'client_name': 'Maria Silva'})
        self.assertEqual(order.client_name, 'Maria Silva')

    def test_get_and_list_orders(self) -> None:
        first = create_order(self.db, client_name='Ana', items=self._items())
        second = create_order(self.db, client_name='Bia', items=self._items())
        second.status = OrderStatus.SHIPPING
        self.db.flush()

        self.assertEqual(get_order(self.db, order_id=first.id).number, first.number)
        with self.assertRaises(OrderNotFoundError):
            get_order(self.db, order_id=999)
        shipping = list_orders(self.db, status=OrderStatus.SHIPPING)
        self.assertEqual([order.id for order in shipping], [second.id])


if __name__ == '__main__':
    unittest.main()
