from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from app.db import create_db_engine, create_session_factory
from app.errors import ValidationError
from app.models import Base, LedgerEntry, LedgerEntryType, Order
from app.services.ledger_service import apply_expense_action, apply_revenue_action, ledger_summary, list_entries
from app.services.transition_rules import ExpenseAction, RevenueAction


class LedgerServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        self.Session = create_session_factory(self.engine)
        self.db = self.Session()
        self.order = Order(number='PED00007', client_name='Maria', subtotal=Decimal('250.00'), total=Decimal('250.00'))
        self.db.add(self.order)
        self.db.flush()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_add_revenue_creates_one_income_entry(self) -> None:
        entry = apply_revenue_action(self.db, self.order, RevenueAction.ADD, on_date=date(2026, 10, 1))
        self.assertIsNotNone(entry)
        self.assertEqual(entry.entry_type, LedgerEntryType.INCOME)
        self.assertEqual(entry.amount, Decimal('250.00'))
        self.assertEqual(entry.category, 'Vendas')
        self.assertEqual(entry.description, 'Pedido PED00007 - Maria')
        self.assertEqual(entry.order_id, self.order.id)
        self.assertTrue(self.order.revenue_added)
        self.assertEqual(self.order.income_entry_id, entry.id)

        # Replaying the add must not double count.
        self.assertIsNone(apply_revenue_action(self.db, self.order, RevenueAction.ADD))
        self.assertEqual(len(list_entries(self.db, order_id=self.order.id)), 1)

    def test_remove_revenue_deletes_the_linked_entry(self) -> None:
        apply_revenue_action(self.db, self.order, RevenueAction.ADD)
        removed = apply_revenue_action(self.db, self.order, RevenueAction.REMOVE)
        self.assertIsNotNone(removed)
        self.assertFalse(self.order.revenue_added)
        self.assertIsNone(self.order.income_entry_id)
        self.assertEqual(list_entries(self.db, order_id=self.order.id, entry_type=LedgerEntryType.INCOME), [])

    def test_remove_without_revenue_is_harmless(self) -> None:
        self.assertIsNone(apply_revenue_action(self.db, self.order, RevenueAction.REMOVE))
        self.assertFalse(self.order.revenue_added)

    def test_zero_total_order_records_zero_income(self) -> None:
        self.order.total = Decimal('0.00')
        entry = apply_revenue_action(self.db, self.order, RevenueAction.ADD)
        self.assertEqual(entry.amount, Decimal('0.00'))

    def test_add_expense_links_entry_and_reference(self) -> None:
        entry = apply_expense_action(
            self.db,
            self.order,
            ExpenseAction.ADD,
            amount='80',
            reference_link='https://example.com/art.png',
        )
        self.assertEqual(entry.entry_type, LedgerEntryType.EXPENSE)
        self.assertEqual(entry.amount, Decimal('80.00'))
        self.assertEqual(entry.category, 'Produção')
        self.assertEqual(entry.notes, 'https://example.com/art.png')
        self.assertEqual(self.order.production_expense_entry_id, entry.id)
        self.assertEqual(self.order.reference_link, 'https://example.com/art.png')

    def test_add_expense_rejects_bad_amount(self) -> None:
        with self.assertRaises(ValidationError):
            apply_expense_action(self.db, self.order, ExpenseAction.ADD, amount='0')
        self.assertEqual(list_entries(self.db, order_id=self.order.id), [])

    def test_remove_expense_deletes_only_the_linked_entry(self) -> None:
        first = apply_expense_action(self.db, self.order, ExpenseAction.ADD, amount='50')
        first_id = first.id
        # Re-entering production records a new expense; the old one stays as history.
        second = apply_expense_action(self.db, self.order, ExpenseAction.ADD, amount='30')
        apply_expense_action(self.db, self.order, ExpenseAction.REMOVE)

        remaining = list_entries(self.db, order_id=self.order.id, entry_type=LedgerEntryType.EXPENSE)
        self.assertEqual([entry.id for entry in remaining], [first_id])
        self.assertNotEqual(second.id, first_id)
        self.assertIsNone(self.order.production_expense_entry_id)

    def test_summary_balances_income_and_expense(self) -> None:
        apply_revenue_action(self.db, self.order, RevenueAction.ADD, on_date=date(2026, 10, 1))
        apply_expense_action(self.db, self.order, ExpenseAction.ADD, amount='80', on_date=date(2026, 10, 2))
        self.db.add(
            LedgerEntry(
                entry_type=LedgerEntryType.EXPENSE,
                amount=Decimal('20.00'),
                category='Outros',
                description='Frete',
                entry_date=date(2026, 9, 1),
            )
        )
        self.db.flush()

        summary = ledger_summary(self.db)
        self.assertEqual(summary['income'], Decimal('250.00'))
        self.assertEqual(summary['expense'], Decimal('100.00'))
        self.assertEqual(summary['balance'], Decimal('150.00'))

        october = ledger_summary(self.db, from_date=date(2026, 10, 1))
        self.assertEqual(october['expense'], Decimal('80.00'))
        self.assertEqual(october['balance'], Decimal('170.00'))


if __name__ == '__main__':
    unittest.main()
