from __future__ import annotations

import os
import tempfile
import threading
import unittest
from decimal import Decimal

from sqlalchemy import select

from app.db import create_db_engine, create_session_factory
from app.errors import NumberingCollisionError
from app.models import Base, DocumentSequence, Order
from app.services.numbering_service import (
    format_document_number,
    insert_with_number,
    next_number,
    parse_document_number,
)
from app.services.order_service import LineItemInput, create_order, create_quote


def _items() -> list[LineItemInput]:
    return [LineItemInput(product_name='Caneca', quantity=2, unit_price=Decimal('25.00'))]


class DocumentNumberFormatTests(unittest.TestCase):
    def test_format_pads_to_five_digits(self) -> None:
        self.assertEqual(format_document_number('PED', 7), 'PED00007')
        self.assertEqual(format_document_number('ORC', 123456), 'ORC123456')

    def test_parse_ignores_foreign_numbers(self) -> None:
        self.assertEqual(parse_document_number('PED', 'PED00042'), 42)
        self.assertIsNone(parse_document_number('PED', 'ORC00042'))
        self.assertIsNone(parse_document_number('PED', 'PED-OLD'))
        self.assertIsNone(parse_document_number('PED', None))


class NumberingServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        self.Session = create_session_factory(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_numbers_are_sequential_per_prefix(self) -> None:
        with self.Session() as db:
            first = create_order(db, client_name='Ana', items=_items())
            second = create_order(db, client_name='Bruno', items=_items())
            quote = create_quote(db, client_name='Carla', items=_items())
            db.commit()
        self.assertEqual(first.number, 'PED00001')
        self.assertEqual(second.number, 'PED00002')
        self.assertEqual(quote.number, 'ORC00001')

    def test_sequence_is_seeded_from_existing_numbers(self) -> None:
        with self.Session() as db:
            db.add_all(
                [
                    Order(number='PED00004', client_name='Legacy A'),
                    Order(number='PED-OLD-9', client_name='Legacy B'),
                ]
            )
            db.commit()
            self.assertEqual(next_number(db, 'PED'), 'PED00005')
            db.commit()
            sequence = db.execute(select(DocumentSequence).where(DocumentSequence.prefix == 'PED')).scalar_one()
            self.assertEqual(sequence.last_value, 5)

    def test_collision_with_stale_sequence_retries(self) -> None:
        with self.Session() as db:
            db.add(DocumentSequence(prefix='PED', last_value=0))
            db.add(Order(number='PED00001', client_name='Imported'))
            db.commit()

            order = create_order(db, client_name='Dora', items=_items())
            db.commit()
        self.assertEqual(order.number, 'PED00002')

    def test_collision_gives_up_after_max_attempts(self) -> None:
        with self.Session() as db:
            db.add(DocumentSequence(prefix='PED', last_value=0))
            db.add_all([Order(number='PED00001', client_name='A'), Order(number='PED00002', client_name='B')])
            db.commit()

            with self.assertRaises(NumberingCollisionError) as ctx:
                insert_with_number(
                    db,
                    'PED',
                    lambda number: Order(number=number, client_name='C'),
                    max_attempts=2,
                )
            self.assertEqual(ctx.exception.number, 'PED00002')
            self.assertIn('PED00002', str(ctx.exception))


class ConcurrentNumberingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, 'numbering.db')
        self.engine = create_db_engine(f'sqlite:///{path}')
        Base.metadata.create_all(self.engine)
        self.Session = create_session_factory(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_creates_get_distinct_numbers(self) -> None:
        numbers: list[str] = []
        errors: list[Exception] = []
        lock = threading.Lock()

        def worker(index: int) -> None:
            try:
                with self.Session() as db:
                    order = create_order(db, client_name=f'Client {index}', items=_items())
                    db.commit()
                with lock:
                    numbers.append(order.number)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(sorted(numbers), [format_document_number('PED', value) for value in range(1, 9)])


if __name__ == '__main__':
    unittest.main()
