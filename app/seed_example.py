from decimal import Decimal

from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import Base, Order, Quote
from app.services.order_service import LineItemInput, convert_quote_to_order, create_order, create_quote


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        if db.execute(select(Order.id).limit(1)).first() is None:
            create_order(
                db,
                client_name='Maria Silva',
                items=[
                    LineItemInput(product_name='Caneca personalizada', quantity=10, unit_price=Decimal('18.50')),
                    LineItemInput(product_name='Arte exclusiva', quantity=1, unit_price=Decimal('65.00')),
                ],
                notes='Arte aprovada por WhatsApp',
            )
            create_order(
                db,
                client_name='Loja Aurora',
                items=[LineItemInput(product_name='Camiseta estampada', quantity=20, unit_price=Decimal('32.00'))],
                discount=Decimal('40.00'),
                delivery_address={'city': 'Belo Horizonte', 'state': 'MG'},
            )

        if db.execute(select(Quote.id).limit(1)).first() is None:
            quote = create_quote(
                db,
                client_name='Pedro Costa',
                items=[LineItemInput(product_name='Adesivo vinil', quantity=100, unit_price=Decimal('1.20'))],
            )
            convert_quote_to_order(db, quote_id=quote.id)
            create_quote(
                db,
                client_name='Ana Souza',
                items=[LineItemInput(product_name='Chaveiro acrilico', quantity=50, unit_price=Decimal('4.75'))],
            )

        db.commit()


if __name__ == '__main__':
    seed()
