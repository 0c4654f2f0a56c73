from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NumberingCollisionError
from app.models import DocumentSequence, Order, Quote

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _number_column(prefix: str):
    if prefix == settings.order_number_prefix:
        return Order.number
    if prefix == settings.quote_number_prefix:
        return Quote.number
    raise ValueError(f'Unknown document prefix {prefix!r}')


def format_document_number(prefix: str, value: int) -> str:
    return f'{prefix}{value:0{settings.document_number_width}d}'


def parse_document_number(prefix: str, number: str | None) -> int | None:
    raw = (number or '').strip()
    if not raw.startswith(prefix):
        return None
    digits = raw[len(prefix) :]
    if not digits.isdigit():
        return None
    return int(digits)


def scan_max_number(db: Session, prefix: str) -> int:
    column = _number_column(prefix)
    numbers = db.execute(select(column).where(column.like(f'{prefix}%'))).scalars().all()
    parsed = [parse_document_number(prefix, number) for number in numbers]
    return max((value for value in parsed if value is not None), default=0)


def _lock_sequence(db: Session, prefix: str) -> DocumentSequence | None:
    return db.execute(
        select(DocumentSequence).where(DocumentSequence.prefix == prefix).with_for_update()
    ).scalar_one_or_none()


def _seed_sequence(db: Session, prefix: str) -> DocumentSequence:
    seed = scan_max_number(db, prefix)
    try:
        with db.begin_nested():
            db.add(DocumentSequence(prefix=prefix, last_value=seed, updated_at=_now()))
    except IntegrityError:
        logger.info('Sequence %s was seeded concurrently; using the existing row', prefix)
    else:
        logger.info('Seeded document sequence %s at %d', prefix, seed)
    sequence = _lock_sequence(db, prefix)
    if sequence is None:
        raise RuntimeError(f'Document sequence {prefix} could not be created')
    return sequence


def next_number(db: Session, prefix: str) -> str:
    """Reserve the next document number for `prefix`.

    The counter row stays locked until the caller's transaction ends, so two
    sessions can never read the same value.
    """
    sequence = _lock_sequence(db, prefix)
    if sequence is None:
        sequence = _seed_sequence(db, prefix)
    sequence.last_value += 1
    sequence.updated_at = _now()
    db.flush()
    return format_document_number(prefix, sequence.last_value)


def insert_with_number(
    db: Session,
    prefix: str,
    build: Callable[[str], T],
    *,
    max_attempts: int | None = None,
) -> T:
    attempts = max_attempts or settings.numbering_max_attempts
    if attempts < 1:
        raise ValueError('max_attempts must be at least 1')

    collision: NumberingCollisionError | None = None
    for attempt in range(1, attempts + 1):
        number = next_number(db, prefix)
        try:
            with db.begin_nested():
                document = build(number)
                db.add(document)
                db.flush()
        except IntegrityError as exc:
            if 'number' not in str(exc.orig).lower():
                raise
            collision = NumberingCollisionError(prefix=prefix, number=number)
            logger.warning(
                'Document number %s collided (attempt %d/%d): %s',
                number,
                attempt,
                attempts,
                exc.orig,
            )
            continue
        return document

    logger.error('Could not allocate a unique %s number after %d attempts', prefix, attempts)
    raise collision
