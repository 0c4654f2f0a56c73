from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ValidationError
from app.models import Order, OrderTracking, TrackingStatus
from app.services.transition_rules import normalize_tracking_code

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_tracking_for_order(db: Session, *, order_id: int) -> OrderTracking | None:
    return db.execute(select(OrderTracking).where(OrderTracking.order_id == order_id)).scalar_one_or_none()


def create_tracking(
    db: Session,
    order: Order,
    *,
    code: str,
    carrier: str | None = None,
    estimated_delivery: date | None = None,
) -> OrderTracking:
    clean_code = normalize_tracking_code(code)
    if not clean_code:
        raise ValidationError('Tracking code is required')
    clean_carrier = (carrier or '').strip().lower() or settings.default_carrier

    tracking = get_tracking_for_order(db, order_id=order.id)
    if tracking is None:
        tracking = OrderTracking(
            order_id=order.id,
            order_number=order.number,
            client_name=order.client_name,
            tracking_code=clean_code,
            carrier=clean_carrier,
            status=TrackingStatus.PENDING,
            events=[],
            estimated_delivery=estimated_delivery,
        )
        db.add(tracking)
        db.flush()
        logger.info('Created tracking %s for order %s (%s)', tracking.id, order.number, clean_code)
        return tracking

    if tracking.tracking_code != clean_code:
        tracking.tracking_code = clean_code
        tracking.status = TrackingStatus.PENDING
        tracking.events = []
        tracking.last_update = None
    tracking.carrier = clean_carrier
    tracking.estimated_delivery = estimated_delivery
    tracking.order_number = order.number
    tracking.client_name = order.client_name
    tracking.updated_at = _now()
    db.flush()
    logger.info('Re-targeted tracking %s for order %s (%s)', tracking.id, order.number, clean_code)
    return tracking


def list_trackings(db: Session, *, status: TrackingStatus | None = None, limit: int = 200) -> list[OrderTracking]:
    query = select(OrderTracking).order_by(OrderTracking.created_at.desc(), OrderTracking.id.desc()).limit(limit)
    if status is not None:
        query = query.where(OrderTracking.status == status)
    return db.execute(query).scalars().all()
