from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import get_actor, get_client_ip
from app.errors import OrderNotFoundError, PersistenceError, TransitionConflictError, ValidationError
from app.models import LedgerEntryType, Order, OrderStatus, QuoteStatus, TrackingStatus
from app.schemas import (
    AuditOut,
    BoardColumnOut,
    LedgerEntryOut,
    LedgerSummaryOut,
    LineItemOut,
    OrderCreateIn,
    OrderOut,
    OrderUpdateIn,
    QuoteCreateIn,
    QuoteOut,
    TrackingOut,
    TransitionIn,
    TransitionOut,
    TransitionPlanOut,
)
from app.services.audit_service import list_order_audit, log_audit
from app.services.ledger_service import ledger_summary, list_entries
from app.services.order_service import (
    LineItemInput,
    convert_quote_to_order,
    create_order,
    create_quote,
    get_order,
    list_order_items,
    list_orders,
    list_quotes,
    order_reference_link,
    update_order,
)
from app.services.tracking_service import list_trackings
from app.services.transition_rules import ORDER_PIPELINE, TransitionInput, TransitionPlan, parse_status
from app.services.transition_service import STATUS_UPDATE_FAILED, preview_transition, transition_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api', tags=['orders'])


def _order_out(order: Order) -> OrderOut:
    return OrderOut.model_validate(order).model_copy(update={'reference_link': order_reference_link(order)})


def _plan_out(plan: TransitionPlan) -> TransitionPlanOut:
    required = plan.required_collection
    return TransitionPlanOut(
        from_status=plan.from_status,
        to_status=plan.to_status,
        revenue_action=plan.revenue_action.value,
        expense_action=plan.expense_action.value,
        creates_tracking=plan.creates_tracking,
        required_collection=required.value if required else None,
        is_noop=plan.is_noop,
    )


def _status_filter(raw: str | None) -> OrderStatus | None:
    if not raw:
        return None
    try:
        return parse_status(raw)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Commit failed')
        raise HTTPException(status_code=503, detail=STATUS_UPDATE_FAILED) from exc


@router.get('/orders', response_model=list[OrderOut])
def orders_index(status: str | None = None, db: Session = Depends(get_db)):
    return [_order_out(order) for order in list_orders(db, status=_status_filter(status))]


@router.get('/orders/board', response_model=list[BoardColumnOut])
def orders_board(db: Session = Depends(get_db)):
    orders = list_orders(db)
    return [
        BoardColumnOut(status=status, orders=[_order_out(order) for order in orders if order.status == status])
        for status in ORDER_PIPELINE
    ]


@router.post('/orders', response_model=OrderOut, status_code=201)
def orders_create(
    payload: OrderCreateIn,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        order = create_order(
            db,
            client_name=payload.client_name,
            client_id=payload.client_id,
            items=[LineItemInput(**item.model_dump()) for item in payload.items],
            discount=payload.discount,
            notes=payload.notes,
            reference_link=payload.reference_link,
            scheduled_date=payload.scheduled_date,
            delivery_address=payload.delivery_address,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        db.rollback()
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    log_audit(
        db,
        actor=get_actor(request),
        action='ORDER_CREATED',
        order_id=order.id,
        ip=get_client_ip(request),
        metadata={'order_number': order.number, 'total': str(order.total)},
    )
    _commit(db)
    return _order_out(order)


@router.get('/orders/{order_id}', response_model=OrderOut)
def orders_detail(order_id: int, db: Session = Depends(get_db)):
    try:
        order = get_order(db, order_id=order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _order_out(order)


@router.get('/orders/{order_id}/items', response_model=list[LineItemOut])
def orders_items(order_id: int, db: Session = Depends(get_db)):
    try:
        get_order(db, order_id=order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return list_order_items(db, order_id=order_id)


@router.get('/orders/{order_id}/audit', response_model=list[AuditOut])
def orders_audit(order_id: int, db: Session = Depends(get_db)):
    try:
        get_order(db, order_id=order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return list_order_audit(db, order_id=order_id)


@router.patch('/orders/{order_id}', response_model=OrderOut)
def orders_update(
    order_id: int,
    payload: OrderUpdateIn,
    request: Request,
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    try:
        order = update_order(db, order_id=order_id, changes=changes)
    except OrderNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit(
        db,
        actor=get_actor(request),
        action='ORDER_EDITED',
        order_id=order.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(changes)},
    )
    _commit(db)
    return _order_out(order)


@router.get('/orders/{order_id}/transition-plan', response_model=TransitionPlanOut)
def orders_transition_plan(order_id: int, to: str, db: Session = Depends(get_db)):
    try:
        plan = preview_transition(db, order_id=order_id, to_status=to)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _plan_out(plan)


@router.post('/orders/{order_id}/transition', response_model=TransitionOut)
def orders_transition(
    order_id: int,
    payload: TransitionIn,
    request: Request,
    db: Session = Depends(get_db),
):
    data = TransitionInput(
        expense_amount=payload.expense_amount,
        reference_link=payload.reference_link,
        tracking_code=payload.tracking_code,
        estimated_delivery=payload.estimated_delivery,
        skip_tracking=payload.skip_tracking,
    )
    try:
        result = transition_order(
            db,
            order_id=order_id,
            to_status=payload.to_status,
            expected_status=payload.from_status,
            data=data,
            actor=get_actor(request),
            ip=get_client_ip(request),
        )
    except OrderNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransitionConflictError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except PersistenceError as exc:
        db.rollback()
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if result.changed:
        _commit(db)
    return TransitionOut(
        order=_order_out(result.order),
        plan=_plan_out(result.plan),
        changed=result.changed,
        income_entry=LedgerEntryOut.model_validate(result.income_entry) if result.income_entry else None,
        expense_entry=LedgerEntryOut.model_validate(result.expense_entry) if result.expense_entry else None,
        tracking=TrackingOut.model_validate(result.tracking) if result.tracking else None,
        tracking_error=result.tracking_error,
    )


@router.get('/quotes', response_model=list[QuoteOut])
def quotes_index(status: str | None = None, db: Session = Depends(get_db)):
    try:
        quote_status = QuoteStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid quote status') from exc
    return list_quotes(db, status=quote_status)


@router.post('/quotes', response_model=QuoteOut, status_code=201)
def quotes_create(
    payload: QuoteCreateIn,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        quote = create_quote(
            db,
            client_name=payload.client_name,
            client_id=payload.client_id,
            items=[LineItemInput(**item.model_dump()) for item in payload.items],
            discount=payload.discount,
            notes=payload.notes,
            valid_until=payload.valid_until,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        db.rollback()
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    log_audit(
        db,
        actor=get_actor(request),
        action='QUOTE_CREATED',
        order_id=None,
        ip=get_client_ip(request),
        metadata={'quote_number': quote.number, 'total': str(quote.total)},
    )
    _commit(db)
    return quote


@router.post('/quotes/{quote_id}/convert', response_model=OrderOut, status_code=201)
def quotes_convert(
    quote_id: int,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        order = convert_quote_to_order(db, quote_id=quote_id)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PersistenceError as exc:
        db.rollback()
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    log_audit(
        db,
        actor=get_actor(request),
        action='QUOTE_CONVERTED',
        order_id=order.id,
        ip=get_client_ip(request),
        metadata={'quote_id': quote_id, 'order_number': order.number},
    )
    _commit(db)
    return _order_out(order)


@router.get('/transactions', response_model=list[LedgerEntryOut])
def transactions_index(order_id: int | None = None, type: str | None = None, db: Session = Depends(get_db)):
    try:
        entry_type = LedgerEntryType(type) if type else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid transaction type') from exc
    return list_entries(db, order_id=order_id, entry_type=entry_type)


@router.get('/transactions/summary', response_model=LedgerSummaryOut)
def transactions_summary(db: Session = Depends(get_db)):
    return ledger_summary(db)


@router.get('/trackings', response_model=list[TrackingOut])
def trackings_index(status: str | None = None, db: Session = Depends(get_db)):
    try:
        tracking_status = TrackingStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid tracking status') from exc
    return list_trackings(db, status=tracking_status)
