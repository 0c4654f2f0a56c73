from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.board.store import BoardCard
from app.config import settings
from app.errors import OrderNotFoundError, PersistenceError, TransitionConflictError
from app.models import OrderStatus
from app.services.order_service import list_orders
from app.services.transition_rules import TransitionInput
from app.services.transition_service import STATUS_UPDATE_FAILED, transition_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionReceipt:
    card: BoardCard
    changed: bool = True
    tracking_created: bool = False
    tracking_error: str | None = None


class OrderGateway(Protocol):
    async def list_orders(self) -> list[BoardCard]: ...

    async def commit_transition(
        self,
        order_id: int,
        *,
        from_status: OrderStatus,
        to_status: OrderStatus,
        data: TransitionInput,
    ) -> TransitionReceipt: ...


class HttpOrderGateway:
    """Talks to the orders API over HTTP.

    Calls are blocking `urllib` requests pushed to a worker thread so the
    board's event loop never waits on the network.
    """

    def __init__(self, base_url: str | None = None, *, actor: str | None = None, timeout: int | None = None) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip('/')
        self.timeout = timeout or settings.api_timeout_seconds
        self.headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if actor:
            self.headers['X-Actor'] = actor

    def _request(self, method: str, path: str, payload: dict | None = None):
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = Request(url=f'{self.base_url}{path}', data=data, headers=self.headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            logger.warning('Orders API error %s on %s %s: %s', exc.code, method, path, body)
            try:
                detail = json.loads(body).get('detail') if body else None
            except ValueError:
                detail = None
            if exc.code in {400, 404, 409} and isinstance(detail, str):
                raise PersistenceError(detail) from exc
            raise PersistenceError(STATUS_UPDATE_FAILED) from exc
        except URLError as exc:
            logger.warning('Orders API network error on %s %s: %s', method, path, exc.reason)
            raise PersistenceError(STATUS_UPDATE_FAILED) from exc
        # A slow response times out in getresponse(), outside urllib's URLError wrapping.
        except (TimeoutError, OSError) as exc:
            logger.warning('Orders API connection failed on %s %s: %s', method, path, exc)
            raise PersistenceError(STATUS_UPDATE_FAILED) from exc
        except ValueError as exc:
            logger.warning('Orders API sent invalid JSON on %s %s: %s', method, path, exc)
            raise PersistenceError(STATUS_UPDATE_FAILED) from exc

    async def list_orders(self) -> list[BoardCard]:
        payload = await asyncio.to_thread(self._request, 'GET', '/api/orders')
        try:
            return [BoardCard.from_payload(row) for row in payload]
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning('Orders API returned an unexpected order list: %r', exc)
            raise PersistenceError(STATUS_UPDATE_FAILED) from exc

    async def commit_transition(
        self,
        order_id: int,
        *,
        from_status: OrderStatus,
        to_status: OrderStatus,
        data: TransitionInput,
    ) -> TransitionReceipt:
        body = {
            'from_status': from_status.value,
            'to_status': to_status.value,
            'expense_amount': str(data.expense_amount) if data.expense_amount is not None else None,
            'reference_link': data.reference_link,
            'tracking_code': data.tracking_code,
            'estimated_delivery': data.estimated_delivery.isoformat() if data.estimated_delivery else None,
            'skip_tracking': data.skip_tracking,
        }
        payload = await asyncio.to_thread(self._request, 'POST', f'/api/orders/{order_id}/transition', body)
        try:
            return TransitionReceipt(
                card=BoardCard.from_payload(payload['order']),
                changed=bool(payload.get('changed', True)),
                tracking_created=payload.get('tracking') is not None,
                tracking_error=payload.get('tracking_error'),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning('Orders API returned an unexpected transition result for order %s: %r', order_id, exc)
            raise PersistenceError(STATUS_UPDATE_FAILED) from exc


class LocalOrderGateway:
    """Runs the order services in-process, one session per call."""

    def __init__(self, session_factory: sessionmaker[Session], *, actor: str | None = None) -> None:
        self.session_factory = session_factory
        self.actor = actor

    def _list_orders(self) -> list[BoardCard]:
        with self.session_factory() as db:
            return [BoardCard.from_order(order) for order in list_orders(db)]

    def _commit_transition(
        self,
        order_id: int,
        from_status: OrderStatus,
        to_status: OrderStatus,
        data: TransitionInput,
    ) -> TransitionReceipt:
        with self.session_factory() as db:
            try:
                result = transition_order(
                    db,
                    order_id=order_id,
                    to_status=to_status,
                    expected_status=from_status,
                    data=data,
                    actor=self.actor,
                )
                card = BoardCard.from_order(result.order)
                db.commit()
            except (OrderNotFoundError, TransitionConflictError, ValueError) as exc:
                db.rollback()
                raise PersistenceError(str(exc)) from exc
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception('Committing transition for order %s failed', order_id)
                raise PersistenceError(STATUS_UPDATE_FAILED) from exc
            except PersistenceError:
                db.rollback()
                raise
        return TransitionReceipt(
            card=card,
            changed=result.changed,
            tracking_created=result.tracking is not None,
            tracking_error=result.tracking_error,
        )

    async def list_orders(self) -> list[BoardCard]:
        return await asyncio.to_thread(self._list_orders)

    async def commit_transition(
        self,
        order_id: int,
        *,
        from_status: OrderStatus,
        to_status: OrderStatus,
        data: TransitionInput,
    ) -> TransitionReceipt:
        return await asyncio.to_thread(self._commit_transition, order_id, from_status, to_status, data)
