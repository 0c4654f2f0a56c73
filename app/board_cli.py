from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date

from app.board.controller import (
    BoardController,
    CollectionRequired,
    ExpenseDetails,
    OutcomeKind,
    TrackingDetails,
    TransitionFailed,
    TransitionSucceeded,
)
from app.board.gateway import HttpOrderGateway, LocalOrderGateway
from app.logging_config import configure_logging
from app.services.transition_rules import ORDER_PIPELINE, CollectionKind

logger = logging.getLogger(__name__)


def _args_collector(args: argparse.Namespace):
    async def _collect(kind: CollectionKind, card):
        if kind == CollectionKind.EXPENSE:
            if args.expense is None:
                print(f'{card.number}: entering production needs --expense; move cancelled')
                return None
            return ExpenseDetails(amount=args.expense, reference_link=args.link)
        if args.skip_tracking:
            return TrackingDetails(skipped=True)
        if not args.tracking_code:
            print(f'{card.number}: entering shipping needs --tracking-code or --skip-tracking; move cancelled')
            return None
        return TrackingDetails(code=args.tracking_code, estimated_delivery=args.estimated_delivery)

    return _collect


def _print_notification(notification) -> None:
    if isinstance(notification, TransitionSucceeded):
        print(f'order {notification.order_id}: now {notification.final_status.value}')
    elif isinstance(notification, TransitionFailed):
        print(f'order {notification.order_id}: {notification.reason}')
    elif isinstance(notification, CollectionRequired):
        logger.debug('Collecting %s for order %s', notification.kind.value, notification.order_id)


def _build_controller(args: argparse.Namespace) -> BoardController:
    if args.local:
        from app.db import SessionLocal

        gateway = LocalOrderGateway(SessionLocal, actor=args.actor)
    else:
        gateway = HttpOrderGateway(args.api_url, actor=args.actor)
    controller = BoardController(gateway, _args_collector(args))
    controller.subscribe(_print_notification)
    return controller


async def _show_board(controller: BoardController) -> None:
    await controller.refresh()
    for status, cards in controller.board.columns().items():
        print(f'[{status.value}] ({len(cards)})')
        for card in cards:
            flag = ' $' if card.revenue_added else ''
            print(f'  {card.number}  {card.client_name}  {card.total}{flag}')


async def _move(controller: BoardController, args: argparse.Namespace) -> int:
    await controller.refresh()
    card = next((c for c in controller.board.state.cards if c.number == args.number.strip().upper()), None)
    if card is None:
        print(f'Order {args.number} not found')
        return 1
    outcome = await controller.on_drop(card.id, card.status.value, args.status)
    if outcome.tracking_error:
        print(outcome.tracking_error)
    return 0 if outcome.kind in {OutcomeKind.SUCCEEDED, OutcomeKind.NOOP} else 1


def main() -> int:
    parser = argparse.ArgumentParser(description='Show the order board or move an order to another column.')
    parser.add_argument('--local', action='store_true', help='Use the database directly instead of the HTTP API.')
    parser.add_argument('--api-url', default=None, help='Orders API base URL (defaults to API_BASE_URL).')
    parser.add_argument('--actor', default=None, help='Name recorded in the audit log.')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('board', help='Print the board columns.')

    move = subparsers.add_parser('move', help='Move an order to another status.')
    move.add_argument('number', help='Order number, e.g. PED00007.')
    move.add_argument('status', choices=[status.value for status in ORDER_PIPELINE])
    move.add_argument('--expense', default=None, help='Production expense amount (entering production).')
    move.add_argument('--link', default=None, help='Reference link stored with the production expense.')
    move.add_argument('--tracking-code', default=None, help='Carrier tracking code (entering shipping).')
    move.add_argument('--estimated-delivery', type=date.fromisoformat, default=None, help='YYYY-MM-DD')
    move.add_argument('--skip-tracking', action='store_true', help='Ship without creating a tracking record.')

    args = parser.parse_args()
    configure_logging()
    controller = _build_controller(args)
    if args.command == 'board':
        asyncio.run(_show_board(controller))
        return 0
    return asyncio.run(_move(controller, args))


if __name__ == '__main__':
    raise SystemExit(main())
