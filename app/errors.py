from __future__ import annotations


class ValidationError(ValueError):
    """Invalid target status or collected transition input.

    Raised before any write is attempted.
    """


class OrderNotFoundError(LookupError):
    pass


class TransitionConflictError(RuntimeError):
    def __init__(self, *, order_id: int, expected_status: str, actual_status: str) -> None:
        super().__init__(
            f'Order {order_id} is {actual_status}, not {expected_status}; reload the board and try again'
        )
        self.order_id = order_id
        self.expected_status = expected_status
        self.actual_status = actual_status


class TransitionInFlightError(RuntimeError):
    def __init__(self, order_id: int) -> None:
        super().__init__(f'Order {order_id} already has a status change in progress')
        self.order_id = order_id


class PersistenceError(RuntimeError):
    """A write failed at the database or gateway boundary.

    `str(exc)` is safe to show to the user.
    """


class NumberingCollisionError(PersistenceError):
    def __init__(self, *, prefix: str, number: str) -> None:
        super().__init__(f'Document number {number} is already taken')
        self.prefix = prefix
        self.number = number
