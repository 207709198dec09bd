# ticketbook/infrastructure/repositories/inventory_ledger.py

import logging
from typing import Iterable

from sqlalchemy.orm import Session
from sqlalchemy import case, select, update

from ticketbook.infrastructure.db.models import TicketType
from ticketbook.domain.exceptions import (
    InsufficientInventoryError,
    TicketTypeNotFoundError,
)


logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Sole owner of ticket_types.available_quantity.

    Every mutation is a single conditional UPDATE, so the floor and
    ceiling checks happen inside the row lock taken by the store and
    two reservations for the last unit can never both succeed.
    """

    def __init__(self, db: Session):
        self.db = db

    def available(self, ticket_type_id: str) -> int:
        stmt = select(TicketType.available_quantity).where(
            TicketType.id == ticket_type_id
        )
        available = self.db.execute(stmt).scalar_one_or_none()
        if available is None:
            raise TicketTypeNotFoundError(ticket_type_id)
        return available

    def reserve(self, ticket_type_id: str, quantity: int) -> None:
        """
        UPDATE ... SET available = available - q WHERE available >= q
        """
        _ensure_positive(quantity)

        stmt = (
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(TicketType.is_active.is_(True))
            .where(TicketType.available_quantity >= quantity)
            .values(available_quantity=TicketType.available_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 1:
            logger.debug("Reserved %s of ticket type %s", quantity, ticket_type_id)
            return

        row = self.db.execute(
            select(TicketType.available_quantity, TicketType.is_active).where(
                TicketType.id == ticket_type_id
            )
        ).one_or_none()
        if row is None:
            raise TicketTypeNotFoundError(ticket_type_id)

        available = row.available_quantity if row.is_active else 0
        raise InsufficientInventoryError(
            ticket_type_id=ticket_type_id,
            requested=quantity,
            available=available,
        )

    def release(self, ticket_type_id: str, quantity: int) -> None:
        _ensure_positive(quantity)

        restored = TicketType.available_quantity + quantity
        stmt = (
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .values(
                available_quantity=case(
                    (restored > TicketType.total_quantity, TicketType.total_quantity),
                    else_=restored,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            raise TicketTypeNotFoundError(ticket_type_id)
        logger.debug("Released %s of ticket type %s", quantity, ticket_type_id)

    def reserve_items(self, items: Iterable[tuple[str, int]]) -> None:
        """
        All-or-nothing reservation of (ticket_type_id, quantity) pairs.

        Rows are touched in id order so concurrent multi-line orders
        lock ticket types in the same sequence.
        """
        reserved: list[tuple[str, int]] = []

        try:
            for ticket_type_id, quantity in sorted(items):
                self.reserve(ticket_type_id, quantity)
                reserved.append((ticket_type_id, quantity))
        except (InsufficientInventoryError, TicketTypeNotFoundError):
            if reserved:
                logger.info(
                    "Rolling back %s partially reserved line item(s)",
                    len(reserved),
                )
                self.release_items(reserved)
            raise

    def release_items(self, items: Iterable[tuple[str, int]]) -> None:
        for ticket_type_id, quantity in sorted(items):
            self.release(ticket_type_id, quantity)


def _ensure_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValueError("Quantity must be positive")
