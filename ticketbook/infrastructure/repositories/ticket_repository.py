# ticketbook/infrastructure/repositories/ticket_repository.py

from datetime import datetime
from uuid import uuid4

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticketbook.infrastructure.db.models import Order, Ticket
from ticketbook.domain.state_machine import TicketStatus


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def list_for_order(self, order_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.order_id == order_id)
            .order_by(Ticket.created_at, Ticket.check_in_code)
        )
        return list(self.db.execute(stmt).scalars().all())

    def code_exists(self, check_in_code: str) -> bool:
        stmt = select(Ticket.id).where(Ticket.check_in_code == check_in_code)
        return self.db.execute(stmt).first() is not None

    def issue_for_order(self, order: Order, issued_at: datetime) -> list[Ticket]:
        """
        One ticket per reserved unit, typed exactly as its line item.
        """
        issued: set[str] = set()
        tickets = []

        for item in order.items:
            for _ in range(item.quantity):
                code = self._unique_code(order.id, issued)
                issued.add(code)
                ticket = Ticket(
                    order_id=order.id,
                    ticket_type_id=item.ticket_type_id,
                    check_in_code=code,
                    status=TicketStatus.CONFIRMED,
                    created_at=issued_at,
                )
                self.db.add(ticket)
                tickets.append(ticket)

        return tickets

    def _unique_code(self, order_id: str, issued: set[str]) -> str:
        while True:
            code = f"TKT-{order_id[:8].upper()}-{uuid4().hex[:8].upper()}"
            if code not in issued and not self.code_exists(code):
                return code
