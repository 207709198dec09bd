# ticketbook/infrastructure/repositories/event_repository.py

from datetime import datetime

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select

from ticketbook.infrastructure.db.models import Event, TicketType
from ticketbook.domain.state_machine import EventStatus


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .options(selectinload(Event.ticket_types))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_events(self) -> list[Event]:
        stmt = (
            select(Event)
            .options(selectinload(Event.ticket_types))
            .order_by(Event.starts_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_ticket_types(
        self,
        event_id: str,
        ticket_type_ids: list[str],
    ) -> dict[str, TicketType]:

        stmt = (
            select(TicketType)
            .where(TicketType.event_id == event_id)
            .where(TicketType.id.in_(ticket_type_ids))
        )
        return {
            ticket_type.id: ticket_type
            for ticket_type in self.db.execute(stmt).scalars().all()
        }

    def create_event(
        self,
        title: str,
        starts_at: datetime,
        ends_at: datetime,
        location: str | None = None,
        status: EventStatus = EventStatus.ACTIVE,
        max_tickets_per_order: int | None = None,
    ) -> Event:
        event = Event(
            title=title,
            location=location,
            status=status,
            starts_at=starts_at,
            ends_at=ends_at,
            max_tickets_per_order=max_tickets_per_order,
        )
        self.db.add(event)
        return event

    def add_ticket_type(
        self,
        event: Event,
        name: str,
        price: int,
        total_quantity: int,
        sale_starts_at: datetime | None = None,
        sale_ends_at: datetime | None = None,
    ) -> TicketType:
        ticket_type = TicketType(
            event=event,
            name=name,
            price=price,
            total_quantity=total_quantity,
            available_quantity=total_quantity,
            sale_starts_at=sale_starts_at,
            sale_ends_at=sale_ends_at,
            is_active=True,
        )
        self.db.add(ticket_type)
        return ticket_type

    def deactivate_ticket_type(self, ticket_type_id: str) -> TicketType | None:
        ticket_type = self.db.get(TicketType, ticket_type_id)
        if ticket_type:
            ticket_type.is_active = False
        return ticket_type
