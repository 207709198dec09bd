from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from ticketbook.domain.state_machine import EventStatus
from ticketbook.infrastructure.db.models import Base, Event
from ticketbook.infrastructure.db.session import SessionLocal, engine
from ticketbook.infrastructure.repositories.event_repository import EventRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    ist = timezone(timedelta(hours=5, minutes=30))
    now_ist = datetime.now(ist)
    target = now_ist + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0).astimezone(timezone.utc)


EVENT_DEFS = [
    {
        "title": "Sunidhi Chauhan Live Concert",
        "location": "Indira Gandhi Arena, New Delhi",
        "starts_at": _dt(days_from_now=10, hour=19, minute=30),
        "duration": timedelta(hours=4),
        "max_tickets_per_order": 6,
        "ticket_types": [
            {"name": "Regular", "price": 180000, "total_quantity": 400},
            {"name": "VIP", "price": 450000, "total_quantity": 120},
        ],
    },
    {
        "title": "Holi Festival 2026",
        "location": "Jawaharlal Nehru Stadium Grounds, Delhi",
        "starts_at": _dt(days_from_now=15, hour=11, minute=0),
        "duration": timedelta(hours=8),
        "max_tickets_per_order": 10,
        "ticket_types": [
            {"name": "General", "price": 120000, "total_quantity": 700},
            {"name": "Premium", "price": 280000, "total_quantity": 180},
        ],
    },
]


def seed_events(db) -> int:
    repo = EventRepository(db)
    created = 0

    for item in EVENT_DEFS:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            # Ticket types may already carry orders; leave them untouched.
            continue

        event = repo.create_event(
            title=item["title"],
            location=item["location"],
            starts_at=item["starts_at"],
            ends_at=item["starts_at"] + item["duration"],
            status=EventStatus.ACTIVE,
            max_tickets_per_order=item["max_tickets_per_order"],
        )
        for ticket_type in item["ticket_types"]:
            repo.add_ticket_type(
                event=event,
                name=ticket_type["name"],
                price=ticket_type["price"],
                total_quantity=ticket_type["total_quantity"],
            )
        created += 1

    return created


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = seed_events(db)
        db.commit()
        print(f"Seed complete: {created} event(s) added.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
