import pytest

from ticketbook.domain.exceptions import InsufficientInventoryError, TicketTypeNotFoundError
from ticketbook.infrastructure.repositories.event_repository import EventRepository
from ticketbook.infrastructure.repositories.inventory_ledger import InventoryLedger


def test_reserve_decrements_available(db, make_event):
    _, (general,) = make_event(ticket_types=[("General", 1000, 10)])
    ledger = InventoryLedger(db)

    ledger.reserve(general.id, 3)

    assert ledger.available(general.id) == 7


def test_reserve_then_release_restores_original_count(db, make_event):
    _, (general,) = make_event(ticket_types=[("General", 1000, 10)])
    ledger = InventoryLedger(db)

    ledger.reserve(general.id, 4)
    ledger.release(general.id, 4)

    assert ledger.available(general.id) == 10


def test_insufficient_stock_leaves_count_untouched(db, make_event):
    _, (general,) = make_event(ticket_types=[("General", 1000, 2)])
    ledger = InventoryLedger(db)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        ledger.reserve(general.id, 3)

    assert exc_info.value.available == 2
    assert exc_info.value.requested == 3
    assert ledger.available(general.id) == 2


def test_last_unit_can_only_be_reserved_once(db, make_event):
    _, (general,) = make_event(ticket_types=[("General", 1000, 1)])
    ledger = InventoryLedger(db)

    ledger.reserve(general.id, 1)
    with pytest.raises(InsufficientInventoryError):
        ledger.reserve(general.id, 1)

    assert ledger.available(general.id) == 0


def test_release_is_clamped_to_total_capacity(db, make_event):
    _, (general,) = make_event(ticket_types=[("General", 1000, 5)])
    ledger = InventoryLedger(db)

    ledger.reserve(general.id, 2)
    ledger.release(general.id, 2)
    ledger.release(general.id, 2)

    assert ledger.available(general.id) == 5


def test_inactive_ticket_type_accepts_releases_but_no_reservations(db, make_event):
    _, (general,) = make_event(ticket_types=[("General", 1000, 5)])
    ledger = InventoryLedger(db)
    ledger.reserve(general.id, 2)

    EventRepository(db).deactivate_ticket_type(general.id)
    db.flush()

    with pytest.raises(InsufficientInventoryError) as exc_info:
        ledger.reserve(general.id, 1)
    assert exc_info.value.available == 0

    ledger.release(general.id, 2)
    assert ledger.available(general.id) == 5


def test_unknown_ticket_type(db):
    ledger = InventoryLedger(db)

    with pytest.raises(TicketTypeNotFoundError):
        ledger.reserve("missing", 1)
    with pytest.raises(TicketTypeNotFoundError):
        ledger.release("missing", 1)


def test_non_positive_quantity_is_rejected(db, make_event):
    _, (general,) = make_event()
    ledger = InventoryLedger(db)

    with pytest.raises(ValueError):
        ledger.reserve(general.id, 0)
    with pytest.raises(ValueError):
        ledger.release(general.id, -1)


def test_reserve_items_is_all_or_nothing(db, make_event):
    _, (general, vip) = make_event(
        ticket_types=[("General", 1000, 10), ("VIP", 5000, 1)]
    )
    ledger = InventoryLedger(db)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        ledger.reserve_items([(general.id, 4), (vip.id, 2)])

    assert exc_info.value.ticket_type_id == vip.id
    assert ledger.available(general.id) == 10
    assert ledger.available(vip.id) == 1


def test_reserve_items_reserves_every_line(db, make_event):
    _, (general, vip) = make_event(
        ticket_types=[("General", 1000, 10), ("VIP", 5000, 3)]
    )
    ledger = InventoryLedger(db)

    ledger.reserve_items([(vip.id, 3), (general.id, 4)])

    assert ledger.available(general.id) == 6
    assert ledger.available(vip.id) == 0
