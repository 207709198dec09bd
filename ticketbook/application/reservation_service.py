import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketbook.domain.clock import Clock, ensure_utc, utc_now
from ticketbook.domain.exceptions import (
    DuplicatePendingOrderError,
    EventNotFoundError,
    InvalidOrderRequestError,
    InvalidStateTransitionError,
    NotOwnerError,
    OrderNotFoundError,
    PaymentReferenceConflictError,
    PaymentVerificationError,
    ReservationExpiredError,
    SaleWindowClosedError,
    TicketLimitExceededError,
    TicketTypeNotFoundError,
)
from ticketbook.domain.state_machine import OrderStateMachine, OrderStatus
from ticketbook.infrastructure.db.models import Order, OrderItem, Ticket
from ticketbook.infrastructure.payments.razorpay_gateway import PaymentHandle, RazorpayGateway
from ticketbook.infrastructure.repositories.event_repository import EventRepository
from ticketbook.infrastructure.repositories.inventory_ledger import InventoryLedger
from ticketbook.infrastructure.repositories.order_repository import OrderRepository
from ticketbook.infrastructure.repositories.outbox_repository import OutboxRepository
from ticketbook.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)

RESERVATION_HOLD_MINUTES = int(os.getenv("RESERVATION_HOLD_MINUTES", "15"))
ORDER_CURRENCY = os.getenv("ORDER_CURRENCY", "INR")


@dataclass(frozen=True)
class LineItem:
    ticket_type_id: str
    quantity: int


@dataclass(frozen=True)
class RecipientInfo:
    name: str
    phone: str
    email: str
    address: str | None = None
    notes: str | None = None


class ReservationService:
    """
    Application service coordinating the order reservation lifecycle.

    Every transition out of PENDING_PAYMENT is a conditional update, so
    Confirm, Cancel and Expire on the same order are mutually exclusive
    and the ledger is adjusted by whichever of them actually won.
    Callers own the transaction: the service only flushes.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        hold_minutes: int = RESERVATION_HOLD_MINUTES,
    ):
        self.db = db
        self.clock = clock
        self.hold = timedelta(minutes=hold_minutes)
        self.order_repository = OrderRepository(db)
        self.event_repository = EventRepository(db)
        self.ticket_repository = TicketRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.ledger = InventoryLedger(db)

    # -----------------------------
    # Queries
    # -----------------------------
    def get_active_pending_reservation(self, customer_id: str) -> Order | None:
        return self.order_repository.get_active_pending_for_customer(
            customer_id,
            self.clock(),
        )

    def get_order(self, order_id: str) -> Order:
        order = self.order_repository.get_by_id(order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    def get_reservation(self, customer_id: str, order_id: str) -> Order:
        order = self.get_order(order_id)
        if order.customer_id != customer_id:
            raise NotOwnerError(order_id)
        return order

    def list_reservations(self, customer_id: str) -> list[Order]:
        return self.order_repository.list_for_customer(customer_id)

    def list_tickets(self, order: Order) -> list[Ticket]:
        return self.ticket_repository.list_for_order(order.id)

    def remaining_seconds(self, order: Order) -> int | None:
        """Countdown for the payment screen; None once the order settled."""
        if order.status != OrderStatus.PENDING_PAYMENT:
            return None
        remaining = ensure_utc(order.expires_at) - self.clock()
        return max(0, int(remaining.total_seconds()))

    # -----------------------------
    # Create
    # -----------------------------
    def create_reservation(
        self,
        customer_id: str,
        event_id: str,
        line_items: Iterable[LineItem],
        recipient: RecipientInfo | None = None,
    ) -> Order:
        now = self.clock()
        quantities = self._merge_line_items(line_items)

        self._guard_single_pending(customer_id, now)

        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise EventNotFoundError(event_id)
        if not event.is_open_for_sales(now):
            raise SaleWindowClosedError("Event is not available for booking")

        total_quantity = sum(quantities.values())
        if (
            event.max_tickets_per_order is not None
            and total_quantity > event.max_tickets_per_order
        ):
            raise TicketLimitExceededError(event.max_tickets_per_order)

        ticket_types = self.event_repository.get_ticket_types(event.id, list(quantities))
        for ticket_type_id in quantities:
            ticket_type = ticket_types.get(ticket_type_id)
            if ticket_type is None:
                raise TicketTypeNotFoundError(ticket_type_id)
            if not ticket_type.is_on_sale(now):
                raise SaleWindowClosedError(
                    f"Ticket type {ticket_type.name} is not on sale"
                )

        self.ledger.reserve_items(quantities.items())

        order = Order(
            customer_id=customer_id,
            event_id=event.id,
            status=OrderStatus.PENDING_PAYMENT,
            currency=ORDER_CURRENCY,
            created_at=now,
            expires_at=now + self.hold,
            total_quantity=total_quantity,
            total_amount=sum(
                ticket_types[ticket_type_id].price * quantity
                for ticket_type_id, quantity in quantities.items()
            ),
        )
        if recipient:
            order.recipient_name = recipient.name
            order.recipient_phone = recipient.phone
            order.recipient_email = recipient.email
            order.recipient_address = recipient.address
            order.recipient_notes = recipient.notes

        order.items = [
            OrderItem(
                ticket_type_id=ticket_type_id,
                quantity=quantity,
                unit_price=ticket_types[ticket_type_id].price,
            )
            for ticket_type_id, quantity in sorted(quantities.items())
        ]
        self.order_repository.add(order)

        try:
            self.db.flush()
        except IntegrityError as exc:
            # Lost the per-customer race; rollback also returns the capacity.
            self.db.rollback()
            existing = self.order_repository.get_pending_for_customer(customer_id)
            raise DuplicatePendingOrderError(existing.id if existing else None) from exc

        logger.info(
            "Created reservation order_id=%s customer_id=%s event_id=%s quantity=%s expires_at=%s",
            order.id,
            customer_id,
            event.id,
            total_quantity,
            order.expires_at.isoformat(),
        )
        return order

    # -----------------------------
    # Confirm
    # -----------------------------
    def confirm_reservation(self, order_id: str, payment_reference: str) -> Order:
        if not payment_reference:
            raise InvalidOrderRequestError("Payment reference is required")

        order = self.get_order(order_id)

        if (
            order.status == OrderStatus.CONFIRMED
            and order.payment_reference == payment_reference
        ):
            return order
        if order.status != OrderStatus.PENDING_PAYMENT:
            self._raise_settled(order, OrderStatus.CONFIRMED)

        claimed = self.order_repository.get_by_payment_reference(payment_reference)
        if claimed and claimed.id != order.id:
            raise PaymentReferenceConflictError(payment_reference)

        now = self.clock()
        if order.is_expired(now):
            # The sweeper reclaims the capacity; nothing is re-reserved here.
            raise ReservationExpiredError(order.id)

        try:
            confirmed = self.order_repository.transition_from_pending(
                order.id,
                OrderStatus.CONFIRMED,
                expires_after=now,
                completed_at=now,
                payment_reference=payment_reference,
            )
        except IntegrityError as exc:
            # Another order claimed the reference after the lookup above.
            self.db.rollback()
            raise PaymentReferenceConflictError(payment_reference) from exc
        order = self.get_order(order.id)
        if not confirmed:
            self._raise_settled(order, OrderStatus.CONFIRMED)

        tickets = self.ticket_repository.issue_for_order(order, issued_at=now)
        self._record(
            order,
            "ORDER_CONFIRMED",
            {
                "payment_reference": payment_reference,
                "ticket_count": len(tickets),
                "total_amount": order.total_amount,
                "currency": order.currency,
            },
        )
        self.db.flush()

        logger.info(
            "Confirmed reservation order_id=%s payment_reference=%s tickets=%s",
            order.id,
            payment_reference,
            len(tickets),
        )
        return order

    def confirm_payment(
        self,
        order_id: str,
        provider_order_id: str,
        payment_id: str,
        signature: str,
        gateway: RazorpayGateway,
    ) -> Order:
        """
        Payment callback: check the gateway signature, then confirm.
        A bad signature leaves the hold alone so it can still be paid
        or run out naturally.
        """
        order = self.get_order(order_id)

        if not order.payment_handle:
            raise InvalidOrderRequestError("Payment not initiated for this order")
        if provider_order_id != order.payment_handle:
            raise PaymentVerificationError("Order id does not match this reservation.")

        gateway.verify_payment(provider_order_id, payment_id, signature)
        return self.confirm_reservation(order.id, payment_reference=payment_id)

    # -----------------------------
    # Cancel
    # -----------------------------
    def cancel_reservation(self, customer_id: str, order_id: str) -> Order:
        order = self.get_reservation(customer_id, order_id)

        if order.status != OrderStatus.PENDING_PAYMENT:
            raise InvalidStateTransitionError(
                from_state=order.status.value,
                to_state=OrderStatus.CANCELLED.value,
            )

        now = self.clock()
        if order.is_expired(now):
            logger.info(
                "Cancel on lapsed hold order_id=%s, expiring instead",
                order.id,
            )
            if not self._expire(order.id, now):
                self._raise_settled(self.get_order(order.id), OrderStatus.CANCELLED)
            return self.get_order(order.id)

        cancelled = self.order_repository.transition_from_pending(
            order.id,
            OrderStatus.CANCELLED,
        )
        order = self.get_order(order.id)
        if not cancelled:
            self._raise_settled(order, OrderStatus.CANCELLED)

        self._release(order)
        self._record(order, "ORDER_CANCELLED", {"released_quantity": order.total_quantity})
        self.db.flush()

        logger.info("Cancelled reservation order_id=%s customer_id=%s", order.id, customer_id)
        return order

    # -----------------------------
    # Expire
    # -----------------------------
    def expire_reservation(self, order_id: str) -> bool:
        """
        Returns True if this call expired the order and released its
        capacity, False if it was already settled or still within its hold.
        """
        return self._expire(order_id, self.clock())

    # -----------------------------
    # Hold management
    # -----------------------------
    def extend_reservation(
        self,
        customer_id: str,
        order_id: str,
        minutes: int | None = None,
    ) -> Order:
        max_minutes = int(self.hold.total_seconds() // 60)
        if minutes is not None and not 0 < minutes <= max_minutes:
            raise InvalidOrderRequestError(
                f"Extension must be between 1 and {max_minutes} minutes"
            )

        order = self.get_reservation(customer_id, order_id)

        if order.status != OrderStatus.PENDING_PAYMENT:
            raise InvalidStateTransitionError(
                from_state=order.status.value,
                to_state=OrderStatus.PENDING_PAYMENT.value,
            )

        now = self.clock()
        if order.is_expired(now):
            raise ReservationExpiredError(order.id)

        hold = timedelta(minutes=minutes) if minutes is not None else self.hold
        extended = self.order_repository.extend_deadline(order.id, now, now + hold)
        order = self.get_order(order.id)
        if not extended:
            self._raise_settled(order, OrderStatus.PENDING_PAYMENT)

        logger.info(
            "Extended reservation order_id=%s expires_at=%s",
            order.id,
            ensure_utc(order.expires_at).isoformat(),
        )
        return order

    def initiate_payment(
        self,
        customer_id: str,
        order_id: str,
        gateway: RazorpayGateway,
    ) -> PaymentHandle:
        order = self.get_reservation(customer_id, order_id)

        if order.status != OrderStatus.PENDING_PAYMENT:
            raise InvalidStateTransitionError(
                from_state=order.status.value,
                to_state=OrderStatus.CONFIRMED.value,
            )
        if order.is_expired(self.clock()):
            raise ReservationExpiredError(order.id)

        handle = gateway.create_payment_handle(order)
        order.payment_handle = handle.provider_order_id
        self.db.flush()
        return handle

    # -----------------------------
    # Internals
    # -----------------------------
    def _guard_single_pending(self, customer_id: str, now) -> None:
        existing = self.order_repository.get_pending_for_customer(customer_id, lock=True)
        if existing is None:
            return

        if not existing.is_expired(now):
            raise DuplicatePendingOrderError(existing.id)

        # Lapsed but not swept yet: reclaim it now so the new hold can proceed.
        self._expire(existing.id, now)

    def _expire(self, order_id: str, now) -> bool:
        expired = self.order_repository.transition_from_pending(
            order_id,
            OrderStatus.EXPIRED,
            expired_by=now,
        )
        if not expired:
            logger.debug("Skipped expiry for order_id=%s", order_id)
            return False

        order = self.get_order(order_id)
        self._release(order)
        self._record(order, "ORDER_EXPIRED", {"released_quantity": order.total_quantity})
        self.db.flush()

        logger.info(
            "Expired reservation order_id=%s customer_id=%s released=%s",
            order.id,
            order.customer_id,
            order.total_quantity,
        )
        return True

    def _release(self, order: Order) -> None:
        if not OrderStateMachine.releases_capacity(order.status):
            raise InvalidStateTransitionError(
                from_state=order.status.value,
                to_state=OrderStatus.CANCELLED.value,
            )
        self.ledger.release_items(
            (item.ticket_type_id, item.quantity) for item in order.items
        )

    def _record(self, order: Order, event_type: str, extra: dict) -> None:
        payload = {
            "order_id": order.id,
            "customer_id": order.customer_id,
            "event_id": order.event_id,
            "status": order.status.value,
        }
        payload.update(extra)
        self.outbox_repository.add_event(
            aggregate_type="order",
            aggregate_id=order.id,
            event_type=event_type,
            payload=payload,
            dedupe_key=f"order:{order.id}:{event_type.lower()}",
        )

    def _raise_settled(self, order: Order, to_status: OrderStatus) -> None:
        # Cancelling something already gone is a plain conflict, not a lapse.
        if to_status == OrderStatus.CANCELLED:
            raise InvalidStateTransitionError(
                from_state=order.status.value,
                to_state=to_status.value,
            )
        if order.status == OrderStatus.EXPIRED or (
            order.status == OrderStatus.PENDING_PAYMENT
            and order.is_expired(self.clock())
        ):
            raise ReservationExpiredError(order.id)
        raise InvalidStateTransitionError(
            from_state=order.status.value,
            to_state=to_status.value,
        )

    @staticmethod
    def _merge_line_items(line_items: Iterable[LineItem]) -> dict[str, int]:
        quantities: dict[str, int] = {}
        for item in line_items:
            if item.quantity <= 0:
                raise InvalidOrderRequestError("Quantity must be at least 1")
            quantities[item.ticket_type_id] = (
                quantities.get(item.ticket_type_id, 0) + item.quantity
            )
        if not quantities:
            raise InvalidOrderRequestError("At least one ticket item is required")
        return quantities
