

class TicketbookError(Exception):
    """
    Base exception for all domain-level errors
    inside the reservation engine.
    """

    code = "TICKETBOOK_ERROR"

    def to_detail(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InvalidStateTransitionError(TicketbookError):
    """
    Raised when an illegal order state transition is attempted.
    """

    code = "INVALID_STATE"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InsufficientInventoryError(TicketbookError):
    """Raised when a ticket type cannot cover the requested quantity."""

    code = "INSUFFICIENT_INVENTORY"

    def __init__(self, ticket_type_id: str, requested: int, available: int):
        self.ticket_type_id = ticket_type_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Only {available} tickets available for ticket type "
            f"{ticket_type_id} (requested {requested})"
        )

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["ticket_type_id"] = self.ticket_type_id
        detail["available"] = self.available
        return detail


class DuplicatePendingOrderError(TicketbookError):
    """Raised when the customer already holds an active reservation."""

    code = "DUPLICATE_PENDING_ORDER"

    def __init__(self, order_id: str | None):
        self.order_id = order_id
        super().__init__(
            "You have a pending order. Please complete or cancel it first."
        )

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["order_id"] = self.order_id
        return detail


class ReservationExpiredError(TicketbookError):
    code = "RESERVATION_EXPIRED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(
            "Order reservation has expired. Please create a new order."
        )


class NotOwnerError(TicketbookError):
    code = "NOT_OWNER"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order does not belong to this customer")


class SaleWindowClosedError(TicketbookError):
    """Raised when the event or ticket type is not on sale right now."""

    code = "SALE_WINDOW_CLOSED"


class OrderNotFoundError(TicketbookError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class EventNotFoundError(TicketbookError):
    code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("Event not found")


class TicketTypeNotFoundError(TicketbookError):
    code = "TICKET_TYPE_NOT_FOUND"

    def __init__(self, ticket_type_id: str):
        self.ticket_type_id = ticket_type_id
        super().__init__(f"Ticket type {ticket_type_id} not found for this event")


class TicketLimitExceededError(TicketbookError):
    code = "TICKET_LIMIT_EXCEEDED"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Maximum {limit} tickets per order")


class InvalidOrderRequestError(TicketbookError):
    code = "INVALID_ORDER_REQUEST"


class PaymentReferenceConflictError(TicketbookError):
    """Raised when a payment id was already consumed by another order."""

    code = "PAYMENT_REFERENCE_CONFLICT"

    def __init__(self, payment_reference: str):
        self.payment_reference = payment_reference
        super().__init__("Payment id already consumed by another order.")


class PaymentVerificationError(TicketbookError):
    code = "PAYMENT_VERIFICATION_FAILED"
