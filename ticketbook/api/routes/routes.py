import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from ticketbook.infrastructure.db.session import SessionLocal
from ticketbook.application.reservation_service import (
    RESERVATION_HOLD_MINUTES,
    LineItem,
    RecipientInfo,
    ReservationService,
)
from ticketbook.api.schemas.schemas import (
    CreateOrderRequest,
    EventCreate,
    EventResponse,
    OrderItemResponse,
    OrderResponse,
    OutboxEventResponse,
    PaymentHandleResponse,
    PendingOrderResponse,
    RazorpayVerifyRequest,
    TicketResponse,
    TicketTypeResponse,
)
from ticketbook.domain.clock import Clock, ensure_utc, utc_now
from ticketbook.domain.exceptions import (
    DuplicatePendingOrderError,
    EventNotFoundError,
    InsufficientInventoryError,
    InvalidOrderRequestError,
    InvalidStateTransitionError,
    NotOwnerError,
    OrderNotFoundError,
    PaymentReferenceConflictError,
    PaymentVerificationError,
    ReservationExpiredError,
    SaleWindowClosedError,
    TicketbookError,
    TicketLimitExceededError,
    TicketTypeNotFoundError,
)
from ticketbook.domain.state_machine import OrderStatus
from ticketbook.infrastructure.db.models import Event, Order, OutboxEvent
from ticketbook.infrastructure.payments.razorpay_gateway import RazorpayGateway
from ticketbook.infrastructure.repositories.event_repository import EventRepository
from ticketbook.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[TicketbookError], int] = {
    OrderNotFoundError: status.HTTP_404_NOT_FOUND,
    EventNotFoundError: status.HTTP_404_NOT_FOUND,
    TicketTypeNotFoundError: status.HTTP_404_NOT_FOUND,
    NotOwnerError: status.HTTP_403_FORBIDDEN,
    ReservationExpiredError: status.HTTP_410_GONE,
    InvalidOrderRequestError: status.HTTP_400_BAD_REQUEST,
    TicketLimitExceededError: status.HTTP_400_BAD_REQUEST,
    PaymentVerificationError: status.HTTP_400_BAD_REQUEST,
    InsufficientInventoryError: status.HTTP_409_CONFLICT,
    DuplicatePendingOrderError: status.HTTP_409_CONFLICT,
    SaleWindowClosedError: status.HTTP_409_CONFLICT,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    PaymentReferenceConflictError: status.HTTP_409_CONFLICT,
}


# -----------------------------
# Dependencies
# -----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_clock() -> Clock:
    return utc_now


def get_customer_id(x_customer_id: str = Header(min_length=1)) -> str:
    # Identity is resolved upstream; the header is trusted as given.
    return x_customer_id


def get_payment_gateway() -> RazorpayGateway:
    try:
        return RazorpayGateway.from_env()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


def get_reservation_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ReservationService:
    return ReservationService(db, clock=clock)


# -----------------------------
# Mapping helpers
# -----------------------------
def _http_error(exc: TicketbookError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped_status in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = mapped_status
            break
    return HTTPException(status_code=status_code, detail=exc.to_detail())


def _isoformat(value) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def _event_response(event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        title=event.title,
        location=event.location,
        status=event.status.value,
        starts_at=_isoformat(event.starts_at),
        ends_at=_isoformat(event.ends_at),
        max_tickets_per_order=event.max_tickets_per_order,
        ticket_types=[
            TicketTypeResponse(
                id=ticket_type.id,
                name=ticket_type.name,
                price=ticket_type.price,
                total_quantity=ticket_type.total_quantity,
                available_quantity=ticket_type.available_quantity,
                is_active=ticket_type.is_active,
            )
            for ticket_type in event.ticket_types
        ],
    )


def _order_response(service: ReservationService, order: Order) -> OrderResponse:
    tickets = []
    if order.status == OrderStatus.CONFIRMED:
        tickets = [
            TicketResponse(
                id=ticket.id,
                ticket_type_id=ticket.ticket_type_id,
                check_in_code=ticket.check_in_code,
                status=ticket.status.value,
            )
            for ticket in service.list_tickets(order)
        ]

    return OrderResponse(
        order_id=order.id,
        event_id=order.event_id,
        status=order.status.value,
        total_amount=order.total_amount,
        total_quantity=order.total_quantity,
        currency=order.currency,
        created_at=_isoformat(order.created_at),
        expires_at=_isoformat(order.expires_at),
        remaining_seconds=service.remaining_seconds(order),
        completed_at=_isoformat(order.completed_at),
        items=[
            OrderItemResponse(
                ticket_type_id=item.ticket_type_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in order.items
        ],
        tickets=tickets,
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        created_at=_isoformat(item.created_at),
    )


# -----------------------------
# Health
# -----------------------------
@router.get("/health")
def health():
    return {"message": "Ticketbook reservation engine is running"}


# -----------------------------
# Catalog
# -----------------------------
@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(request: EventCreate, db: Session = Depends(get_db)):
    if ensure_utc(request.ends_at) < ensure_utc(request.starts_at):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="ends_at must not be before starts_at",
        )

    repo = EventRepository(db)
    event = repo.create_event(
        title=request.title,
        location=request.location,
        starts_at=ensure_utc(request.starts_at),
        ends_at=ensure_utc(request.ends_at),
        status=request.status,
        max_tickets_per_order=request.max_tickets_per_order,
    )
    for ticket_type in request.ticket_types:
        repo.add_ticket_type(
            event=event,
            name=ticket_type.name,
            price=ticket_type.price,
            total_quantity=ticket_type.total_quantity,
            sale_starts_at=ensure_utc(ticket_type.sale_starts_at),
            sale_ends_at=ensure_utc(ticket_type.sale_ends_at),
        )
    db.flush()

    logger.info("Created event event_id=%s ticket_types=%s", event.id, len(request.ticket_types))
    return _event_response(event)


@router.get("/events", response_model=list[EventResponse])
def list_events(db: Session = Depends(get_db)):
    return [_event_response(event) for event in EventRepository(db).list_events()]


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: str, db: Session = Depends(get_db)):
    event = EventRepository(db).get_by_id(event_id)
    if not event:
        raise _http_error(EventNotFoundError(event_id))
    return _event_response(event)


# -----------------------------
# Orders
# -----------------------------
@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    request: CreateOrderRequest,
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
):
    recipient = None
    if request.recipient_info:
        recipient = RecipientInfo(
            name=request.recipient_info.recipient_name,
            phone=request.recipient_info.recipient_phone,
            email=request.recipient_info.recipient_email,
            address=request.recipient_info.recipient_address,
            notes=request.recipient_info.recipient_notes,
        )

    try:
        order = service.create_reservation(
            customer_id=customer_id,
            event_id=request.event_id,
            line_items=[
                LineItem(ticket_type_id=item.ticket_type_id, quantity=item.quantity)
                for item in request.items
            ],
            recipient=recipient,
        )
    except TicketbookError as exc:
        raise _http_error(exc) from exc

    return _order_response(service, order)


@router.get("/orders", response_model=list[OrderResponse])
def list_orders(
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return [_order_response(service, order) for order in service.list_reservations(customer_id)]


@router.get("/orders/pending", response_model=PendingOrderResponse)
def get_pending_order(
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
):
    order = service.get_active_pending_reservation(customer_id)
    if not order:
        return PendingOrderResponse(message="No pending order found")
    return PendingOrderResponse(
        order=_order_response(service, order),
        message="You have a pending order. Please complete or cancel it first.",
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
):
    try:
        order = service.get_reservation(customer_id, order_id)
    except TicketbookError as exc:
        raise _http_error(exc) from exc
    return _order_response(service, order)


@router.post("/orders/{order_id}/payment", response_model=PaymentHandleResponse)
def initiate_payment(
    order_id: str,
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    try:
        handle = service.initiate_payment(customer_id, order_id, gateway)
    except TicketbookError as exc:
        raise _http_error(exc) from exc

    return PaymentHandleResponse(
        order_id=order_id,
        provider_order_id=handle.provider_order_id,
        amount=handle.amount,
        currency=handle.currency,
        key_id=handle.key_id,
    )


@router.post("/orders/{order_id}/confirm", response_model=OrderResponse)
def confirm_order(
    order_id: str,
    request: RazorpayVerifyRequest,
    service: ReservationService = Depends(get_reservation_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    try:
        order = service.confirm_payment(
            order_id=order_id,
            provider_order_id=request.razorpay_order_id,
            payment_id=request.razorpay_payment_id,
            signature=request.razorpay_signature,
            gateway=gateway,
        )
    except TicketbookError as exc:
        logger.warning(
            "Payment confirmation rejected order_id=%s code=%s",
            order_id,
            exc.code,
        )
        raise _http_error(exc) from exc

    return _order_response(service, order)


@router.post("/orders/{order_id}/extend", response_model=OrderResponse)
def extend_order(
    order_id: str,
    minutes: int | None = Query(default=None, gt=0, le=RESERVATION_HOLD_MINUTES),
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
):
    try:
        order = service.extend_reservation(customer_id, order_id, minutes=minutes)
    except TicketbookError as exc:
        raise _http_error(exc) from exc
    return _order_response(service, order)


@router.delete("/orders/{order_id}", response_model=OrderResponse)
def cancel_order(
    order_id: str,
    customer_id: str = Depends(get_customer_id),
    service: ReservationService = Depends(get_reservation_service),
):
    try:
        order = service.cancel_reservation(customer_id, order_id)
    except TicketbookError as exc:
        raise _http_error(exc) from exc
    return _order_response(service, order)


# -----------------------------
# Notification outbox
# -----------------------------
@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    repo = OutboxRepository(db)
    item = repo.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )

    repo.mark_published(item, published_at=clock())
    return _outbox_response(item)
