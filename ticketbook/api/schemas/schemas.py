from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ticketbook.domain.state_machine import EventStatus


class TicketTypeCreate(BaseModel):
    name: str = Field(min_length=1)
    price: int = Field(ge=0)
    total_quantity: int = Field(ge=0)
    sale_starts_at: datetime | None = None
    sale_ends_at: datetime | None = None


class EventCreate(BaseModel):
    title: str = Field(min_length=1)
    location: str | None = None
    starts_at: datetime
    ends_at: datetime
    status: EventStatus = EventStatus.ACTIVE
    max_tickets_per_order: int | None = Field(default=None, gt=0)
    ticket_types: list[TicketTypeCreate] = Field(min_length=1)

    @field_validator("ticket_types")
    @classmethod
    def ticket_type_names_unique(cls, value: list[TicketTypeCreate]) -> list[TicketTypeCreate]:
        names = [ticket_type.name for ticket_type in value]
        if len(names) != len(set(names)):
            raise ValueError("Ticket type names must be unique within an event")
        return value


class TicketTypeResponse(BaseModel):
    id: str
    name: str
    price: int
    total_quantity: int
    available_quantity: int
    is_active: bool


class EventResponse(BaseModel):
    id: str
    title: str
    location: str | None
    status: str
    starts_at: str
    ends_at: str
    max_tickets_per_order: int | None
    ticket_types: list[TicketTypeResponse]


class LineItemRequest(BaseModel):
    ticket_type_id: str
    quantity: int = Field(gt=0)


class RecipientInfoRequest(BaseModel):
    recipient_name: str = Field(min_length=1)
    recipient_phone: str = Field(pattern=r"^[+]?[0-9]{10,15}$")
    recipient_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    recipient_address: str | None = None
    recipient_notes: str | None = None


class CreateOrderRequest(BaseModel):
    event_id: str
    items: list[LineItemRequest] = Field(min_length=1)
    recipient_info: RecipientInfoRequest | None = None


class OrderItemResponse(BaseModel):
    ticket_type_id: str
    quantity: int
    unit_price: int


class TicketResponse(BaseModel):
    id: str
    ticket_type_id: str
    check_in_code: str
    status: str


class OrderResponse(BaseModel):
    order_id: str
    event_id: str
    status: str
    total_amount: int
    total_quantity: int
    currency: str
    created_at: str
    expires_at: str
    remaining_seconds: int | None = None
    completed_at: str | None = None
    items: list[OrderItemResponse]
    tickets: list[TicketResponse] = []


class PendingOrderResponse(BaseModel):
    order: OrderResponse | None = None
    message: str


class PaymentHandleResponse(BaseModel):
    order_id: str
    provider_order_id: str
    amount: int
    currency: str
    key_id: str


class RazorpayVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str
