# ticketbook/infrastructure/repositories/order_repository.py

from datetime import datetime

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select, update

from ticketbook.infrastructure.db.models import Order
from ticketbook.domain.state_machine import OrderStateMachine, OrderStatus


class OrderRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        order_id: str,
    ) -> Order | None:

        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_reference(
        self,
        payment_reference: str,
    ) -> Order | None:

        stmt = select(Order).where(Order.payment_reference == payment_reference)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_pending_for_customer(
        self,
        customer_id: str,
        lock: bool = False,
    ) -> Order | None:
        """
        The customer's PENDING_PAYMENT order, whether or not its
        deadline has passed.
        """
        stmt = (
            select(Order)
            .where(Order.customer_id == customer_id)
            .where(Order.status == OrderStatus.PENDING_PAYMENT)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def get_active_pending_for_customer(
        self,
        customer_id: str,
        now: datetime,
    ) -> Order | None:

        stmt = (
            select(Order)
            .where(Order.customer_id == customer_id)
            .where(Order.status == OrderStatus.PENDING_PAYMENT)
            .where(Order.expires_at > now)
            .options(selectinload(Order.items))
        )
        return self.db.execute(stmt).scalars().first()

    def list_for_customer(self, customer_id: str) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.customer_id == customer_id)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_expired_pending_ids(
        self,
        now: datetime,
        limit: int,
    ) -> list[str]:

        stmt = (
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING_PAYMENT)
            .where(Order.expires_at <= now)
            .order_by(Order.expires_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, order: Order) -> Order:
        self.db.add(order)
        return order

    def transition_from_pending(
        self,
        order_id: str,
        to_status: OrderStatus,
        *,
        expires_after: datetime | None = None,
        expired_by: datetime | None = None,
        **values,
    ) -> bool:
        """
        Conditional PENDING_PAYMENT -> to_status update.

        Returns False when another actor moved the row first (or the
        deadline condition no longer holds); the caller must then
        leave capacity untouched.
        """
        OrderStateMachine.validate_transition(OrderStatus.PENDING_PAYMENT, to_status)

        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status == OrderStatus.PENDING_PAYMENT)
        )
        if expires_after is not None:
            stmt = stmt.where(Order.expires_at > expires_after)
        if expired_by is not None:
            stmt = stmt.where(Order.expires_at <= expired_by)

        stmt = stmt.values(status=to_status, **values).execution_options(
            synchronize_session=False
        )
        return self.db.execute(stmt).rowcount == 1

    def extend_deadline(
        self,
        order_id: str,
        now: datetime,
        new_expires_at: datetime,
    ) -> bool:
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status == OrderStatus.PENDING_PAYMENT)
            .where(Order.expires_at > now)
            .values(expires_at=new_expires_at)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
