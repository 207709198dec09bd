# ticketbook/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from ticketbook.domain.exceptions import InvalidStateTransitionError


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class TicketStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    USED = "USED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


class OrderStateMachine:
    """
    Central lifecycle controller for order (reservation) transitions.
    PENDING_PAYMENT is the only non-terminal state.
    """

    _ALLOWED_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
        OrderStatus.PENDING_PAYMENT: {
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
            OrderStatus.EXPIRED,
        },
        OrderStatus.CONFIRMED: set(),
        OrderStatus.CANCELLED: set(),
        OrderStatus.EXPIRED: set(),
    }

    # States that hand reserved capacity back to the ledger.
    RELEASING_STATES: Set[OrderStatus] = {
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    }

    @classmethod
    def can_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: OrderStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def releases_capacity(cls, status: OrderStatus) -> bool:
        cls._ensure_valid_status(status)
        return status in cls.RELEASING_STATES

    @classmethod
    def get_allowed_transitions(
        cls, status: OrderStatus
    ) -> Set[OrderStatus]:
        """
        Returns allowed next states from current state.
        """
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: OrderStatus) -> None:
        if not isinstance(status, OrderStatus):
            raise TypeError(
                f"Expected OrderStatus, got {type(status)}"
            )
