import logging
import os
import threading
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from ticketbook.application.reservation_service import ReservationService
from ticketbook.domain.clock import Clock, utc_now
from ticketbook.infrastructure.db.session import get_db_session
from ticketbook.infrastructure.repositories.order_repository import OrderRepository


logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
SWEEP_BATCH_SIZE = int(os.getenv("SWEEP_BATCH_SIZE", "100"))


@dataclass
class SweepResult:
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0


class ExpirySweeper:
    """
    Periodic worker that expires lapsed PENDING_PAYMENT orders and
    returns their capacity to the ledger.

    Each order is expired in its own transaction, so one failing row
    never blocks the rest of the batch; it is simply picked up again on
    the next tick. Expire is a conditional update, which makes
    overlapping ticks (or several processes) harmless.
    """

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        clock: Clock = utc_now,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        batch_size: int = SWEEP_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep_once(self) -> SweepResult:
        result = SweepResult()

        with get_db_session(self.session_factory) as db:
            order_ids = OrderRepository(db).list_expired_pending_ids(
                now=self.clock(),
                limit=self.batch_size,
            )
        result.scanned = len(order_ids)

        for order_id in order_ids:
            try:
                with get_db_session(self.session_factory) as db:
                    expired = ReservationService(db, clock=self.clock).expire_reservation(order_id)
            except Exception:
                result.failed += 1
                logger.exception(
                    "Failed to expire order_id=%s, retrying next tick",
                    order_id,
                )
                continue

            if expired:
                result.expired += 1
            else:
                result.skipped += 1

        if result.scanned:
            logger.info(
                "Expiry sweep scanned=%s expired=%s skipped=%s failed=%s",
                result.scanned,
                result.expired,
                result.skipped,
                result.failed,
            )
        return result

    def start(self) -> None:
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="expiry-sweeper",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        logger.info("Expiry sweeper started (interval=%.1fs)", self.interval_seconds)

        # First tick runs immediately so holds lapsed during downtime are reclaimed.
        while True:
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed, retrying next tick")

            if self._stop_event.wait(self.interval_seconds):
                break

        logger.info("Expiry sweeper stopped")
