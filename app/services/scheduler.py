# app/services/scheduler.py
"""
Background jobs for the invoice lifecycle.

``InvoiceScheduler`` has one public ``tick_*`` method per job so an admin
endpoint, a script or a test can run a job directly. ``tick(now)`` runs
whichever jobs are due according to their intervals:

    reminders     hourly   send due payment reminders
    generation    daily    recurring + date-scheduled invoices
    overdue       daily    mark past-due invoices overdue
    late_fees     daily    apply late fees to overdue invoices
    cleanup       daily    purge archived invoices past retention

``SchedulerRunner`` calls ``tick()`` from a daemon thread.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from app.clock import Clock, SystemClock
from app.config import Settings, get_settings
from app.services.invoices import InvoiceService
from app.services.late_fees import LateFeeService
from app.services.recurring import RecurringService
from app.services.reminders import ReminderService
from app.services.sweep import SweepResult

logger = logging.getLogger(__name__)


class InvoiceScheduler:
    def __init__(
        self,
        invoices_service: InvoiceService,
        reminders: ReminderService,
        recurring: RecurringService,
        late_fees: LateFeeService,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.invoices = invoices_service
        self.reminders = reminders
        self.recurring = recurring
        self.late_fees = late_fees
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.last_run: Dict[str, datetime] = {}

        daily = timedelta(seconds=self.settings.generation_interval_seconds)
        self.jobs: Dict[str, Callable[[], SweepResult]] = {
            "reminders": self.tick_reminders,
            "generation": self.tick_generation,
            "overdue": self.tick_overdue,
            "late_fees": self.tick_late_fees,
            "cleanup": self.tick_cleanup,
        }
        self.intervals: Dict[str, timedelta] = {
            "reminders": timedelta(seconds=self.settings.reminder_interval_seconds),
            "generation": daily,
            "overdue": daily,
            "late_fees": daily,
            "cleanup": daily,
        }

    def tick_reminders(self) -> SweepResult:
        return self.reminders.process_due()

    def tick_generation(self) -> SweepResult:
        """Recurring patterns first, then date-triggered scheduled invoices."""
        recurring = self.recurring.process_due()
        scheduled = self.recurring.process_scheduled()
        combined = SweepResult(
            processed=recurring.processed + scheduled.processed,
            succeeded=recurring.succeeded + scheduled.succeeded,
            failed=recurring.failed + scheduled.failed,
            skipped=recurring.skipped + scheduled.skipped,
            errors=recurring.errors + scheduled.errors,
        )
        return combined

    def tick_overdue(self) -> SweepResult:
        return self.invoices.check_overdue()

    def tick_late_fees(self) -> SweepResult:
        return self.late_fees.process_late_fees()

    def tick_cleanup(self) -> SweepResult:
        return self.invoices.purge_deleted()

    def due_jobs(self, now: datetime):
        for name, interval in self.intervals.items():
            last = self.last_run.get(name)
            if last is None or now - last >= interval:
                yield name

    def tick(self, now: Optional[datetime] = None) -> Dict[str, SweepResult]:
        """Run every job whose interval has elapsed; returns results by job name."""
        now = now or self.clock.now()
        results = {}
        for name in list(self.due_jobs(now)):
            # one job failing must not starve the others
            try:
                results[name] = self.jobs[name]()
            except Exception:
                logger.exception("Scheduled job %s failed", name)
            finally:
                self.last_run[name] = now
        return results


class SchedulerRunner:
    """Polls ``InvoiceScheduler.tick()`` on a daemon thread."""

    def __init__(self, scheduler: InvoiceScheduler, poll_seconds: int = 60):
        self.scheduler = scheduler
        self.poll_seconds = poll_seconds
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Optional[Dict[str, SweepResult]]:
        """Run one tick unless another is still in progress."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous scheduler tick still running; skipping")
            return None
        try:
            return self.scheduler.tick()
        finally:
            self._tick_lock.release()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="invoice-scheduler", daemon=True)
        self._thread.start()
        logger.info("Invoice scheduler started (poll every %ss)", self.poll_seconds)

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Invoice scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Scheduler tick raised")
            self._stop_event.wait(timeout=self.poll_seconds)
