"""
Job scheduling: intervals, isolation between jobs and the tick lock.
"""

from dataclasses import replace
from datetime import date, datetime, timedelta

from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.services.scheduler import SchedulerRunner
from app.services.sweep import SweepResult

ALL_JOBS = {"reminders", "generation", "overdue", "late_fees", "cleanup"}


class TestInvoiceScheduler:
    def test_first_tick_runs_everything(self, services):
        results = services.scheduler.tick()
        assert set(results) == ALL_JOBS
        assert all(isinstance(r, SweepResult) for r in results.values())

    def test_intervals(self, services):
        start = datetime(2025, 1, 15, 9, 0)
        scheduler = services.scheduler
        scheduler.tick(start)

        assert scheduler.tick(start + timedelta(minutes=30)) == {}
        assert set(scheduler.tick(start + timedelta(hours=1))) == {"reminders"}
        assert set(scheduler.tick(start + timedelta(days=1))) == ALL_JOBS

    def test_failing_job_does_not_stop_others(self, services):
        scheduler = services.scheduler

        def explode():
            raise RuntimeError("disk full")

        scheduler.jobs["overdue"] = explode
        now = datetime(2025, 1, 15, 9, 0)
        results = scheduler.tick(now)

        assert "overdue" not in results
        assert ALL_JOBS - {"overdue"} <= set(results)
        assert scheduler.last_run["overdue"] == now

    def test_generation_combines_recurring_and_scheduled(self, services, acme):
        items = [{"description": "Support", "rate": "200"}]
        services.recurring.create_pattern(acme["client_id"], "weekly", items)
        services.recurring.schedule_invoice(acme["client_id"], items, scheduled_date=date(2025, 1, 10))

        result = services.scheduler.tick_generation()

        assert (result.processed, result.succeeded) == (2, 2)
        assert services.invoices.list_invoices()[1] == 2

    def test_reminders_job_sends_due_reminders(self, services, make_invoice, email_sender):
        invoice = make_invoice(issued_date=date(2024, 12, 20), due_date=date(2025, 1, 17))
        services.invoices.send_invoice(invoice["id"])

        result = services.scheduler.tick_reminders()

        assert result.succeeded == 1
        assert email_sender.templates() == ["invoice_sent", "invoice_reminder_upcoming"]


class TestSchedulerRunner:
    def test_run_once_skips_while_locked(self, services):
        runner = SchedulerRunner(services.scheduler, poll_seconds=1)
        runner._tick_lock.acquire()
        try:
            assert runner.run_once() is None
        finally:
            runner._tick_lock.release()
        assert set(runner.run_once()) == ALL_JOBS

    def test_start_and_stop(self, services):
        runner = SchedulerRunner(services.scheduler, poll_seconds=60)
        runner.start()
        assert runner.is_running
        runner.stop(timeout=5)
        assert not runner.is_running

    def test_scheduler_is_on_by_default(self):
        assert Settings().scheduler_enabled

    def test_app_lifespan_starts_and_stops_runner(self, services, settings):
        app = create_app(services=services, settings=replace(settings, scheduler_enabled=True))

        with TestClient(app):
            assert app.state.scheduler_runner.is_running

        assert not app.state.scheduler_runner.is_running
