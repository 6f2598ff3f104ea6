"""
Statement Email Scheduler -- Scheduler Loop

Decides on every poll whether the weekly and/or monthly statement batch is
due and, if so, generates and emails one statement per opted-in customer.

Per tick, for Weekly then Monthly:

    1. Schedule disabled -> stop, touch nothing
    2. Read the cadence's last-sent marker from the settings store
    3. Compute the most recent schedule point for ``now``
    4. Due iff the marker is missing or earlier than that point
    5. Due -> reporting period, recipients, generate + send per recipient,
       then persist ``marker = schedule point`` (never ``now``)

A failure for one recipient never stops the batch or the marker write,
and a failure in one cadence never stops the other.

Usage::

    scheduler = StatementEmailScheduler(
        cfg.statement_emails, settings_store, portal_users, generator, mailer,
    )
    result = scheduler.run_tick()
    print(result.summary())

    stop = threading.Event()
    scheduler.run_forever(stop)      # blocks until stop.set()
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from .config import POLL_INTERVAL_MINUTES, StatementScheduleConfig
from .models import (
    Cadence,
    CadenceRun,
    Recipient,
    RecipientFailure,
    RecipientSource,
    ReportingPeriod,
    SettingsStore,
    StatementGenerator,
    StatementMailer,
    StatementRequest,
    TickResult,
)
from .schedule import as_utc, is_due, period_for, schedule_point_for
from .settings_store import read_last_sent, write_last_sent

logger = logging.getLogger(__name__)


class StatementEmailScheduler:
    """Periodic weekly/monthly statement dispatcher.

    All collaborators are injected.  ``clock`` returns the current time
    and defaults to ``datetime.now(timezone.utc)``.
    """

    def __init__(
        self,
        settings: StatementScheduleConfig,
        store: SettingsStore,
        recipients: RecipientSource,
        generator: StatementGenerator,
        mailer: StatementMailer,
        clock: Callable[[], datetime] | None = None,
        poll_interval_seconds: float = POLL_INTERVAL_MINUTES * 60,
        run_on_start: bool = False,
    ):
        self.settings = settings
        self.store = store
        self.recipients = recipients
        self.generator = generator
        self.mailer = mailer
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.poll_interval_seconds = poll_interval_seconds
        self.run_on_start = run_on_start

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run_tick(self, now: datetime | None = None) -> TickResult:
        """Evaluate both cadences once and dispatch whichever is due."""
        now_utc = as_utc(now) if now is not None else as_utc(self._clock())
        result = TickResult(now=now_utc)

        if not self.settings.enabled:
            result.disabled = True
            logger.debug("Statement emails disabled; skipping tick")
            return result

        for cadence in (Cadence.WEEKLY, Cadence.MONTHLY):
            run = CadenceRun(cadence=cadence)
            result.runs[cadence] = run
            try:
                self._process_cadence(cadence, now_utc, run)
            except Exception as exc:
                run.error = str(exc) or exc.__class__.__name__
                logger.exception("Error processing %s statement emails", cadence.label.lower())

        return result

    def _process_cadence(self, cadence: Cadence, now_utc: datetime, run: CadenceRun) -> None:
        run.last_sent = read_last_sent(self.store, cadence)
        run.schedule_point = schedule_point_for(cadence, now_utc, self.settings)
        run.due = is_due(run.last_sent, run.schedule_point)

        if not run.due:
            logger.debug(
                "%s statements not due (last sent %s, schedule point %s)",
                cadence.label, run.last_sent, run.schedule_point,
            )
            return

        run.period = period_for(cadence, run.schedule_point)
        self._send_statements(cadence, run.period, run)

        write_last_sent(self.store, cadence, run.schedule_point)
        run.marker_written = True

        logger.info(
            "%s statements sent: %d for period %s - %s",
            cadence.label, run.sent, run.period.from_date, run.period.to_date,
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _send_statements(self, cadence: Cadence, period: ReportingPeriod, run: CadenceRun) -> None:
        recipients = self.recipients.list_statement_recipients()
        run.recipients = len(recipients)

        for recipient in recipients:
            if not recipient.email or not recipient.email.strip():
                continue
            self._send_one(cadence, period, recipient, run)

    def _send_one(
        self,
        cadence: Cadence,
        period: ReportingPeriod,
        recipient: Recipient,
        run: CadenceRun,
    ) -> None:
        request = StatementRequest(
            from_date=period.from_date,
            to_date=period.to_date,
            include_closed_invoices=self.settings.include_closed_invoices,
        )
        try:
            statement = self.generator.get_statement(recipient.card_code, request)
        except Exception as exc:
            logger.error(
                "Failed to generate %s statement for %s: %s",
                cadence.label, recipient.card_code, exc,
            )
            run.failures.append(
                RecipientFailure(recipient.card_code, recipient.email, "generate", str(exc))
            )
            return

        email = recipient.email.strip()
        run.attempted += 1
        try:
            sent = self.mailer.send_statement_email(
                email,
                recipient.display_name,
                statement,
                period.from_date,
                period.to_date,
                cadence.label,
            )
        except Exception as exc:
            logger.warning(
                "Failed to send %s statement email to %s (%s): %s",
                cadence.label, email, recipient.card_code, exc,
            )
            run.failures.append(RecipientFailure(recipient.card_code, email, "send", str(exc)))
            return

        if sent:
            run.sent += 1
        else:
            logger.warning(
                "Failed to send %s statement email to %s (%s)",
                cadence.label, email, recipient.card_code,
            )
            run.failures.append(
                RecipientFailure(recipient.card_code, email, "send", "mailer reported failure")
            )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self, stop_event: threading.Event) -> None:
        """Wait one poll interval, tick, repeat until ``stop_event`` is set.

        The event is only checked between ticks; a tick in progress always
        completes.
        """
        logger.info(
            "Statement email scheduler started (poll every %.0f s)",
            self.poll_interval_seconds,
        )
        if self.run_on_start and not stop_event.is_set():
            self._safe_tick()

        while not stop_event.wait(self.poll_interval_seconds):
            self._safe_tick()

        logger.info("Statement email scheduler stopped")

    def _safe_tick(self) -> TickResult | None:
        try:
            return self.run_tick()
        except Exception:
            logger.exception("Error processing statement emails")
            return None
