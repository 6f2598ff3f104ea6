"""Data models for the Statement Email Scheduler.

Plain dataclasses and enums for recipients, statements, reporting periods
and per-tick dispatch results, plus the ``Protocol`` interfaces the
scheduler uses to talk to its collaborators (settings store, recipient
source, statement generator, mailer).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Protocol


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Cadence(Enum):
    """The two independent recurring statement schedules.

    The value doubles as the frequency label shown in email subjects
    ("Weekly Statement - ...").
    """

    WEEKLY = "Weekly"
    MONTHLY = "Monthly"

    @property
    def label(self) -> str:
        return self.value


class DayOfWeek(IntEnum):
    """Day of week numbered like ``datetime.weekday()`` (Monday = 0)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, raw: str | int | DayOfWeek) -> DayOfWeek:
        """Accept a day name ("Friday", "fri") or an integer 0-6.

        Raises:
            ValueError: If the value does not name a day.
        """
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"Not a day of week: {raw!r}")
        if isinstance(raw, int):
            return cls(raw)
        text = str(raw).strip().upper()
        if text.isdigit():
            return cls(int(text))
        for day in cls:
            if day.name == text or day.name[:3] == text:
                return day
        raise ValueError(f"Not a day of week: {raw!r}")

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


class DocumentType(Enum):
    """Kinds of documents that appear as statement lines."""

    INVOICE = "Invoice"
    PAYMENT = "Payment"
    CREDIT_NOTE = "Credit Note"


# ---------------------------------------------------------------------------
# Schedule value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReportingPeriod:
    """Inclusive date-only window a generated statement covers."""

    from_date: date
    to_date: date

    @property
    def days(self) -> int:
        return (self.to_date - self.from_date).days + 1

    def contains(self, d: date) -> bool:
        return self.from_date <= d <= self.to_date

    def __str__(self) -> str:
        return f"{self.from_date.isoformat()} - {self.to_date.isoformat()}"


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Recipient:
    """A customer-portal user eligible to receive scheduled statements."""

    card_code: str
    card_name: str
    email: str

    @property
    def display_name(self) -> str:
        """Name used in the email greeting, "Customer" when blank."""
        return self.card_name.strip() or "Customer"


@dataclass
class PortalUser:
    """A row of the customer_portal_users table."""

    card_code: str
    card_name: str = ""
    email: str = ""
    receive_statements: bool = True
    is_active: bool = True
    status: str = "Active"

    @property
    def is_statement_recipient(self) -> bool:
        """True when this user should receive scheduled statements."""
        return (
            self.is_active
            and self.status == "Active"
            and self.receive_statements
            and bool(self.email and self.email.strip())
        )

    def to_recipient(self) -> Recipient:
        return Recipient(
            card_code=self.card_code,
            card_name=self.card_name,
            email=self.email.strip(),
        )


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass
class CustomerInfo:
    """Business partner details printed at the top of a statement."""

    card_code: str
    card_name: str = ""
    email: str | None = None
    phone: str | None = None
    balance: float = 0.0
    currency: str | None = None


@dataclass
class StatementRequest:
    """Parameters for generating one customer's statement."""

    from_date: date
    to_date: date
    include_closed_invoices: bool = True
    currency: str | None = None


@dataclass
class StatementLine:
    """One invoice, payment or credit note on a statement."""

    date: date
    document_type: str
    document_number: str
    description: str | None = None
    reference: str | None = None
    debit: float = 0.0
    credit: float = 0.0
    balance: float = 0.0                    # running balance after this line
    currency: str | None = None
    status: str | None = None
    days_overdue: int | None = None


@dataclass
class AgingSummary:
    """Open balance bucketed by days overdue."""

    current: float = 0.0
    days_1_to_30: float = 0.0
    days_31_to_60: float = 0.0
    days_61_to_90: float = 0.0
    over_90_days: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.current
            + self.days_1_to_30
            + self.days_31_to_60
            + self.days_61_to_90
            + self.over_90_days
        )

    def add(self, days_overdue: int, amount: float) -> None:
        """Place ``amount`` into the bucket for ``days_overdue``."""
        if days_overdue <= 0:
            self.current += amount
        elif days_overdue <= 30:
            self.days_1_to_30 += amount
        elif days_overdue <= 60:
            self.days_31_to_60 += amount
        elif days_overdue <= 90:
            self.days_61_to_90 += amount
        else:
            self.over_90_days += amount


@dataclass
class CustomerStatement:
    """A generated account statement for one customer and period."""

    customer: CustomerInfo
    from_date: date
    to_date: date
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    opening_balance: float = 0.0
    total_invoices: float = 0.0
    total_payments: float = 0.0
    total_credit_notes: float = 0.0
    closing_balance: float = 0.0

    lines: list[StatementLine] = field(default_factory=list)
    aging: AgingSummary = field(default_factory=AgingSummary)

    @property
    def currency(self) -> str | None:
        return self.customer.currency

    def recent_lines(self, limit: int = 10) -> list[StatementLine]:
        """Most recent lines first, at most ``limit`` of them."""
        return sorted(self.lines, key=lambda line: line.date, reverse=True)[:limit]


# ---------------------------------------------------------------------------
# Dispatch results
# ---------------------------------------------------------------------------

@dataclass
class RecipientFailure:
    """Why one recipient did not get a statement in a dispatch batch."""

    card_code: str
    email: str
    stage: str                              # "generate" or "send"
    reason: str


@dataclass
class CadenceRun:
    """Outcome of evaluating one cadence during a tick."""

    cadence: Cadence
    schedule_point: datetime | None = None
    last_sent: datetime | None = None
    due: bool = False
    period: ReportingPeriod | None = None

    recipients: int = 0
    attempted: int = 0
    sent: int = 0
    failures: list[RecipientFailure] = field(default_factory=list)

    marker_written: bool = False
    error: str | None = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    def summary(self) -> str:
        if self.error:
            return f"{self.cadence.label}: error - {self.error}"
        if not self.due:
            return f"{self.cadence.label}: not due (last sent {self.last_sent})"
        return (
            f"{self.cadence.label}: sent {self.sent}/{self.attempted} "
            f"for {self.period} ({self.failed} failed)"
        )


@dataclass
class TickResult:
    """Aggregate outcome of one scheduler tick."""

    now: datetime
    disabled: bool = False
    runs: dict[Cadence, CadenceRun] = field(default_factory=dict)

    @property
    def weekly(self) -> CadenceRun | None:
        return self.runs.get(Cadence.WEEKLY)

    @property
    def monthly(self) -> CadenceRun | None:
        return self.runs.get(Cadence.MONTHLY)

    @property
    def total_sent(self) -> int:
        return sum(run.sent for run in self.runs.values())

    @property
    def errors(self) -> dict[Cadence, str]:
        return {c: run.error for c, run in self.runs.items() if run.error}

    def summary(self) -> str:
        """Return a human-readable summary string for CLI or logging."""
        if self.disabled:
            return "Statement emails are disabled; nothing evaluated."
        lines = [f"Tick at {self.now.isoformat()}"]
        for run in self.runs.values():
            lines.append(f"  {run.summary()}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------

class SettingsStore(Protocol):
    """Durable key/value settings used for the last-sent markers."""

    def get_value(self, key: str) -> str | None:
        ...

    def save_setting(self, key: str, value: str, modified_by: str | None = None) -> None:
        ...


class RecipientSource(Protocol):
    """Enumerates active, opted-in, email-bearing portal users."""

    def list_statement_recipients(self) -> list[Recipient]:
        ...


class StatementGenerator(Protocol):
    """Builds a customer statement; raises when it cannot."""

    def get_statement(self, card_code: str, request: StatementRequest) -> CustomerStatement:
        ...


class StatementMailer(Protocol):
    """Sends a statement email; reports failure by returning False."""

    def send_statement_email(
        self,
        to_email: str,
        to_name: str,
        statement: CustomerStatement,
        from_date: date,
        to_date: date,
        frequency_label: str,
    ) -> bool:
        ...
