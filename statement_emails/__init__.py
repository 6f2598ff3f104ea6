"""Statement Email Scheduler - Weekly and Monthly Customer Statements.

Periodically decides whether the weekly and/or monthly statement batch is
due, generates a statement per opted-in customer portal user from the
backend API, and emails it.  Last-sent markers are kept in the SQLite
settings store so a restart never re-sends a period.
"""

from .models import (
    AgingSummary,
    Cadence,
    CadenceRun,
    CustomerInfo,
    CustomerStatement,
    DayOfWeek,
    PortalUser,
    Recipient,
    RecipientFailure,
    ReportingPeriod,
    StatementLine,
    StatementRequest,
    TickResult,
)

from .scheduler import StatementEmailScheduler

__all__ = [
    "AgingSummary",
    "Cadence",
    "CadenceRun",
    "CustomerInfo",
    "CustomerStatement",
    "DayOfWeek",
    "PortalUser",
    "Recipient",
    "RecipientFailure",
    "ReportingPeriod",
    "StatementEmailScheduler",
    "StatementLine",
    "StatementRequest",
    "TickResult",
]
