"""
Statement Email Scheduler -- Statement Generation

Builds a customer's account statement for a reporting period from the
backend's invoices and incoming payments.

Steps:
  1. Look up the business partner (missing partner -> StatementGenerationError)
  2. Keep invoices dated inside the period; closed ("C") and cancelled ("X")
     invoices only when ``include_closed_invoices`` is set
  3. Keep payments dated inside the period
  4. Sort all lines by date and carry a running balance from the opening
     balance (debits add, credits subtract)
  5. Total invoices, payments and credit notes; closing balance
  6. Age every open invoice with a positive balance into
     current / 1-30 / 31-60 / 61-90 / 90+ day buckets

``build_statement`` is the pure part; ``BackendStatementGenerator`` wires
it to ``BackendApiClient``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable

from .api_client import BackendApiClient, BackendApiError
from .models import (
    AgingSummary,
    CustomerInfo,
    CustomerStatement,
    DocumentType,
    StatementLine,
    StatementRequest,
)

logger = logging.getLogger(__name__)


class StatementGenerationError(Exception):
    """A statement could not be generated for a customer."""

    def __init__(self, card_code: str, reason: str):
        self.card_code = card_code
        self.reason = reason
        super().__init__(f"Statement for {card_code} failed: {reason}")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CLOSED_STATUSES = {"C", "X"}

_INVOICE_STATUS_LABELS = {
    "O": "Open",
    "C": "Closed",
    "X": "Cancelled",
}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def parse_doc_date(raw: Any) -> date | None:
    """Parse a backend date (``"2024-03-04"`` or ``"2024-03-04T00:00:00"``)."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _amount(raw: Any) -> float:
    try:
        return float(raw or 0)
    except (TypeError, ValueError):
        return 0.0


def invoice_status_label(code: str | None) -> str:
    return _INVOICE_STATUS_LABELS.get(code or "", "Unknown")


def days_overdue(due: date | None, as_of: date) -> int:
    """Days past ``due`` as of ``as_of``; 0 when not yet due or no due date."""
    if due is None:
        return 0
    return max((as_of - due).days, 0)


def payment_method(payment: dict[str, Any]) -> str:
    """Derive the payment method from whichever sum is non-zero."""
    if _amount(payment.get("cashSum")) > 0:
        return "Cash"
    if _amount(payment.get("checkSum")) > 0:
        return "Check"
    if _amount(payment.get("transferSum")) > 0:
        return "Transfer"
    if _amount(payment.get("creditSum")) > 0:
        return "Credit Card"
    return "Other"


def customer_from_partner(card_code: str, partner: dict[str, Any]) -> CustomerInfo:
    return CustomerInfo(
        card_code=partner.get("cardCode") or card_code,
        card_name=partner.get("cardName") or "",
        email=partner.get("email"),
        phone=partner.get("phone1"),
        balance=_amount(partner.get("balance")),
        currency=partner.get("currency"),
    )


# ---------------------------------------------------------------------------
# Statement builder
# ---------------------------------------------------------------------------

def _invoice_line(invoice: dict[str, Any], doc_date: date, as_of: date) -> StatementLine:
    doc_num = str(invoice.get("docNum", ""))
    return StatementLine(
        date=doc_date,
        document_type=DocumentType.INVOICE.value,
        document_number=doc_num,
        description=f"Invoice #{doc_num}",
        debit=_amount(invoice.get("docTotal")),
        currency=invoice.get("docCurrency"),
        status=invoice_status_label(invoice.get("docStatus")),
        days_overdue=days_overdue(parse_doc_date(invoice.get("docDueDate")), as_of),
    )


def _payment_line(payment: dict[str, Any], doc_date: date) -> StatementLine:
    return StatementLine(
        date=doc_date,
        document_type=DocumentType.PAYMENT.value,
        document_number=str(payment.get("docNum", "")),
        reference=payment.get("transferReference") or payment.get("remarks"),
        description=f"Payment - {payment_method(payment)}",
        credit=_amount(payment.get("docTotal")),
        currency=payment.get("docCurrency"),
    )


def build_aging(invoices: list[dict[str, Any]], as_of: date) -> AgingSummary:
    """Bucket open invoice balances by days overdue."""
    aging = AgingSummary()
    for invoice in invoices:
        if invoice.get("docStatus") in _CLOSED_STATUSES:
            continue
        balance = _amount(invoice.get("docTotal")) - _amount(invoice.get("paidToDate"))
        if balance <= 0:
            continue
        due = parse_doc_date(invoice.get("docDueDate"))
        aging.add(days_overdue(due, as_of), balance)
    return aging


def build_statement(
    customer: CustomerInfo,
    invoices: list[dict[str, Any]],
    payments: list[dict[str, Any]],
    request: StatementRequest,
    generated_at: datetime | None = None,
) -> CustomerStatement:
    """Assemble a statement from raw backend invoice and payment dicts."""
    generated_at = generated_at or datetime.now(timezone.utc)
    as_of = generated_at.date()

    statement = CustomerStatement(
        customer=customer,
        from_date=request.from_date,
        to_date=request.to_date,
        generated_at=generated_at,
    )

    lines: list[StatementLine] = []
    for invoice in invoices:
        doc_date = parse_doc_date(invoice.get("docDate"))
        if doc_date is None or not (request.from_date <= doc_date <= request.to_date):
            continue
        if not request.include_closed_invoices and invoice.get("docStatus") in _CLOSED_STATUSES:
            continue
        lines.append(_invoice_line(invoice, doc_date, as_of))

    for payment in payments:
        doc_date = parse_doc_date(payment.get("docDate"))
        if doc_date is None or not (request.from_date <= doc_date <= request.to_date):
            continue
        lines.append(_payment_line(payment, doc_date))

    # Stable sort keeps invoices ahead of payments on the same day.
    lines.sort(key=lambda line: line.date)

    running = statement.opening_balance
    for line in lines:
        running += line.debit - line.credit
        line.balance = running
    statement.lines = lines

    statement.total_invoices = sum(
        line.debit for line in lines if line.document_type == DocumentType.INVOICE.value
    )
    statement.total_payments = sum(
        line.credit for line in lines if line.document_type == DocumentType.PAYMENT.value
    )
    statement.total_credit_notes = sum(
        line.credit for line in lines if line.document_type == DocumentType.CREDIT_NOTE.value
    )
    statement.closing_balance = running
    statement.aging = build_aging(invoices, as_of)
    return statement


# ---------------------------------------------------------------------------
# Backend-backed generator
# ---------------------------------------------------------------------------

class BackendStatementGenerator:
    """``StatementGenerator`` that pulls documents from the backend API."""

    def __init__(
        self,
        client: BackendApiClient,
        clock: Callable[[], datetime] | None = None,
    ):
        self.client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_statement(self, card_code: str, request: StatementRequest) -> CustomerStatement:
        """Generate ``card_code``'s statement for the requested period.

        Raises:
            StatementGenerationError: If the customer is unknown or the
                backend cannot be reached.
        """
        try:
            partner = self.client.get_business_partner(card_code)
            if partner is None:
                raise StatementGenerationError(card_code, "Customer not found")
            invoices = self.client.get_customer_invoices(card_code)
            payments = self.client.get_customer_payments(card_code)
        except BackendApiError as exc:
            raise StatementGenerationError(card_code, exc.message) from exc

        statement = build_statement(
            customer_from_partner(card_code, partner),
            invoices,
            payments,
            request,
            generated_at=self._clock(),
        )
        logger.debug(
            "Built statement for %s: %d lines, closing %.2f",
            card_code, len(statement.lines), statement.closing_balance,
        )
        return statement
