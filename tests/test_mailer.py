"""Tests for statement_emails.mailer -- rendering, formatting and SMTP delivery."""

import smtplib
from datetime import date, datetime, timezone
from email import message_from_string

import pytest

from statement_emails.config import EmailSettings
from statement_emails.mailer import (
    SmtpStatementMailer,
    build_statement_subject,
    format_amount,
    format_date,
    html_to_plaintext,
)
from statement_emails.models import CustomerInfo, CustomerStatement, StatementLine

FROM = date(2024, 3, 4)
TO = date(2024, 3, 10)


def _statement(lines=None, name="Alpha Traders"):
    return CustomerStatement(
        customer=CustomerInfo(card_code="C001", card_name=name, currency="USD"),
        from_date=FROM,
        to_date=TO,
        generated_at=datetime(2024, 3, 11, 6, tzinfo=timezone.utc),
        total_invoices=1250.5,
        total_payments=250.0,
        closing_balance=1000.5,
        lines=lines or [],
    )


def _line(day, number, debit=0.0, credit=0.0, balance=0.0):
    return StatementLine(
        date=date(2024, 3, day),
        document_type="Invoice" if debit else "Payment",
        document_number=str(number),
        description=f"Invoice #{number}" if debit else "Payment - Cash",
        debit=debit,
        credit=credit,
        balance=balance,
    )


class FakeSMTP:
    """Stand-in for smtplib.SMTP that records calls."""

    instances: list["FakeSMTP"] = []
    fail_with: Exception | None = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, from_addr, to_addrs, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.sent.append((from_addr, to_addrs, msg))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def enabled_settings(monkeypatch):
    monkeypatch.delenv("SMTP_USERNAME", raising=False)
    monkeypatch.delenv("SMTP_PASSWORD", raising=False)
    return EmailSettings(
        enabled=True,
        smtp_host="smtp.test",
        smtp_port=2525,
        smtp_username="mailer",
        smtp_password="pw",
        from_email="statements@shop.test",
        from_name="Shop AR",
        application_url="https://portal.shop.test",
        company_name="Shop Inventory",
    )


# ============================================================================
# Formatting
# ============================================================================

class TestFormatting:

    @pytest.mark.parametrize("amount,currency,show_zero,expected", [
        (1234.5, "USD", False, "1,234.50 USD"),
        (1234.5, None, False, "1,234.50"),
        (1234.5, "  ", False, "1,234.50"),
        (0, "USD", False, "-"),
        (None, "USD", False, "-"),
        (0, "USD", True, "0.00 USD"),
        (-42.1, "EUR", False, "-42.10 EUR"),
    ])
    def test_format_amount(self, amount, currency, show_zero, expected):
        assert format_amount(amount, currency, show_zero) == expected

    def test_format_date(self):
        assert format_date(date(2024, 3, 4)) == "Mar 04, 2024"
        assert format_date(None) == ""

    def test_subject(self):
        assert build_statement_subject("Weekly", FROM, TO) == (
            "Weekly Statement - Mar 04, 2024 - Mar 10, 2024"
        )
        assert build_statement_subject("Monthly", date(2024, 1, 1), date(2024, 1, 31)) == (
            "Monthly Statement - Jan 01, 2024 - Jan 31, 2024"
        )

    def test_html_to_plaintext(self):
        html = (
            "<style>p {color: red}</style><p>Hello &amp; welcome</p>"
            '<a href="https://x.test/s">View</a><table><tr><td>A</td><td>B</td></tr></table>'
        )
        text = html_to_plaintext(html)
        assert "color" not in text
        assert "Hello & welcome" in text
        assert "View (https://x.test/s)" in text
        assert "A B" in text


# ============================================================================
# Rendering
# ============================================================================

class TestRendering:

    def test_body_contains_summary_and_link(self, enabled_settings):
        mailer = SmtpStatementMailer(enabled_settings)
        body = mailer.render_statement_body("Alpha Traders", _statement(), FROM, TO, "Weekly")
        assert "Weekly Statement" in body
        assert "Dear Alpha Traders," in body
        assert "Mar 04, 2024 - Mar 10, 2024" in body
        assert "1,250.50 USD" in body
        assert "0.00 USD" in body                   # opening balance forced to show
        assert "https://portal.shop.test/customer-portal/statements" in body
        assert "No transactions recorded for this period." in body

    def test_body_shows_ten_newest_lines(self, enabled_settings):
        lines = [_line(day, 100 + day, debit=10.0, balance=10.0 * day) for day in range(1, 13)]
        mailer = SmtpStatementMailer(enabled_settings)
        body = mailer.render_statement_body("Alpha", _statement(lines), FROM, TO, "Weekly")
        assert "Invoice #112" in body
        assert "Invoice #103" in body
        assert "Invoice #102" not in body
        assert "Invoice #101" not in body
        assert body.index("Invoice #112") < body.index("Invoice #103")
        assert "No transactions recorded" not in body

    def test_customer_name_is_escaped(self, enabled_settings):
        mailer = SmtpStatementMailer(enabled_settings)
        body = mailer.render_statement_body("<b>Evil</b>", _statement(), FROM, TO, "Weekly")
        assert "<b>Evil</b>" not in body
        assert "&lt;b&gt;Evil&lt;/b&gt;" in body

    def test_layout_wraps_content(self, enabled_settings):
        mailer = SmtpStatementMailer(enabled_settings)
        html = mailer.wrap_in_layout("<p>inner</p>", "Subject here")
        assert "<title>Subject here</title>" in html
        assert "<p>inner</p>" in html
        assert "Shop Inventory" in html


# ============================================================================
# Delivery
# ============================================================================

class TestDelivery:

    def test_disabled_logs_and_reports_success(self, fake_smtp, caplog):
        mailer = SmtpStatementMailer(EmailSettings(enabled=False))
        with caplog.at_level("INFO"):
            ok = mailer.send_statement_email("ap@alpha.test", "Alpha", _statement(), FROM, TO, "Weekly")
        assert ok is True
        assert fake_smtp.instances == []
        assert "Would have sent" in caplog.text

    def test_sends_multipart_message(self, fake_smtp, enabled_settings):
        mailer = SmtpStatementMailer(enabled_settings)
        ok = mailer.send_statement_email("ap@alpha.test", "Alpha", _statement(), FROM, TO, "Monthly")
        assert ok is True

        server = fake_smtp.instances[0]
        assert (server.host, server.port) == ("smtp.test", 2525)
        assert server.started_tls is True
        assert server.logged_in == ("mailer", "pw")

        from_addr, to_addrs, raw = server.sent[0]
        assert from_addr == "statements@shop.test"
        assert to_addrs == ["ap@alpha.test"]
        msg = message_from_string(raw)
        assert msg["Subject"] == "Monthly Statement - Mar 04, 2024 - Mar 10, 2024"
        assert msg.get_content_type() == "multipart/alternative"
        assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]

    def test_no_tls_or_login_when_not_configured(self, fake_smtp, enabled_settings):
        enabled_settings.enable_ssl = False
        enabled_settings.smtp_username = ""
        mailer = SmtpStatementMailer(enabled_settings)
        assert mailer.send_email("a@b.test", "A", "Hi", "<p>Hi</p>") is True
        server = fake_smtp.instances[0]
        assert server.started_tls is False
        assert server.logged_in is None

    @pytest.mark.parametrize("error", [
        smtplib.SMTPAuthenticationError(535, b"bad credentials"),
        smtplib.SMTPRecipientsRefused({"a@b.test": (550, b"no such user")}),
        ConnectionRefusedError("refused"),
        TimeoutError("timed out"),
    ])
    def test_delivery_errors_return_false(self, fake_smtp, enabled_settings, error):
        fake_smtp.fail_with = error
        mailer = SmtpStatementMailer(enabled_settings)
        assert mailer.send_email("a@b.test", "A", "Hi", "<p>Hi</p>") is False

    def test_missing_templates_return_false(self, fake_smtp, enabled_settings, tmp_path, caplog):
        mailer = SmtpStatementMailer(enabled_settings, template_dir=tmp_path)
        with caplog.at_level("ERROR"):
            ok = mailer.send_statement_email("ap@alpha.test", "Alpha", _statement(), FROM, TO, "Weekly")
        assert ok is False
        assert fake_smtp.instances == []
        assert "Failed to render statement email" in caplog.text

    def test_broken_layout_returns_false(self, fake_smtp, enabled_settings, tmp_path):
        (tmp_path / "statement_email.html").write_text("<p>{{ to_name }}</p>", encoding="utf-8")
        (tmp_path / "layout.html").write_text("{% if %}{{ content }}", encoding="utf-8")
        mailer = SmtpStatementMailer(enabled_settings, template_dir=tmp_path)
        ok = mailer.send_statement_email("ap@alpha.test", "Alpha", _statement(), FROM, TO, "Weekly")
        assert ok is False
        assert fake_smtp.instances == []

    def test_bad_port_returns_false(self, fake_smtp, enabled_settings):
        enabled_settings.smtp_port = "not-a-port"
        mailer = SmtpStatementMailer(enabled_settings)
        assert mailer.send_email("a@b.test", "A", "Hi", "<p>Hi</p>") is False
        assert fake_smtp.instances == []
