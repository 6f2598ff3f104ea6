"""
Statement Email Scheduler -- Statement Mailer

Renders statement emails with Jinja2 and delivers them over SMTP.

Responsibilities:
  1. Build the subject: "{Weekly|Monthly} Statement - {from} - {to}"
  2. Render the statement body (summary table + 10 most recent lines)
     and wrap it in the shared HTML layout
  3. Derive a plain-text alternative from the HTML
  4. Send via smtplib (STARTTLS + login when configured)
  5. Report the outcome as True/False; render and delivery errors never propagate

When email is disabled in configuration, sends are logged and reported
as successful without contacting any server.

Usage:
    from statement_emails.mailer import SmtpStatementMailer

    mailer = SmtpStatementMailer(cfg.email)
    ok = mailer.send_statement_email(
        "ap@customer.com", "Customer Ltd", statement,
        date(2024, 3, 4), date(2024, 3, 10), "Weekly",
    )
"""

from __future__ import annotations

import html
import logging
import re
import smtplib
import ssl
from datetime import date, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from .config import TEMPLATE_DIR, EmailSettings
from .models import CustomerStatement

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Date format: "Mar 04, 2024"
_DATE_FORMAT = "%b %d, %Y"

_BODY_TEMPLATE = "statement_email.html"
_LAYOUT_TEMPLATE = "layout.html"

_RECENT_LINE_LIMIT = 10


# ---------------------------------------------------------------------------
# Format helpers
# ---------------------------------------------------------------------------

def format_date(d: date | datetime | None) -> str:
    """Format a date as 'Mon DD, YYYY' (e.g. 'Mar 04, 2024')."""
    if d is None:
        return ""
    return d.strftime(_DATE_FORMAT)


def format_amount(amount: float | None, currency: str | None = None, show_zero: bool = False) -> str:
    """Format an amount as '1,234.50 USD'.

    Zero renders as '-' unless ``show_zero`` is set.
    """
    amount = amount or 0.0
    if not show_zero and amount == 0:
        return "-"
    formatted = f"{amount:,.2f}"
    if currency and currency.strip():
        return f"{formatted} {currency}"
    return formatted


def period_label(from_date: date, to_date: date) -> str:
    return f"{format_date(from_date)} - {format_date(to_date)}"


def build_statement_subject(frequency_label: str, from_date: date, to_date: date) -> str:
    return f"{frequency_label} Statement - {period_label(from_date, to_date)}"


def html_to_plaintext(html_content: str) -> str:
    """Convert a rendered HTML email body to a plain-text alternative."""
    text = html_content

    # Drop head/style blocks entirely
    text = re.sub(r"<(head|style)[^>]*>.*?</\1>", "", text, flags=re.IGNORECASE | re.DOTALL)

    # Block elements become line breaks
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</(p|h\d|tr)>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</t[dh]>", " ", text, flags=re.IGNORECASE)

    # Extract link text + URL from anchor tags
    text = re.sub(
        r'<a[^>]+href=["\']([^"\']+)["\'][^>]*>(.*?)</a>',
        r"\2 (\1)",
        text,
        flags=re.IGNORECASE | re.DOTALL,
    )

    # Strip all remaining HTML tags
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)

    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# SmtpStatementMailer
# ---------------------------------------------------------------------------

class SmtpStatementMailer:
    """``StatementMailer`` that renders Jinja2 templates and sends via SMTP.

    Attributes:
        settings: The EmailSettings section of the configuration.
        env: The Jinja2 Environment loading from ``template_dir``.
    """

    def __init__(self, settings: EmailSettings, template_dir: str | Path | None = None):
        self.settings = settings
        self.template_dir = Path(template_dir) if template_dir else TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["format_date"] = format_date
        self.env.filters["format_amount"] = format_amount

    # -------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------

    def render_statement_body(
        self,
        to_name: str,
        statement: CustomerStatement,
        from_date: date,
        to_date: date,
        frequency_label: str,
    ) -> str:
        """Render the statement content (without the outer layout)."""
        template = self.env.get_template(_BODY_TEMPLATE)
        return template.render(
            to_name=to_name,
            frequency_label=frequency_label,
            period_label=period_label(from_date, to_date),
            currency=statement.currency,
            summary_rows=[
                ("Opening Balance", statement.opening_balance),
                ("Total Invoices", statement.total_invoices),
                ("Total Payments", statement.total_payments),
                ("Total Credit Notes", statement.total_credit_notes),
                ("Closing Balance", statement.closing_balance),
            ],
            recent_lines=statement.recent_lines(_RECENT_LINE_LIMIT),
            statements_url=self.settings.statements_url,
        )

    def wrap_in_layout(self, content: str, title: str) -> str:
        template = self.env.get_template(_LAYOUT_TEMPLATE)
        return template.render(
            content=content,
            title=title,
            company_name=self.settings.company_name,
            year=datetime.now().year,
        )

    # -------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------

    def send_statement_email(
        self,
        to_email: str,
        to_name: str,
        statement: CustomerStatement,
        from_date: date,
        to_date: date,
        frequency_label: str,
    ) -> bool:
        try:
            subject = build_statement_subject(frequency_label, from_date, to_date)
            body = self.render_statement_body(to_name, statement, from_date, to_date, frequency_label)
        except (TemplateError, TypeError, ValueError) as exc:
            logger.error("Failed to render statement email for %s: %s", to_email, exc)
            return False
        return self.send_email(to_email, to_name, subject, body)

    def send_email(
        self,
        to_email: str,
        to_name: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """Send one email.  Returns False on any build or delivery error."""
        if not self.settings.enabled:
            logger.info(
                "Email sending is disabled. Would have sent email to %s with subject: %s",
                to_email, subject,
            )
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["From"] = formataddr((self.settings.from_name, self.settings.from_email))
            msg["To"] = formataddr((to_name, to_email))
            msg["Subject"] = subject
            msg.attach(MIMEText(text_body or html_to_plaintext(html_body), "plain", "utf-8"))
            msg.attach(MIMEText(self.wrap_in_layout(html_body, subject), "html", "utf-8"))
            port = int(self.settings.smtp_port)
        except (TemplateError, TypeError, ValueError) as exc:
            logger.error("Failed to build email to %s with subject %s: %s", to_email, subject, exc)
            return False

        try:
            with smtplib.SMTP(
                self.settings.smtp_host,
                port,
                timeout=self.settings.timeout_seconds,
            ) as server:
                if self.settings.enable_ssl:
                    server.starttls(context=ssl.create_default_context())
                if self.settings.smtp_username:
                    server.login(self.settings.smtp_username, self.settings.smtp_password)
                server.sendmail(self.settings.from_email, [to_email], msg.as_string())
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed for %s", self.settings.smtp_username)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s with subject %s: %s", to_email, subject, exc)
            return False

        logger.info("Email sent successfully to %s with subject: %s", to_email, subject)
        return True
