"""Statement Email Scheduler - Customer Portal Recipients.

Two halves:

* ``PortalUserStore`` -- the ``customer_portal_users`` table, and the
  query that selects who receives scheduled statements (active, status
  "Active", opted in, non-empty email).
* ``load_recipients_workbook`` -- parses a portal-user export workbook
  (``.xlsx``) into ``PortalUser`` records for ``import-recipients``.

Workbook layout (first sheet, header row 1; aliases are case-insensitive):

+----------------------+-------------------------------------------------+
| Field                | Accepted headers                                |
+======================+=================================================+
| card_code            | Card Code, CardCode, Customer Code              |
| card_name            | Card Name, CardName, Customer Name, Name        |
| email                | Email, E-mail, Email Address                    |
| receive_statements   | Receive Statements, Statements                  |
| is_active            | Active, Is Active                               |
| status               | Status                                          |
+----------------------+-------------------------------------------------+
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Union

import openpyxl
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from .database import connect, init_db, now_iso
from .models import PortalUser, Recipient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_HEADERS: dict[str, list[str]] = {
    "card_code": ["Card Code", "CardCode", "Customer Code"],
    "card_name": ["Card Name", "CardName", "Customer Name", "Name"],
    "email": ["Email", "E-mail", "Email Address"],
    "receive_statements": ["Receive Statements", "Statements"],
    "is_active": ["Active", "Is Active"],
    "status": ["Status"],
}

# Cell values that should be treated as null / unknown.
_NULL_SIGNALS: set[str | None] = {"", "#N/A", "N/A", "#REF!", None}


# ---------------------------------------------------------------------------
# PortalUserStore
# ---------------------------------------------------------------------------

class PortalUserStore:
    """Customer portal users persisted in SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        init_db(self.db_path)

    def upsert_user(self, user: PortalUser) -> None:
        """Insert a user or update the existing row with the same card code."""
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO customer_portal_users
                    (card_code, card_name, email, receive_statements,
                     is_active, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(card_code) DO UPDATE SET
                    card_name = excluded.card_name,
                    email = excluded.email,
                    receive_statements = excluded.receive_statements,
                    is_active = excluded.is_active,
                    status = excluded.status,
                    updated_at = excluded.created_at
                """,
                (
                    user.card_code,
                    user.card_name,
                    user.email or None,
                    int(user.receive_statements),
                    int(user.is_active),
                    user.status,
                    now_iso(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def upsert_users(self, users: list[PortalUser]) -> int:
        for user in users:
            self.upsert_user(user)
        logger.info("Upserted %d portal users", len(users))
        return len(users)

    def get_user(self, card_code: str) -> PortalUser | None:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM customer_portal_users WHERE card_code = ?",
                (card_code,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return PortalUser(
            card_code=row["card_code"],
            card_name=row["card_name"],
            email=row["email"] or "",
            receive_statements=bool(row["receive_statements"]),
            is_active=bool(row["is_active"]),
            status=row["status"],
        )

    def count_users(self) -> int:
        conn = connect(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM customer_portal_users").fetchone()[0]
        finally:
            conn.close()

    def list_statement_recipients(self) -> list[Recipient]:
        """Active, opted-in users that have an email address."""
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT card_code, card_name, email
                FROM customer_portal_users
                WHERE is_active = 1
                  AND status = 'Active'
                  AND receive_statements = 1
                  AND email IS NOT NULL
                  AND TRIM(email) <> ''
                ORDER BY card_code
                """
            ).fetchall()
        finally:
            conn.close()
        return [
            Recipient(
                card_code=row["card_code"],
                card_name=row["card_name"] or "",
                email=row["email"].strip(),
            )
            for row in rows
        ]


# ---------------------------------------------------------------------------
# Workbook import
# ---------------------------------------------------------------------------

@dataclass
class RecipientImportResult:
    """Aggregated output from :func:`load_recipients_workbook`."""

    users: list[PortalUser] = field(default_factory=list)
    source_file: str | None = None
    rows_scanned: int = 0
    rows_skipped: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def statement_recipients(self) -> list[PortalUser]:
        return [u for u in self.users if u.is_statement_recipient]


def load_recipients_workbook(source: Union[str, Path, IO[bytes]]) -> RecipientImportResult:
    """Parse a portal-user export workbook.

    Rows without a card code are skipped.  Missing optional columns take
    the ``PortalUser`` defaults (opted in, active, status "Active").

    Raises:
        FileNotFoundError: If a path is given and does not exist.
        ValueError: If no card-code column can be found.
    """
    result = RecipientImportResult()

    wb = _open_workbook(source)
    if isinstance(source, (str, Path)):
        result.source_file = str(source)

    ws = wb.worksheets[0]
    header_map = _build_header_map(ws, _HEADERS)
    if "card_code" not in header_map:
        raise ValueError(
            "Card Code column not found.  "
            f"Header row: {[cell.value for cell in ws[1]]}"
        )

    for row_number, row in enumerate(ws.iter_rows(min_row=2, values_only=False), start=2):
        result.rows_scanned += 1
        card_code = _clean_str(_cell_value(row, header_map, "card_code"))
        if not card_code:
            result.rows_skipped += 1
            continue

        email = _clean_str(_cell_value(row, header_map, "email"))
        if email and "@" not in email:
            result.warnings.append(f"Row {row_number}: invalid email {email!r} for {card_code}")
            email = ""

        user = PortalUser(
            card_code=card_code,
            card_name=_clean_str(_cell_value(row, header_map, "card_name")),
            email=email,
        )
        if "receive_statements" in header_map:
            user.receive_statements = _parse_bool(
                _cell_value(row, header_map, "receive_statements")
            )
        if "is_active" in header_map:
            user.is_active = _parse_bool(_cell_value(row, header_map, "is_active"))
        status = _clean_str(_cell_value(row, header_map, "status"))
        if status:
            user.status = status.capitalize()

        result.users.append(user)

    logger.info(
        "Parsed %d portal users (%d statement recipients, %d rows skipped)",
        len(result.users), len(result.statement_recipients), result.rows_skipped,
    )
    return result


def _open_workbook(source: Union[str, Path, IO[bytes]]) -> Workbook:
    """Open an openpyxl Workbook from a file path or bytes buffer."""
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"XLSX file not found: {path}")
        logger.info("Opening XLSX file: %s", path)
        return openpyxl.load_workbook(path, data_only=True)

    logger.info("Opening XLSX from bytes buffer")
    return openpyxl.load_workbook(source, data_only=True)


def _build_header_map(ws: Worksheet, header_spec: dict[str, list[str]]) -> dict[str, int]:
    """Map logical field names to 0-based column indices using row 1."""
    header_map: dict[str, int] = {}
    row1 = [
        str(cell.value).strip().lower() if cell.value is not None else None
        for cell in ws[1]
    ]
    for logical_name, aliases in header_spec.items():
        wanted = {a.lower() for a in aliases}
        for idx, header_text in enumerate(row1):
            if header_text in wanted:
                header_map[logical_name] = idx
                break
    logger.debug("Header map: %s", header_map)
    return header_map


def _cell_value(row, header_map: dict[str, int], field_name: str):
    idx = header_map.get(field_name)
    if idx is None or idx >= len(row):
        return None
    return row[idx].value


def _clean_str(val) -> str:
    """Convert a cell value to a stripped string.  None becomes ``""``."""
    if val is None:
        return ""
    s = str(val).strip()
    return "" if s in _NULL_SIGNALS else s


def _parse_bool(val) -> bool:
    """Handles ``True``, ``"TRUE"``, ``"yes"``, ``1``.  Blank is False."""
    if val is None:
        return False
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return val != 0
    return str(val).strip().lower() in ("true", "1", "yes", "y")
