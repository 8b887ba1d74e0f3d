"""
billing/store.py -- Persistence and business rules for clients and invoices.

Pattern: Repository + Data Mapper, as in auth/store.py. The pure functions
at the top (calculate_totals, format_invoice_number, ensure_editable,
ensure_deletable) hold the billing rules; ClientStore and InvoiceStore apply
them around their queries.

Rules:
  A client's email is unique. A client that has invoices cannot be deleted.
  Invoice numbers are <PREFIX>-<client_id:03d>-<YYYYMM>-<seq:03d>, with seq
  restarting at 001 for each client each month.
  finalized and sent invoices cannot be edited. Only drafts can be deleted.
  Totals: subtotal = sum(qty * rate * (1 - discount/100)); GST is added at
  the configured rate when the invoice is GST-applicable; each figure is
  rounded half-up to 2 places.

Layer rule: no imports from api/, auth/, or audit/.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from billing.models import (
    LOCKED_INVOICE_STATUSES,
    Client,
    Invoice,
    InvoiceStatus,
    InvoiceTotals,
    LineItem,
)
from core.errors import ConflictError, NotFoundError, ValidationError
from db.executor import Database, Page, as_datetime, utcnow

logger = logging.getLogger("billing.db")

_CENT = Decimal("0.01")

_CLIENT_COLUMNS = (
    "client_id, client_name, contact_person, email, phone, gst_registered, gst_number, "
    "billing_address, invoice_preferences, default_currency, status, created_at, updated_at"
)


# ---------------------------------------------------------------------------
# Billing rules
# ---------------------------------------------------------------------------


def calculate_totals(line_items: Iterable[LineItem], gst_applicable: bool, gst_rate: Decimal | float) -> InvoiceTotals:
    """Compute subtotal, GST and total for a set of line items.

    >>> calculate_totals([LineItem("Hosting", Decimal("2"), Decimal("50"), Decimal("10"))], True, 0.18)
    InvoiceTotals(subtotal=Decimal('90.00'), gst_amount=Decimal('16.20'), total=Decimal('106.20'))
    """
    subtotal = sum((item.amount for item in line_items), Decimal("0"))
    return totals_from_subtotal(subtotal, gst_applicable, gst_rate)


def totals_from_subtotal(subtotal: Decimal, gst_applicable: bool, gst_rate: Decimal | float) -> InvoiceTotals:
    """Apply GST and rounding to an unrounded line-item subtotal."""
    rate = Decimal(str(gst_rate))
    gst_amount = subtotal * rate if gst_applicable else Decimal("0")
    total = subtotal + gst_amount
    return InvoiceTotals(
        subtotal=subtotal.quantize(_CENT, rounding=ROUND_HALF_UP),
        gst_amount=gst_amount.quantize(_CENT, rounding=ROUND_HALF_UP),
        total=total.quantize(_CENT, rounding=ROUND_HALF_UP),
    )


def format_invoice_number(prefix: str, client_id: int, when: datetime, sequence: int) -> str:
    """INV-007-202610-003 style invoice number."""
    return f"{prefix}-{client_id:03d}-{when:%Y%m}-{sequence:03d}"


def ensure_editable(invoice: Invoice) -> None:
    if invoice.status in LOCKED_INVOICE_STATUSES:
        raise ValidationError("Cannot edit finalized or sent invoice")


def ensure_deletable(invoice: Invoice) -> None:
    if invoice.status != InvoiceStatus.draft.value:
        raise ValidationError("Can only delete draft invoices")


def to_decimal(value) -> Decimal:
    # MySQL returns Decimal; SQLite returns int or float for NUMERIC columns.
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value if value is not None else 0))


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ClientStore:
    """Repository for Client records.

    Usage:
        clients = ClientStore(db)
        client_id = await clients.create_client(Client(client_name="Acme", email="ap@acme.test"))
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_client(self, client_id: int) -> Optional[Client]:
        row = await self.db.get_one(
            f"SELECT {_CLIENT_COLUMNS} FROM clients WHERE client_id = :client_id",  # noqa: S608
            {"client_id": client_id},
        )
        return _row_to_client(row) if row is not None else None

    async def email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        row = await self.db.get_one(
            "SELECT client_id FROM clients WHERE email = :email AND client_id != :exclude_id",
            {"email": email, "exclude_id": exclude_id or 0},
        )
        return row is not None

    async def list_clients(self, page: int = 1, limit: int = 10, search: str = "", status: Optional[str] = None) -> Page:
        """One page of clients ordered by name, filtered by a name/email/contact search and status."""
        where = "1=1"
        params: dict = {}
        if search:
            where += " AND (client_name LIKE :search OR email LIKE :search OR contact_person LIKE :search)"
            params["search"] = f"%{search}%"
        if status:
            where += " AND status = :status"
            params["status"] = status
        result = await self.db.paginate(
            "clients",
            select=_CLIENT_COLUMNS,
            where=where,
            where_params=params,
            order_by="client_name ASC, client_id ASC",
            page=page,
            limit=limit,
        )
        result.rows = [_row_to_client(r) for r in result.rows]
        return result

    async def create_client(self, client: Client) -> int:
        """Insert a client and return its id. Raises ConflictError on a duplicate email."""
        if await self.email_taken(client.email):
            raise ConflictError("Client with this email already exists")
        fields = asdict(client)
        for key in ("client_id", "updated_at"):
            fields.pop(key)
        fields["created_at"] = utcnow()
        return await self.db.insert("clients", fields)

    async def update_client(self, client_id: int, **fields) -> bool:
        """Update columns on a client. Returns False if client_id was not found."""
        email = fields.get("email")
        if email and await self.email_taken(email, exclude_id=client_id):
            raise ConflictError("Email already exists")
        fields["updated_at"] = utcnow()
        return await self.db.update("clients", fields, "client_id = :client_id", {"client_id": client_id}) > 0

    async def invoice_count(self, client_id: int) -> int:
        count = await self.db.scalar(
            "SELECT COUNT(*) AS total FROM invoices WHERE client_id = :client_id",
            {"client_id": client_id},
        )
        return int(count or 0)

    async def delete_client(self, client_id: int) -> bool:
        """Hard-delete a client. Raises ValidationError if any invoice references it."""
        if await self.invoice_count(client_id):
            raise ValidationError("Cannot delete client with existing invoices")
        return await self.db.delete("clients", "client_id = :client_id", {"client_id": client_id}) > 0


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


class InvoiceStore:
    """Repository for Invoice headers and their line items."""

    def __init__(self, db: Database, prefix: str = "INV", gst_rate: Decimal | float = 0.18) -> None:
        self.db = db
        self.prefix = prefix
        self.gst_rate = gst_rate

    async def next_invoice_number(self, client_id: int, when: Optional[datetime] = None) -> str:
        """Return the next unused number in this client's sequence for the month of `when`.

        Two concurrent creates for the same client can compute the same
        number; the unique index on invoice_number rejects the second insert.
        Numbers are ordered by length first so -1000 sorts above -999.
        """
        when = when or utcnow()
        stem = f"{self.prefix}-{client_id:03d}-{when:%Y%m}-"
        last = await self.db.scalar(
            """
            SELECT invoice_number FROM invoices
            WHERE client_id = :client_id AND invoice_number LIKE :pattern
            ORDER BY LENGTH(invoice_number) DESC, invoice_number DESC
            LIMIT 1
            """,
            {"client_id": client_id, "pattern": f"{stem}%"},
        )
        sequence = 1
        if last:
            tail = str(last).rsplit("-", 1)[-1]
            if tail.isdigit():
                sequence = int(tail) + 1
        return format_invoice_number(self.prefix, client_id, when, sequence)

    async def create_invoice(self, invoice: Invoice) -> int:
        """Insert a draft invoice and its line items. Assigns invoice_number and returns the new id."""
        now = utcnow()
        invoice.invoice_date = invoice.invoice_date or now
        invoice.invoice_number = await self.next_invoice_number(invoice.client_id, now)
        invoice_id = await self.db.insert(
            "invoices",
            {
                "client_id": invoice.client_id,
                "invoice_number": invoice.invoice_number,
                "invoice_date": invoice.invoice_date,
                "due_date": invoice.due_date,
                "gst_applicable": invoice.gst_applicable,
                "invoice_notes": invoice.invoice_notes,
                "status": InvoiceStatus.draft.value,
                "created_by": invoice.created_by,
                "created_at": now,
            },
        )
        await self._insert_line_items(invoice_id, invoice.line_items)
        logger.info("Created invoice %s for client_id=%s", invoice.invoice_number, invoice.client_id)
        return invoice_id

    async def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        """Fetch an invoice with client details, line items and computed totals."""
        row = await self.db.get_one(
            """
            SELECT i.*, c.client_name, c.email AS client_email
            FROM invoices i
            JOIN clients c ON i.client_id = c.client_id
            WHERE i.invoice_id = :invoice_id
            """,
            {"invoice_id": invoice_id},
        )
        if row is None:
            return None
        invoice = _row_to_invoice(row)
        items = await self.db.get_many(
            "SELECT * FROM invoice_line_items WHERE invoice_id = :invoice_id ORDER BY line_item_id",
            {"invoice_id": invoice_id},
        )
        invoice.line_items = [_row_to_line_item(r) for r in items]
        invoice.totals = calculate_totals(invoice.line_items, invoice.gst_applicable, self.gst_rate)
        return invoice

    async def list_invoices(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        status: Optional[str] = None,
        client_id: Optional[int] = None,
    ) -> Page:
        """One page of invoice headers (newest invoice_date first) with client names."""
        where = "1=1"
        params: dict = {}
        if search:
            where += " AND (i.invoice_number LIKE :search OR i.invoice_notes LIKE :search)"
            params["search"] = f"%{search}%"
        if status:
            where += " AND i.status = :status"
            params["status"] = status
        if client_id is not None:
            where += " AND i.client_id = :client_id"
            params["client_id"] = client_id
        result = await self.db.paginate(
            "invoices i",
            joins="JOIN clients c ON i.client_id = c.client_id",
            select="i.*, c.client_name, c.email AS client_email",
            where=where,
            where_params=params,
            order_by="i.invoice_date DESC, i.invoice_id DESC",
            page=page,
            limit=limit,
        )
        result.rows = [_row_to_invoice(r) for r in result.rows]
        return result

    async def update_invoice(self, invoice_id: int, line_items: Optional[list[LineItem]] = None, **fields) -> Invoice:
        """Update header fields and optionally replace the line items wholesale.

        Raises NotFoundError for an unknown id and ValidationError for a
        finalized or sent invoice. Returns the invoice as stored afterwards.
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        ensure_editable(invoice)
        if fields:
            fields["updated_at"] = utcnow()
            await self.db.update("invoices", fields, "invoice_id = :invoice_id", {"invoice_id": invoice_id})
        if line_items is not None:
            await self.db.delete("invoice_line_items", "invoice_id = :invoice_id", {"invoice_id": invoice_id})
            await self._insert_line_items(invoice_id, line_items)
        return await self.get_invoice(invoice_id)

    async def delete_invoice(self, invoice_id: int) -> Invoice:
        """Delete a draft invoice and its line items. Returns the deleted invoice."""
        invoice = await self.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        ensure_deletable(invoice)
        await self.db.delete("invoice_line_items", "invoice_id = :invoice_id", {"invoice_id": invoice_id})
        await self.db.delete("invoices", "invoice_id = :invoice_id", {"invoice_id": invoice_id})
        return invoice

    async def _insert_line_items(self, invoice_id: int, items: list[LineItem]) -> None:
        for item in items:
            await self.db.insert(
                "invoice_line_items",
                {
                    "invoice_id": invoice_id,
                    "description": item.description,
                    "quantity": item.quantity,
                    "rate": item.rate,
                    "discount": item.discount,
                    "currency": item.currency,
                },
            )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_client(row: dict) -> Client:
    return Client(
        client_id=row["client_id"],
        client_name=row["client_name"],
        contact_person=row.get("contact_person"),
        email=row["email"],
        phone=row.get("phone"),
        gst_registered=bool(row.get("gst_registered")),
        gst_number=row.get("gst_number"),
        billing_address=row.get("billing_address"),
        invoice_preferences=row.get("invoice_preferences") or "monthly",
        default_currency=row.get("default_currency") or "USD",
        status=row.get("status") or "active",
        created_at=as_datetime(row.get("created_at")),
        updated_at=as_datetime(row.get("updated_at")),
    )


def _row_to_invoice(row: dict) -> Invoice:
    return Invoice(
        invoice_id=row["invoice_id"],
        client_id=row["client_id"],
        invoice_number=row["invoice_number"],
        invoice_date=as_datetime(row.get("invoice_date")),
        due_date=as_datetime(row.get("due_date")),
        gst_applicable=bool(row.get("gst_applicable")),
        invoice_notes=row.get("invoice_notes"),
        status=row["status"],
        created_by=row.get("created_by"),
        created_at=as_datetime(row.get("created_at")),
        updated_at=as_datetime(row.get("updated_at")),
        client_name=row.get("client_name"),
        client_email=row.get("client_email"),
    )


def _row_to_line_item(row: dict) -> LineItem:
    return LineItem(
        line_item_id=row["line_item_id"],
        invoice_id=row["invoice_id"],
        description=row["description"],
        quantity=to_decimal(row["quantity"]),
        rate=to_decimal(row["rate"]),
        discount=to_decimal(row.get("discount")),
        currency=row.get("currency") or "USD",
    )
