"""
billing/models.py -- Domain dataclasses for clients and invoices.

Pure data containers. Numbering, totals and status rules live in
billing/store.py, next to the queries that depend on them. Aggregation over
invoices lives in billing/reports.py.

Money is Decimal end to end. Rounding happens once, when totals are
computed, never on individual line items.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class ClientStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class InvoiceStatus(str, Enum):
    draft = "draft"
    finalized = "finalized"
    sent = "sent"
    paid = "paid"
    cancelled = "cancelled"


# An invoice in one of these states has left the building; its content is frozen.
LOCKED_INVOICE_STATUSES = frozenset({InvoiceStatus.finalized.value, InvoiceStatus.sent.value})


@dataclass
class Client:
    """A billed customer. email is unique across clients.

    client_id is None before the record is written to the database.
    """

    client_name: str
    email: str
    client_id: Optional[int] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    gst_registered: bool = False
    gst_number: Optional[str] = None
    billing_address: Optional[str] = None
    invoice_preferences: str = "monthly"
    default_currency: str = "USD"
    status: str = ClientStatus.active.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class LineItem:
    description: str
    quantity: Decimal
    rate: Decimal
    discount: Decimal = Decimal("0")  # percent, 0-100
    currency: str = "USD"
    line_item_id: Optional[int] = None
    invoice_id: Optional[int] = None

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.rate * (1 - self.discount / 100)


@dataclass
class InvoiceTotals:
    subtotal: Decimal
    gst_amount: Decimal
    total: Decimal


@dataclass
class Invoice:
    """An invoice header plus its line items.

    invoice_number is assigned by InvoiceStore on insert:
    <PREFIX>-<client_id:03d>-<YYYYMM>-<sequence:03d>.
    """

    client_id: int
    invoice_number: str = ""
    invoice_id: Optional[int] = None
    invoice_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    gst_applicable: bool = False
    invoice_notes: Optional[str] = None
    status: str = InvoiceStatus.draft.value
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    line_items: list[LineItem] = field(default_factory=list)
    totals: Optional[InvoiceTotals] = None


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

# Invoices in these states count as earned revenue.
REVENUE_STATUSES = frozenset({InvoiceStatus.sent.value, InvoiceStatus.paid.value})
# Issued to the client but not yet paid.
OUTSTANDING_STATUSES = frozenset({InvoiceStatus.finalized.value, InvoiceStatus.sent.value})


@dataclass
class InvoiceFigure:
    """One invoice reduced to the fields reports aggregate over."""

    invoice_id: int
    invoice_number: str
    client_id: int
    client_name: str
    status: str
    gst_applicable: bool
    totals: InvoiceTotals
    invoice_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    created_by: Optional[int] = None

    @property
    def month(self) -> str:
        return f"{self.invoice_date:%Y-%m}" if self.invoice_date else ""

    @property
    def is_revenue(self) -> bool:
        return self.status in REVENUE_STATUSES


@dataclass
class Bucket:
    """Invoice count and money summed over one group (a status, a month, a client)."""

    label: str
    client_id: Optional[int] = None
    invoice_count: int = 0
    subtotal: Decimal = Decimal("0")
    gst_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")

    def add(self, figure: InvoiceFigure) -> None:
        self.invoice_count += 1
        self.subtotal += figure.totals.subtotal
        self.gst_amount += figure.totals.gst_amount
        self.total += figure.totals.total


@dataclass
class Dashboard:
    """Role-specific landing page summary. Empty lists are sections the role does not get."""

    role_name: str
    metrics: dict
    generated_at: datetime
    invoice_status: list[Bucket] = field(default_factory=list)
    revenue_trend: list[Bucket] = field(default_factory=list)
    top_clients: list[Bucket] = field(default_factory=list)
    recent_invoices: list[InvoiceFigure] = field(default_factory=list)


@dataclass
class RevenueReport:
    summary: dict
    by_month: list[Bucket]
    by_client: list[Bucket]


@dataclass
class GstReport:
    summary: dict
    by_month: list[Bucket]
    by_client: list[Bucket]
    client_registration: dict


@dataclass
class ClientSummary:
    """Lifetime billing position of one client."""

    client_id: int
    client_name: str
    email: str
    gst_registered: bool
    default_currency: str
    status: str
    total_invoices: int = 0
    total_revenue: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    outstanding_amount: Decimal = Decimal("0")
    draft_amount: Decimal = Decimal("0")
    last_invoice_date: Optional[datetime] = None
