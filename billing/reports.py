"""
billing/reports.py -- Dashboards and billing reports built from stored invoices.

Invoices carry no stored total: money is always derived from line items. The
figures query sums each invoice's line items in SQL and the GST and rounding
rules from billing/store.py are applied per invoice here, so a report total
always equals the sum of the totals the invoice detail route shows.

Head counts (users, clients) are plain COUNT queries. Everything monetary is
aggregated in Python over InvoiceFigure rows.

Layer rule: no imports from api/, auth/, or audit/. Role names arrive as
plain strings from the caller.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from billing.models import (
    OUTSTANDING_STATUSES,
    Bucket,
    ClientSummary,
    Dashboard,
    GstReport,
    InvoiceFigure,
    InvoiceStatus,
    RevenueReport,
)
from billing.store import to_decimal, totals_from_subtotal
from db.executor import Database, as_datetime, utcnow

logger = logging.getLogger("billing.reports")

_CENT = Decimal("0.01")

TREND_MONTHS = 6
TOP_CLIENTS = 5
RECENT_INVOICES = 5

# The 100.0 literals keep SQLite from integer-dividing whole-number discounts.
_FIGURES_SQL = """
    SELECT i.invoice_id, i.invoice_number, i.client_id, c.client_name, i.status,
           i.gst_applicable, i.invoice_date, i.created_by, i.created_at,
           COALESCE(SUM(li.quantity * li.rate * (100.0 - li.discount) / 100.0), 0) AS subtotal
    FROM invoices i
    JOIN clients c ON i.client_id = c.client_id
    LEFT JOIN invoice_line_items li ON li.invoice_id = i.invoice_id
    WHERE {where}
    GROUP BY i.invoice_id, i.invoice_number, i.client_id, c.client_name, i.status,
             i.gst_applicable, i.invoice_date, i.created_by, i.created_at
    ORDER BY i.invoice_date ASC, i.invoice_id ASC
"""


# ---------------------------------------------------------------------------
# Aggregation helpers
# ---------------------------------------------------------------------------


def recent_months(now: datetime, count: int) -> list[str]:
    """The `count` YYYY-MM keys ending with now's month, oldest first.

    >>> recent_months(datetime(2026, 2, 10), 3)
    ['2025-12', '2026-01', '2026-02']
    """
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return keys[::-1]


def growth_percent(current: Decimal, previous: Decimal) -> float:
    """Month-over-month change in percent, 0.0 when there is nothing to compare against."""
    if previous <= 0:
        return 0.0
    return float(((current - previous) / previous * 100).quantize(_CENT, rounding=ROUND_HALF_UP))


def _sum_total(figures: Iterable[InvoiceFigure]) -> Decimal:
    return sum((f.totals.total for f in figures), Decimal("0"))


def _by_status(figures: list[InvoiceFigure]) -> list[Bucket]:
    buckets = {status.value: Bucket(label=status.value) for status in InvoiceStatus}
    for figure in figures:
        buckets.setdefault(figure.status, Bucket(label=figure.status)).add(figure)
    return [b for b in buckets.values() if b.invoice_count]


def _by_month(figures: list[InvoiceFigure], months: Optional[list[str]] = None) -> list[Bucket]:
    """Bucket by invoice month. With `months`, exactly those months (zero-filled) in that order."""
    if months is not None:
        buckets = {m: Bucket(label=m) for m in months}
        for figure in figures:
            if figure.month in buckets:
                buckets[figure.month].add(figure)
        return list(buckets.values())
    grouped: dict[str, Bucket] = {}
    for figure in figures:
        grouped.setdefault(figure.month, Bucket(label=figure.month)).add(figure)
    return [grouped[m] for m in sorted(grouped)]


def _by_client(figures: list[InvoiceFigure], limit: Optional[int] = None) -> list[Bucket]:
    """Bucket by client, highest total first."""
    buckets: dict[int, Bucket] = {}
    for figure in figures:
        buckets.setdefault(figure.client_id, Bucket(label=figure.client_name, client_id=figure.client_id)).add(figure)
    ranked = sorted(buckets.values(), key=lambda b: (-b.total, b.label))
    return ranked[:limit] if limit is not None else ranked


def _latest(figures: list[InvoiceFigure]) -> list[InvoiceFigure]:
    """The RECENT_INVOICES most recently created invoices, newest first."""
    ordered = sorted(figures, key=lambda f: (f.created_at or datetime.min, f.invoice_id), reverse=True)
    return ordered[:RECENT_INVOICES]


def _average(amount: Decimal, count: int) -> Decimal:
    if not count:
        return Decimal("0.00")
    return (amount / count).quantize(_CENT, rounding=ROUND_HALF_UP)


def _date_filter(start: Optional[date], end: Optional[date], where: str, params: dict) -> str:
    """Extend `where` with an inclusive invoice_date range."""
    if start is not None:
        where += " AND i.invoice_date >= :start"
        params["start"] = datetime.combine(start, datetime.min.time())
    if end is not None:
        where += " AND i.invoice_date < :end"
        params["end"] = datetime.combine(end + timedelta(days=1), datetime.min.time())
    return where


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ReportStore:
    """Read-only aggregate queries over clients, invoices and users.

    Usage:
        reports = ReportStore(db, gst_rate=0.18)
        board = await reports.super_admin_dashboard("Super Admin")
        revenue = await reports.revenue_report(start=date(2026, 1, 1))
    """

    def __init__(self, db: Database, gst_rate: Decimal | float = 0.18) -> None:
        self.db = db
        self.gst_rate = gst_rate

    async def _count(self, sql: str, params: Optional[dict] = None) -> int:
        return int(await self.db.scalar(sql, params) or 0)

    async def invoice_figures(self, where: str = "1=1", params: Optional[dict] = None) -> list[InvoiceFigure]:
        """Every invoice matching `where` (aliases: i = invoices, c = clients), oldest first."""
        rows = await self.db.get_many(_FIGURES_SQL.format(where=where), params)
        logger.debug("Aggregating %d invoice(s) where %s", len(rows), where)
        return [
            InvoiceFigure(
                invoice_id=row["invoice_id"],
                invoice_number=row["invoice_number"],
                client_id=row["client_id"],
                client_name=row["client_name"],
                status=row["status"],
                gst_applicable=bool(row["gst_applicable"]),
                totals=totals_from_subtotal(to_decimal(row["subtotal"]), bool(row["gst_applicable"]), self.gst_rate),
                invoice_date=as_datetime(row.get("invoice_date")),
                created_at=as_datetime(row.get("created_at")),
                created_by=row.get("created_by"),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------

    async def super_admin_dashboard(self, role_name: str, now: Optional[datetime] = None) -> Dashboard:
        """Head counts, this month against last, status breakdown, trend, top clients and latest invoices."""
        now = now or utcnow()
        figures = await self.invoice_figures()
        revenue = [f for f in figures if f.is_revenue]
        last_month, this_month = recent_months(now, 2)
        current = _sum_total(f for f in revenue if f.month == this_month)
        previous = _sum_total(f for f in revenue if f.month == last_month)
        return Dashboard(
            role_name=role_name,
            generated_at=now,
            metrics={
                "total_users": await self._count("SELECT COUNT(*) FROM users WHERE status = 'active'"),
                "total_clients": await self._count("SELECT COUNT(*) FROM clients WHERE status = 'active'"),
                "total_invoices": len(figures),
                "current_month_revenue": current,
                "last_month_revenue": previous,
                "revenue_growth": growth_percent(current, previous),
                "outstanding_amount": _sum_total(f for f in figures if f.status in OUTSTANDING_STATUSES),
            },
            invoice_status=_by_status(figures),
            revenue_trend=_by_month(revenue, recent_months(now, TREND_MONTHS)),
            top_clients=_by_client(revenue, limit=TOP_CLIENTS),
            recent_invoices=_latest(figures),
        )

    async def manager_dashboard(self, role_name: str, user_id: int, now: Optional[datetime] = None) -> Dashboard:
        """The invoices this user raised, plus the active client count they work against."""
        now = now or utcnow()
        mine = await self.invoice_figures("i.created_by = :user_id", {"user_id": user_id})
        return Dashboard(
            role_name=role_name,
            generated_at=now,
            metrics={
                "active_clients": await self._count("SELECT COUNT(*) FROM clients WHERE status = 'active'"),
                "my_invoices": len(mine),
                "my_draft_invoices": sum(1 for f in mine if f.status == InvoiceStatus.draft.value),
                "my_revenue": _sum_total(f for f in mine if f.is_revenue),
                "my_outstanding_amount": _sum_total(f for f in mine if f.status in OUTSTANDING_STATUSES),
            },
            invoice_status=_by_status(mine),
            recent_invoices=_latest(mine),
        )

    async def auditor_dashboard(self, role_name: str, now: Optional[datetime] = None) -> Dashboard:
        """Totals across every client regardless of status, with the GST position."""
        now = now or utcnow()
        figures = await self.invoice_figures()
        revenue = [f for f in figures if f.is_revenue]
        return Dashboard(
            role_name=role_name,
            generated_at=now,
            metrics={
                "total_clients": await self._count("SELECT COUNT(*) FROM clients"),
                "total_invoices": len(figures),
                "total_revenue": _sum_total(revenue),
                "gst_invoices": sum(1 for f in figures if f.gst_applicable),
                "gst_collected": sum((f.totals.gst_amount for f in revenue), Decimal("0")),
            },
            invoice_status=_by_status(figures),
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def revenue_report(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        client_id: Optional[int] = None,
    ) -> RevenueReport:
        """Earned revenue (sent and paid invoices) in an inclusive invoice_date range."""
        params: dict = {}
        where = _date_filter(start, end, "1=1", params)
        if client_id is not None:
            where += " AND i.client_id = :client_id"
            params["client_id"] = client_id
        revenue = [f for f in await self.invoice_figures(where, params) if f.is_revenue]
        total = _sum_total(revenue)
        return RevenueReport(
            summary={
                "total_invoices": len(revenue),
                "total_revenue": total,
                "total_gst": sum((f.totals.gst_amount for f in revenue), Decimal("0")),
                "average_invoice_amount": _average(total, len(revenue)),
            },
            by_month=_by_month(revenue),
            by_client=_by_client(revenue),
        )

    async def gst_report(self, start: Optional[date] = None, end: Optional[date] = None) -> GstReport:
        """GST collected on earned, GST-applicable invoices, plus client registration counts."""
        params: dict = {}
        where = _date_filter(start, end, "1=1", params)
        taxed = [f for f in await self.invoice_figures(where, params) if f.is_revenue and f.gst_applicable]
        collected = sum((f.totals.gst_amount for f in taxed), Decimal("0"))
        registered = await self._count(
            "SELECT COUNT(*) FROM clients WHERE status = 'active' AND gst_registered = :flag", {"flag": True}
        )
        unregistered = await self._count(
            "SELECT COUNT(*) FROM clients WHERE status = 'active' AND gst_registered = :flag", {"flag": False}
        )
        return GstReport(
            summary={
                "gst_invoices": len(taxed),
                "total_gst_collected": collected,
                "total_taxable_amount": sum((f.totals.subtotal for f in taxed), Decimal("0")),
                "average_gst_per_invoice": _average(collected, len(taxed)),
            },
            by_month=_by_month(taxed),
            by_client=sorted(_by_client(taxed), key=lambda b: (-b.gst_amount, b.label)),
            client_registration={"gst_registered": registered, "non_gst": unregistered},
        )

    async def client_summary(self, client_id: Optional[int] = None) -> list[ClientSummary]:
        """Lifetime billing position per client, highest earned revenue first."""
        where, params = "1=1", {}
        if client_id is not None:
            where, params = "client_id = :client_id", {"client_id": client_id}
        rows = await self.db.get_many(
            "SELECT client_id, client_name, email, gst_registered, default_currency, status "  # noqa: S608
            f"FROM clients WHERE {where} ORDER BY client_name ASC",
            params,
        )
        summaries = {
            row["client_id"]: ClientSummary(
                client_id=row["client_id"],
                client_name=row["client_name"],
                email=row["email"],
                gst_registered=bool(row["gst_registered"]),
                default_currency=row["default_currency"],
                status=row["status"],
            )
            for row in rows
        }
        figure_where = "i.client_id = :client_id" if client_id is not None else "1=1"
        for figure in await self.invoice_figures(figure_where, params):
            summary = summaries.get(figure.client_id)
            if summary is None:
                continue
            summary.total_invoices += 1
            amount = figure.totals.total
            if figure.is_revenue:
                summary.total_revenue += amount
            if figure.status == InvoiceStatus.paid.value:
                summary.paid_amount += amount
            if figure.status in OUTSTANDING_STATUSES:
                summary.outstanding_amount += amount
            if figure.status == InvoiceStatus.draft.value:
                summary.draft_amount += amount
            if figure.invoice_date and (summary.last_invoice_date is None or figure.invoice_date > summary.last_invoice_date):
                summary.last_invoice_date = figure.invoice_date
        return sorted(summaries.values(), key=lambda s: (-s.total_revenue, s.client_name))
