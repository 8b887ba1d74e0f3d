"""
api/routes/reports.py -- Read-only billing reports, gated by the "reports" permission.

Routes (mounted under /api):
  GET /api/reports/revenue         -- earned revenue by month and client  (reports: view)
  GET /api/reports/gst             -- GST collected and client registration (reports: view)
  GET /api/reports/client-summary  -- lifetime billing position per client (reports: view)

Dates filter on invoice_date and both ends are inclusive. Revenue means
sent and paid invoices.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    ClientSummaryOut,
    ClientSummaryResponse,
    GstReportOut,
    GstReportResponse,
    RevenueReportOut,
    RevenueReportResponse,
)
from auth.dependencies import require_permission
from auth.models import Action, AuthContext
from core.errors import ValidationError

# Auth policy:
# - every route requires the "reports" view permission (require_permission)
# - the aggregates are read-only; nothing here is audited
router = APIRouter()

MODULE = "reports"


def _check_range(start: Optional[date], end: Optional[date]) -> None:
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date")


@router.get("/reports/revenue", response_model=RevenueReportResponse)
async def revenue_report(
    request: Request,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    client_id: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> RevenueReportResponse:
    _check_range(start_date, end_date)
    report = await request.app.state.report_store.revenue_report(start=start_date, end=end_date, client_id=client_id)
    return RevenueReportResponse(data=RevenueReportOut.model_validate(report))


@router.get("/reports/gst", response_model=GstReportResponse)
async def gst_report(
    request: Request,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> GstReportResponse:
    _check_range(start_date, end_date)
    report = await request.app.state.report_store.gst_report(start=start_date, end=end_date)
    return GstReportResponse(data=GstReportOut.model_validate(report))


@router.get("/reports/client-summary", response_model=ClientSummaryResponse)
async def client_summary(
    request: Request,
    client_id: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> ClientSummaryResponse:
    """Every client (or one) with invoice count and revenue, paid, outstanding and draft amounts."""
    rows = await request.app.state.report_store.client_summary(client_id=client_id)
    return ClientSummaryResponse(data=[ClientSummaryOut.model_validate(r) for r in rows])
