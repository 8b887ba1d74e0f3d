"""
api/routes/invoices.py -- Invoice CRUD, gated by the "invoices" permission.

Routes (mounted under /api):
  GET    /api/invoices               -- paginated list        (invoices: view)
  POST   /api/invoices               -- create draft          (invoices: create)
  GET    /api/invoices/{invoice_id}  -- detail + line items + totals (invoices: view)
  PUT    /api/invoices/{invoice_id}  -- update                (invoices: edit)
  DELETE /api/invoices/{invoice_id}  -- delete draft          (invoices: delete)

Numbering, totals and the edit/delete status rules live in billing/store.py.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    InvoiceCreate,
    InvoiceListResponse,
    InvoiceOut,
    InvoiceResponse,
    InvoiceUpdate,
    LineItemIn,
    MessageResponse,
    Pagination,
)
from auth.dependencies import require_permission
from auth.models import Action, AuthContext
from billing.models import Invoice, InvoiceStatus, LineItem
from billing.store import InvoiceStore
from core.errors import NotFoundError, ValidationError

router = APIRouter()

MODULE = "invoices"


def _as_datetime(value: Optional[date]) -> Optional[datetime]:
    return datetime.combine(value, time.min) if value is not None else None


def _line_items(items: list[LineItemIn], default_currency: str) -> list[LineItem]:
    return [
        LineItem(
            description=i.description,
            quantity=i.quantity,
            rate=i.rate,
            discount=i.discount,
            currency=i.currency or default_currency,
        )
        for i in items
    ]


def _audit_view(invoice: Invoice) -> dict:
    view = asdict(invoice)
    view.pop("line_items", None)
    return view


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=100),
    status: Optional[InvoiceStatus] = None,
    client_id: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> InvoiceListResponse:
    """Return one page of invoice headers, newest invoice_date first. Totals are on the detail route."""
    result = await request.app.state.invoice_store.list_invoices(
        page=page,
        limit=limit,
        search=search.strip(),
        status=status.value if status else None,
        client_id=client_id,
    )
    return InvoiceListResponse(
        data=[InvoiceOut.model_validate(i) for i in result.rows],
        pagination=Pagination(**result.pagination),
    )


@router.post("/invoices", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    request: Request,
    body: InvoiceCreate,
    auth: AuthContext = Depends(require_permission(MODULE, Action.create)),
) -> InvoiceResponse:
    """Create a draft invoice for an existing client and assign its number."""
    client = await request.app.state.client_store.get_client(body.client_id)
    if client is None:
        raise NotFoundError("Client not found")
    store: InvoiceStore = request.app.state.invoice_store
    invoice = Invoice(
        client_id=client.client_id,
        invoice_date=_as_datetime(body.invoice_date),
        due_date=_as_datetime(body.due_date),
        gst_applicable=client.gst_registered if body.gst_applicable is None else body.gst_applicable,
        invoice_notes=body.invoice_notes,
        created_by=auth.user.user_id,
        line_items=_line_items(body.line_items, client.default_currency),
    )
    invoice_id = await store.create_invoice(invoice)
    created = await store.get_invoice(invoice_id)
    await request.app.state.audit.log_user_action(
        auth, "CREATE", "invoice", invoice_id, created.invoice_number, new_values=_audit_view(created)
    )
    return InvoiceResponse(message="Invoice created successfully", data=InvoiceOut.model_validate(created))


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    request: Request,
    invoice_id: int,
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> InvoiceResponse:
    invoice = await request.app.state.invoice_store.get_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return InvoiceResponse(data=InvoiceOut.model_validate(invoice))


@router.put("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    request: Request,
    invoice_id: int,
    body: InvoiceUpdate,
    auth: AuthContext = Depends(require_permission(MODULE, Action.edit)),
) -> InvoiceResponse:
    """Update an invoice that is not yet finalized or sent (400 otherwise)."""
    store: InvoiceStore = request.app.state.invoice_store
    before = await store.get_invoice(invoice_id)
    if before is None:
        raise NotFoundError("Invoice not found")

    fields = body.model_dump(exclude_unset=True, exclude_none=True, exclude={"line_items"})
    if not fields and body.line_items is None:
        raise ValidationError("No fields to update")
    for key in ("invoice_date", "due_date"):
        if key in fields:
            fields[key] = _as_datetime(fields[key])
    if "status" in fields:
        fields["status"] = fields["status"].value

    line_items = None
    if body.line_items is not None:
        client = await request.app.state.client_store.get_client(before.client_id)
        line_items = _line_items(body.line_items, client.default_currency if client else "USD")

    after = await store.update_invoice(invoice_id, line_items=line_items, **fields)
    await request.app.state.audit.log_user_action(
        auth,
        "UPDATE",
        "invoice",
        invoice_id,
        before.invoice_number,
        old_values=_audit_view(before),
        new_values=_audit_view(after),
    )
    return InvoiceResponse(message="Invoice updated successfully", data=InvoiceOut.model_validate(after))


@router.delete("/invoices/{invoice_id}", response_model=MessageResponse)
async def delete_invoice(
    request: Request,
    invoice_id: int,
    auth: AuthContext = Depends(require_permission(MODULE, Action.delete)),
) -> MessageResponse:
    """Delete a draft invoice and its line items (400 for any other status)."""
    deleted = await request.app.state.invoice_store.delete_invoice(invoice_id)
    await request.app.state.audit.log_user_action(
        auth, "DELETE", "invoice", invoice_id, deleted.invoice_number, old_values=_audit_view(deleted)
    )
    return MessageResponse(message="Invoice deleted successfully")
