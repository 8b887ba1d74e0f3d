"""
api/routes/clients.py -- Client CRUD, gated by the "clients" permission.

Routes (mounted under /api):
  GET    /api/clients              -- paginated list       (clients: view)
  POST   /api/clients              -- create               (clients: create)
  GET    /api/clients/{client_id}  -- detail               (clients: view)
  PUT    /api/clients/{client_id}  -- partial update       (clients: edit)
  DELETE /api/clients/{client_id}  -- delete               (clients: delete)

A duplicate email answers 409. A client with invoices cannot be deleted (400).
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    ClientCreate,
    ClientListResponse,
    ClientOut,
    ClientResponse,
    ClientUpdate,
    MessageResponse,
    Pagination,
)
from auth.dependencies import require_permission
from auth.models import Action, AuthContext
from billing.models import Client, ClientStatus
from billing.store import ClientStore
from core.errors import NotFoundError, ValidationError

router = APIRouter()

MODULE = "clients"


async def _load_client(store: ClientStore, client_id: int) -> Client:
    client = await store.get_client(client_id)
    if client is None:
        raise NotFoundError("Client not found")
    return client


@router.get("/clients", response_model=ClientListResponse)
async def list_clients(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=100),
    status: Optional[ClientStatus] = None,
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> ClientListResponse:
    """Return one page of clients ordered by name."""
    result = await request.app.state.client_store.list_clients(
        page=page,
        limit=limit,
        search=search.strip(),
        status=status.value if status else None,
    )
    return ClientListResponse(
        data=[ClientOut.model_validate(c) for c in result.rows],
        pagination=Pagination(**result.pagination),
    )


@router.post("/clients", response_model=ClientResponse, status_code=201)
async def create_client(
    request: Request,
    body: ClientCreate,
    auth: AuthContext = Depends(require_permission(MODULE, Action.create)),
) -> ClientResponse:
    store: ClientStore = request.app.state.client_store
    client = Client(**body.model_dump(mode="json"))
    client_id = await store.create_client(client)
    created = await _load_client(store, client_id)
    await request.app.state.audit.log_user_action(
        auth, "CREATE", "client", client_id, created.client_name, new_values=asdict(created)
    )
    return ClientResponse(message="Client created successfully", data=ClientOut.model_validate(created))


@router.get("/clients/{client_id}", response_model=ClientResponse)
async def get_client(
    request: Request,
    client_id: int,
    auth: AuthContext = Depends(require_permission(MODULE, Action.view)),
) -> ClientResponse:
    client = await _load_client(request.app.state.client_store, client_id)
    return ClientResponse(data=ClientOut.model_validate(client))


@router.put("/clients/{client_id}", response_model=ClientResponse)
async def update_client(
    request: Request,
    client_id: int,
    body: ClientUpdate,
    auth: AuthContext = Depends(require_permission(MODULE, Action.edit)),
) -> ClientResponse:
    """Update only the fields present in the body. 409 if the new email is taken."""
    store: ClientStore = request.app.state.client_store
    before = await _load_client(store, client_id)
    changes = body.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")
    await store.update_client(client_id, **changes)
    after = await _load_client(store, client_id)
    await request.app.state.audit.log_user_action(
        auth, "UPDATE", "client", client_id, before.client_name, old_values=asdict(before), new_values=changes
    )
    return ClientResponse(message="Client updated successfully", data=ClientOut.model_validate(after))


@router.delete("/clients/{client_id}", response_model=MessageResponse)
async def delete_client(
    request: Request,
    client_id: int,
    auth: AuthContext = Depends(require_permission(MODULE, Action.delete)),
) -> MessageResponse:
    store: ClientStore = request.app.state.client_store
    client = await _load_client(store, client_id)
    await store.delete_client(client_id)
    await request.app.state.audit.log_user_action(
        auth, "DELETE", "client", client_id, client.client_name, old_values=asdict(client)
    )
    return MessageResponse(message="Client deleted successfully")
