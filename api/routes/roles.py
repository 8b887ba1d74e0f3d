"""
api/routes/roles.py -- Role and permission-matrix administration (Super Admin only).

Routes (mounted under /api):
  GET    /api/roles                       -- all roles with active user counts
  POST   /api/roles                       -- create role with permission matrix
  GET    /api/roles/{role_id}             -- role detail with permission matrix
  GET    /api/roles/{role_id}/permissions -- permission matrix only
  PUT    /api/roles/{role_id}             -- rename / describe / replace matrix
  DELETE /api/roles/{role_id}             -- delete

System roles (the seeded defaults) cannot be modified or deleted. A role
that still has active users cannot be deleted.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    PermissionFlags,
    RoleCreate,
    RoleListResponse,
    RoleOut,
    RoleResponse,
    RoleUpdate,
)
from auth.dependencies import require_super_admin
from auth.models import AuthContext, ModulePermissions, Role
from auth.store import RoleStore
from core.errors import ConflictError, NotFoundError, ValidationError

# Auth policy: every route requires Super Admin (router-level dependency).
router = APIRouter(dependencies=[Depends(require_super_admin)])


def _to_matrix(permissions: dict[str, PermissionFlags]) -> dict[str, ModulePermissions]:
    return {module: ModulePermissions(module, **flags.model_dump()) for module, flags in permissions.items()}


def _audit_view(role: Role) -> dict:
    return {
        "role_name": role.role_name,
        "description": role.description,
        "permissions": {m: p.to_dict() for m, p in role.permissions.items()},
    }


async def _load_role(role_store: RoleStore, role_id: int) -> Role:
    role = await role_store.get_role(role_id)
    if role is None:
        raise NotFoundError("Role not found")
    return role


@router.get("/roles", response_model=RoleListResponse)
async def list_roles(request: Request) -> RoleListResponse:
    roles = await request.app.state.role_store.list_roles()
    return RoleListResponse(data=[RoleOut.model_validate(r) for r in roles])


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    request: Request,
    body: RoleCreate,
    auth: AuthContext = Depends(require_super_admin),
) -> RoleResponse:
    """Create a custom (non-system) role. 409 if the name is taken."""
    role_store: RoleStore = request.app.state.role_store
    if await role_store.get_by_name(body.role_name) is not None:
        raise ConflictError("Role with this name already exists")
    role_id = await role_store.create_role(body.role_name, body.description, _to_matrix(body.permissions))
    role = await _load_role(role_store, role_id)
    await request.app.state.audit.log_user_action(
        auth, "CREATE", "role", role_id, role.role_name, new_values=_audit_view(role)
    )
    return RoleResponse(message="Role created successfully", data=RoleOut.model_validate(role))


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(request: Request, role_id: int) -> RoleResponse:
    role = await _load_role(request.app.state.role_store, role_id)
    return RoleResponse(data=RoleOut.model_validate(role))


@router.get("/roles/{role_id}/permissions", response_model=dict[str, PermissionFlags])
async def get_role_permissions(request: Request, role_id: int) -> dict[str, PermissionFlags]:
    """Return the stored matrix keyed by module. Modules without a row are omitted."""
    role = await _load_role(request.app.state.role_store, role_id)
    return {m: PermissionFlags(**p.to_dict()) for m, p in role.permissions.items()}


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    auth: AuthContext = Depends(require_super_admin),
) -> RoleResponse:
    """Update a custom role. A permissions object replaces the whole matrix."""
    role_store: RoleStore = request.app.state.role_store
    before = await _load_role(role_store, role_id)
    if before.is_system_role:
        raise ValidationError("Cannot modify system roles")

    fields = body.model_dump(exclude_unset=True, exclude_none=True, exclude={"permissions"})
    if "role_name" in fields and fields["role_name"] != before.role_name:
        existing = await role_store.get_by_name(fields["role_name"])
        if existing is not None:
            raise ConflictError("Role with this name already exists")
    if fields:
        await role_store.update_role(role_id, **fields)
    if body.permissions is not None:
        await role_store.replace_permissions(role_id, _to_matrix(body.permissions))

    after = await _load_role(role_store, role_id)
    await request.app.state.audit.log_user_action(
        auth, "UPDATE", "role", role_id, after.role_name, old_values=_audit_view(before), new_values=_audit_view(after)
    )
    return RoleResponse(message="Role updated successfully", data=RoleOut.model_validate(after))


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_role(
    request: Request,
    role_id: int,
    auth: AuthContext = Depends(require_super_admin),
) -> MessageResponse:
    role_store: RoleStore = request.app.state.role_store
    role = await _load_role(role_store, role_id)
    if role.is_system_role:
        raise ValidationError("Cannot delete system roles")
    if role.user_count > 0:
        raise ValidationError("Cannot delete role with active users")
    if await role_store.count_users(role_id):
        raise ValidationError("Cannot delete role still assigned to inactive users")
    await role_store.delete_role(role_id)
    await request.app.state.audit.log_user_action(
        auth, "DELETE", "role", role_id, role.role_name, old_values=_audit_view(role)
    )
    return MessageResponse(message="Role deleted successfully")
