"""
api/routes/dashboard.py -- Role-specific landing page summary.

Routes (mounted under /api):
  GET /api/dashboard  -- summary for the caller's role (any signed-in user)

The role decides the shape: Super Admin sees system-wide counts, revenue
trend and top clients; Client Manager sees the invoices they raised; Auditor
sees totals and the GST position. Any other role answers 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import DashboardOut, DashboardResponse
from auth.dependencies import require_auth
from auth.models import AUDITOR, CLIENT_MANAGER, SUPER_ADMIN, AuthContext
from billing.reports import ReportStore
from core.errors import AuthorizationError

# Auth policy:
# - GET /api/dashboard: requires auth (require_auth); the role picks the payload
router = APIRouter()


@limiter.limit("60/minute")
@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(request: Request, auth: AuthContext = Depends(require_auth)) -> DashboardResponse:
    reports: ReportStore = request.app.state.report_store
    role_name = auth.user.role_name
    if role_name == SUPER_ADMIN:
        board = await reports.super_admin_dashboard(role_name)
    elif role_name == CLIENT_MANAGER:
        board = await reports.manager_dashboard(role_name, auth.user.user_id)
    elif role_name == AUDITOR:
        board = await reports.auditor_dashboard(role_name)
    else:
        raise AuthorizationError("No dashboard is available for this role")
    return DashboardResponse(data=DashboardOut.model_validate(board))
