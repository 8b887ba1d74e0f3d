"""
API request and response models for the billing REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
billing/models.py, which own the internal domain representation. Route
handlers map between the two (response models read domain objects with
from_attributes=True).

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.

Every success body carries success=True; every error body is ErrorResponse.
Money leaves the API as JSON numbers (float), rounded to 2 places upstream.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from auth.models import MODULES, UserStatus
from billing.models import ClientStatus, InvoiceStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain. Deliverability
# is the mail collaborator's problem.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
CURRENCY_PATTERN = r"^[A-Z]{3}$"

# Shown in place of full session tokens. Enough to tell two devices apart,
# useless for replay.
SESSION_PREFIX_LEN = 12


def session_prefix(session_id: str) -> str:
    return session_id[:SESSION_PREFIX_LEN]


def _strip(v):
    return v.strip() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    timestamp: str  # ISO 8601, UTC


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    pages: int
    current_page: int
    per_page: int


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /auth/login. `email` accepts a username too."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def strip_login(cls, v):
        return _strip(v)


class PermissionFlags(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False


class SessionUserOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    user_id: int
    username: str
    email: str
    role_id: int
    role_name: str
    status: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str = "Login successful"
    session_id: str
    user: SessionUserOut
    permissions: dict[str, PermissionFlags]


class CurrentSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_prefix: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: SessionUserOut
    session: CurrentSession
    permissions: dict[str, PermissionFlags]


class ForceLogoutRequest(BaseModel):
    user_id: int = Field(gt=0)


class SessionRow(BaseModel):
    """One signed-in device. The full token is never echoed back."""

    model_config = ConfigDict(frozen=True)

    session_prefix: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ActiveSessionRow(SessionRow):
    user_id: int
    username: str
    email: str
    role_name: str


class SessionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[SessionRow]


class ActiveSessionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[ActiveSessionRow]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/users."""

    username: str = Field(min_length=3, max_length=100, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    role_id: int = Field(gt=0)
    status: UserStatus = UserStatus.active

    @field_validator("username", "email", mode="before")
    @classmethod
    def strip_names(cls, v):
        return _strip(v)


class UserUpdate(BaseModel):
    """Request body for PUT /api/users/{id}. Omitted fields are left unchanged."""

    username: Optional[str] = Field(default=None, min_length=3, max_length=100, pattern=USERNAME_PATTERN)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    role_id: Optional[int] = Field(default=None, gt=0)
    status: Optional[UserStatus] = None

    @field_validator("username", "email", mode="before")
    @classmethod
    def strip_names(cls, v):
        return _strip(v)


class UserOut(BaseModel):
    """A user as the API shows it. There is no password field to leak."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    user_id: int
    username: str
    email: str
    role_id: int
    role_name: str
    status: str
    login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None
    data: UserOut


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[UserOut]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def _check_modules(permissions: Optional[dict[str, PermissionFlags]]) -> Optional[dict[str, PermissionFlags]]:
    if permissions is None:
        return None
    unknown = sorted(set(permissions) - set(MODULES))
    if unknown:
        raise ValueError(f"Unknown module(s): {', '.join(unknown)}")
    return permissions


class RoleCreate(BaseModel):
    """Request body for POST /api/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    role_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    permissions: dict[str, PermissionFlags] = Field(default_factory=dict)

    @field_validator("permissions")
    @classmethod
    def known_modules(cls, v):
        return _check_modules(v)


class RoleUpdate(BaseModel):
    """Request body for PUT /api/roles/{id}. permissions, when given, replaces the whole matrix."""

    model_config = ConfigDict(str_strip_whitespace=True)

    role_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    permissions: Optional[dict[str, PermissionFlags]] = None

    @field_validator("permissions")
    @classmethod
    def known_modules(cls, v):
        return _check_modules(v)


class RoleOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    role_id: int
    role_name: str
    description: Optional[str] = None
    is_system_role: bool = False
    created_at: Optional[datetime] = None
    user_count: int = 0
    permissions: dict[str, PermissionFlags] = Field(default_factory=dict)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None
    data: RoleOut


class RoleListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[RoleOut]


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ClientCreate(BaseModel):
    """Request body for POST /api/clients."""

    model_config = ConfigDict(str_strip_whitespace=True)

    client_name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    contact_person: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    gst_registered: bool = False
    gst_number: Optional[str] = Field(default=None, max_length=50)
    billing_address: Optional[str] = Field(default=None, max_length=2000)
    invoice_preferences: str = Field(default="monthly", max_length=30)
    default_currency: str = Field(default="USD", pattern=CURRENCY_PATTERN)
    status: ClientStatus = ClientStatus.active


class ClientUpdate(BaseModel):
    """Request body for PUT /api/clients/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    client_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    contact_person: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    gst_registered: Optional[bool] = None
    gst_number: Optional[str] = Field(default=None, max_length=50)
    billing_address: Optional[str] = Field(default=None, max_length=2000)
    invoice_preferences: Optional[str] = Field(default=None, max_length=30)
    default_currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    status: Optional[ClientStatus] = None


class ClientOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    client_id: int
    client_name: str
    email: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    gst_registered: bool = False
    gst_number: Optional[str] = None
    billing_address: Optional[str] = None
    invoice_preferences: str = "monthly"
    default_currency: str = "USD"
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClientResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None
    data: ClientOut


class ClientListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[ClientOut]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


class LineItemIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(min_length=1, max_length=500)
    quantity: Decimal = Field(gt=0, max_digits=14, decimal_places=4)
    rate: Decimal = Field(ge=0, max_digits=14, decimal_places=4)
    discount: Decimal = Field(default=Decimal("0"), ge=0, le=100, decimal_places=2)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)


class InvoiceCreate(BaseModel):
    """Request body for POST /api/invoices.

    gst_applicable defaults to the client's gst_registered flag when omitted;
    currency on a line item defaults to the client's default_currency.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: int = Field(gt=0)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    gst_applicable: Optional[bool] = None
    invoice_notes: Optional[str] = Field(default=None, max_length=5000)
    line_items: list[LineItemIn] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    """Request body for PUT /api/invoices/{id}. line_items, when given, replaces all items."""

    model_config = ConfigDict(str_strip_whitespace=True)

    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    gst_applicable: Optional[bool] = None
    invoice_notes: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[InvoiceStatus] = None
    line_items: Optional[list[LineItemIn]] = None


class LineItemOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    line_item_id: Optional[int] = None
    description: str
    quantity: float
    rate: float
    discount: float
    currency: str


class TotalsOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    subtotal: float
    gst_amount: float
    total: float


class InvoiceOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    invoice_id: int
    invoice_number: str
    client_id: int
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    invoice_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    gst_applicable: bool = False
    invoice_notes: Optional[str] = None
    status: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    line_items: list[LineItemOut] = Field(default_factory=list)
    totals: Optional[TotalsOut] = None


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None
    data: InvoiceOut


class InvoiceListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[InvoiceOut]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Dashboard and reports
# ---------------------------------------------------------------------------


def _money_as_float(values):
    if isinstance(values, dict):
        return {k: float(v) if isinstance(v, Decimal) else v for k, v in values.items()}
    return values


# Named figures: counts stay int, Decimal money becomes float.
Metrics = Annotated[dict[str, Union[int, float]], BeforeValidator(_money_as_float)]


class BucketOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    label: str
    client_id: Optional[int] = None
    invoice_count: int
    subtotal: float
    gst_amount: float
    total: float


class InvoiceFigureOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    invoice_id: int
    invoice_number: str
    client_id: int
    client_name: str
    status: str
    invoice_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    totals: TotalsOut


class DashboardOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    role_name: str
    metrics: Metrics
    generated_at: datetime
    invoice_status: list[BucketOut] = Field(default_factory=list)
    revenue_trend: list[BucketOut] = Field(default_factory=list)
    top_clients: list[BucketOut] = Field(default_factory=list)
    recent_invoices: list[InvoiceFigureOut] = Field(default_factory=list)


class DashboardResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: DashboardOut


class RevenueReportOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    summary: Metrics
    by_month: list[BucketOut]
    by_client: list[BucketOut]


class RevenueReportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: RevenueReportOut


class GstReportOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    summary: Metrics
    by_month: list[BucketOut]
    by_client: list[BucketOut]
    client_registration: dict[str, int]


class GstReportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: GstReportOut


class ClientSummaryOut(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    client_id: int
    client_name: str
    email: str
    gst_registered: bool
    default_currency: str
    status: str
    total_invoices: int
    total_revenue: float
    paid_amount: float
    outstanding_amount: float
    draft_amount: float
    last_invoice_date: Optional[datetime] = None


class ClientSummaryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[ClientSummaryOut]
