"""
db/schema.py -- SQLAlchemy Core table definitions for the billing database.

The tables are declared once here and used for two things only: creating the
schema (Database.create_schema / `python main.py init-db`) and giving column
types to MySQL and SQLite alike. Queries themselves are written as bound-
parameter SQL through db.executor.Database, so this module has no query code.

Timestamps are naive UTC datetimes. MySQL DATETIME has no zone, and keeping
every writer on UTC makes `expires_at > :now` comparisons consistent.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

metadata = MetaData()

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

roles = Table(
    "roles",
    metadata,
    Column("role_id", Integer, primary_key=True, autoincrement=True),
    Column("role_name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_system_role", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("permission_id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, ForeignKey("roles.role_id"), nullable=False),
    Column("module_name", String(50), nullable=False),
    Column("can_view", Boolean, nullable=False, server_default="0"),
    Column("can_create", Boolean, nullable=False, server_default="0"),
    Column("can_edit", Boolean, nullable=False, server_default="0"),
    Column("can_delete", Boolean, nullable=False, server_default="0"),
    UniqueConstraint("role_id", "module_name", name="uq_role_module"),
)

users = Table(
    "users",
    metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),  # bcrypt hash, never plaintext
    Column("role_id", Integer, ForeignKey("roles.role_id"), nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", DateTime),
    Column("last_login", DateTime),
    Column("created_by", Integer),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime),
)

sessions = Table(
    "sessions",
    metadata,
    Column("session_id", String(128), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.user_id"), nullable=False, index=True),
    Column("ip_address", String(45)),
    Column("user_agent", String(512)),
    Column("created_at", DateTime, nullable=False),
    Column("last_activity", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
    Column("is_active", Boolean, nullable=False, server_default="1"),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("audit_id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL for system actions
    Column("action_type", String(50), nullable=False),
    Column("entity_type", String(50)),
    Column("entity_id", Integer),
    Column("entity_name", String(255)),
    Column("description", Text),
    Column("old_values", Text),  # JSON snapshot
    Column("new_values", Text),  # JSON snapshot
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("session_id", String(128)),
    Column("created_at", DateTime, nullable=False),
)

# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

clients = Table(
    "clients",
    metadata,
    Column("client_id", Integer, primary_key=True, autoincrement=True),
    Column("client_name", String(255), nullable=False),
    Column("contact_person", String(255)),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone", String(50)),
    Column("gst_registered", Boolean, nullable=False, server_default="0"),
    Column("gst_number", String(50)),
    Column("billing_address", Text),
    Column("invoice_preferences", String(30), nullable=False, server_default="monthly"),
    Column("default_currency", String(3), nullable=False, server_default="USD"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime),
)

invoices = Table(
    "invoices",
    metadata,
    Column("invoice_id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, ForeignKey("clients.client_id"), nullable=False, index=True),
    Column("invoice_number", String(50), nullable=False, unique=True),
    Column("invoice_date", DateTime, nullable=False),
    Column("due_date", DateTime),
    Column("gst_applicable", Boolean, nullable=False, server_default="0"),
    Column("invoice_notes", Text),
    Column("status", String(20), nullable=False, server_default="draft"),
    Column("created_by", Integer),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime),
)

invoice_line_items = Table(
    "invoice_line_items",
    metadata,
    Column("line_item_id", Integer, primary_key=True, autoincrement=True),
    Column("invoice_id", Integer, ForeignKey("invoices.invoice_id"), nullable=False, index=True),
    Column("description", String(500), nullable=False),
    Column("quantity", Numeric(14, 4), nullable=False),
    Column("rate", Numeric(14, 4), nullable=False),
    Column("discount", Numeric(5, 2), nullable=False, server_default="0"),  # percent
    Column("currency", String(3), nullable=False, server_default="USD"),
)
