"""Create import ledger, commerce and CRM tables.

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 00:00:01.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20260301_000001"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("data_imports"):
        op.create_table(
            "data_imports",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("source_name", sa.Text(), nullable=False),
            sa.Column("target_table", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("total_rows", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("imported_rows", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("error_rows", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("mapped_fields", JSON, nullable=True),
            sa.Column("errors", JSON, nullable=True),
            sa.Column("file_preview", JSON, nullable=True),
            sa.Column("started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.CheckConstraint(
                "status IN ('pending','mapping','importing','completed','failed')",
                name="ck_data_imports_status",
            ),
        )
        op.create_index("ix_data_imports_org_id", "data_imports", ["org_id"])
        op.create_index("ix_data_imports_org_created", "data_imports", ["org_id", "created_at"])

    if not inspector.has_table("import_progress"):
        op.create_table(
            "import_progress",
            sa.Column("import_id", sa.String(), sa.ForeignKey("data_imports.id"), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("rows_done", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("rows_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("errors_so_far", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("status", sa.String(), nullable=False, server_default="in_progress"),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.CheckConstraint(
                "status IN ('in_progress','completed','failed')",
                name="ck_import_progress_status",
            ),
        )

    if not inspector.has_table("data_sync_log"):
        op.create_table(
            "data_sync_log",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("import_id", sa.String(), sa.ForeignKey("data_imports.id"), nullable=True),
            sa.Column("event_type", sa.String(), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("details", JSON, nullable=True),
            _created_at(),
        )
        op.create_index("ix_data_sync_log_org_id", "data_sync_log", ["org_id"])
        op.create_index("ix_data_sync_log_import", "data_sync_log", ["import_id"])

    if not inspector.has_table("ecom_customers"):
        op.create_table(
            "ecom_customers",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("external_id", sa.String(), nullable=True),
            sa.Column("external_source", sa.String(), nullable=True),
            sa.Column("email", sa.Text(), nullable=False),
            sa.Column("first_name", sa.Text(), nullable=True),
            sa.Column("last_name", sa.Text(), nullable=True),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("default_address", JSON, nullable=True),
            sa.Column("accepts_marketing", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("orders_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("total_spent", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("avg_order_value", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("first_order_at", sa.DateTime(), nullable=True),
            sa.Column("last_order_at", sa.DateTime(), nullable=True),
            sa.Column("metadata", JSON, nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint("org_id", "email", name="uq_ecom_customers_org_email"),
        )

    if not inspector.has_table("ecom_orders"):
        op.create_table(
            "ecom_orders",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("import_id", sa.String(), sa.ForeignKey("data_imports.id"), nullable=True),
            sa.Column("external_id", sa.String(), nullable=True),
            sa.Column("external_source", sa.String(), nullable=True),
            sa.Column("customer_id", sa.String(), sa.ForeignKey("ecom_customers.id"), nullable=True),
            sa.Column("customer_external_id", sa.Text(), nullable=True),
            sa.Column("order_number", sa.Text(), nullable=False),
            sa.Column("email", sa.Text(), nullable=True),
            sa.Column("financial_status", sa.Text(), nullable=True),
            sa.Column("fulfillment_status", sa.Text(), nullable=True),
            sa.Column("subtotal_price", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("total_tax", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("total_discounts", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("total_shipping", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("total_price", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
            sa.Column("line_items", JSON, nullable=False),
            sa.Column("shipping_address", JSON, nullable=True),
            sa.Column("discount_code", sa.Text(), nullable=True),
            sa.Column("shipping_method", sa.Text(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("source_name", sa.String(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=False),
            sa.Column("metadata", JSON, nullable=True),
            _created_at(),
        )
        op.create_index("ix_ecom_orders_customer_processed", "ecom_orders", ["customer_id", "processed_at"])
        op.create_index("ix_ecom_orders_org_number", "ecom_orders", ["org_id", "order_number"])

    if not inspector.has_table("crm_companies"):
        op.create_table(
            "crm_companies",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("domain", sa.Text(), nullable=True),
            sa.Column("industry", sa.Text(), nullable=True),
            sa.Column("size", sa.Text(), nullable=True),
            sa.Column("sector", sa.Text(), nullable=True),
            sa.Column("annual_revenue", sa.Numeric(14, 2), nullable=True),
            sa.Column("employees", sa.Integer(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("metadata", JSON, nullable=True),
            _created_at(),
        )
        op.create_index("ix_crm_companies_org_name", "crm_companies", ["org_id", "name"])

    if not inspector.has_table("crm_contacts"):
        op.create_table(
            "crm_contacts",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("company_id", sa.String(), sa.ForeignKey("crm_companies.id"), nullable=True),
            sa.Column("first_name", sa.Text(), nullable=False),
            sa.Column("last_name", sa.Text(), nullable=True),
            sa.Column("email", sa.Text(), nullable=True),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("title", sa.Text(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("metadata", JSON, nullable=True),
            _created_at(),
        )

    if not inspector.has_table("crm_deals"):
        op.create_table(
            "crm_deals",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("title", sa.Text(), nullable=False),
            sa.Column("value", sa.Numeric(14, 2), nullable=True),
            sa.Column("stage", sa.String(), nullable=True),
            sa.Column("probability", sa.Numeric(6, 2), nullable=True),
            sa.Column("expected_close_date", sa.Date(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("metadata", JSON, nullable=True),
            _created_at(),
        )

    if not inspector.has_table("crm_products"):
        op.create_table(
            "crm_products",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("sku", sa.Text(), nullable=True),
            sa.Column("category", sa.Text(), nullable=True),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("metadata", JSON, nullable=True),
            _created_at(),
        )

    if not inspector.has_table("crm_custom_fields"):
        op.create_table(
            "crm_custom_fields",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("org_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("table_name", sa.String(), nullable=False),
            sa.Column("field_key", sa.String(), nullable=False),
            sa.Column("field_label", sa.Text(), nullable=False),
            sa.Column("field_type", sa.String(), nullable=False, server_default="text"),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
            _created_at(),
            sa.UniqueConstraint("org_id", "table_name", "field_key", name="uq_crm_custom_fields_key"),
            sa.CheckConstraint(
                "field_type IN ('text','number','date','boolean')",
                name="ck_crm_custom_fields_type",
            ),
        )


def downgrade() -> None:
    for table in (
        "crm_custom_fields",
        "crm_products",
        "crm_deals",
        "crm_contacts",
        "crm_companies",
        "ecom_orders",
        "ecom_customers",
        "data_sync_log",
        "import_progress",
        "data_imports",
    ):
        op.drop_table(table)
