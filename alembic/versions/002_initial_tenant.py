"""Initial tenant schema: leads and forms with RLS.

Revision ID: 002_initial_tenant
Revises:
Create Date: 2026-10-18

Note: Tables use the schema="tenant" placeholder, which schema_translate_map
rewrites to the real tenant schema. RLS policies and partial indexes are raw
DDL, so they use the actual schema name from the -x args.
"""

from typing import Sequence, Union

from alembic import context, op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "002_initial_tenant"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = ("tenant",)
depends_on: Union[str, Sequence[str], None] = None

TABLES = ("forms", "leads")


def _enable_rls(schema: str, table: str) -> None:
    op.execute(f'ALTER TABLE "{schema}".{table} ENABLE ROW LEVEL SECURITY')
    op.execute(f'ALTER TABLE "{schema}".{table} FORCE ROW LEVEL SECURITY')
    op.execute(f"""
        CREATE POLICY tenant_isolation ON "{schema}".{table}
        FOR ALL
        USING (tenant_id::text = current_setting('app.current_tenant_id', true))
        WITH CHECK (tenant_id::text = current_setting('app.current_tenant_id', true))
    """)


def upgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    op.create_table(
        "forms",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("form_type", sa.String(50), server_default=sa.text("'custom'"), nullable=False),
        sa.Column("is_crm_import_form", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("config", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        schema="tenant",
    )

    op.create_table(
        "leads",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("form_id", UUID(as_uuid=True), nullable=True),
        sa.Column("email", sa.String(320), server_default=sa.text("''"), nullable=False),
        sa.Column("first_name", sa.String(200), server_default=sa.text("''"), nullable=False),
        sa.Column("last_name", sa.String(200), server_default=sa.text("''"), nullable=False),
        sa.Column("full_name", sa.String(400), server_default=sa.text("''"), nullable=False),
        sa.Column("phone", sa.String(50), server_default=sa.text("''"), nullable=False),
        sa.Column("company", sa.String(300), server_default=sa.text("''"), nullable=False),
        sa.Column("job_title", sa.String(200), server_default=sa.text("''"), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'new'"), nullable=False),
        sa.Column("source", sa.String(50), server_default=sa.text("'form'"), nullable=False),
        sa.Column("lead_origin", sa.String(20), server_default=sa.text("'platform'"), nullable=False),
        sa.Column("crm_id", sa.String(200), nullable=True),
        sa.Column("crm_provider", sa.String(50), nullable=True),
        sa.Column("origin_crm_id", sa.String(200), nullable=True),
        sa.Column("origin_crm_provider", sa.String(50), nullable=True),
        sa.Column("crm_sync_status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lead_score", sa.Integer(), nullable=True),
        sa.Column("qualification_category", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "tenant_id",
            "origin_crm_provider",
            "origin_crm_id",
            name="uq_leads_tenant_origin_edge",
        ),
        schema="tenant",
    )

    for table in TABLES:
        _enable_rls(schema, table)

    # Create-conflict signals for concurrent imports
    op.execute(
        f'CREATE UNIQUE INDEX uq_leads_tenant_email ON "{schema}".leads(tenant_id, email) '
        "WHERE email <> ''"
    )
    op.execute(
        f'CREATE UNIQUE INDEX uq_forms_tenant_crm_import ON "{schema}".forms(tenant_id) '
        "WHERE is_crm_import_form"
    )

    op.execute(f'CREATE INDEX ix_leads_tenant_crm_id ON "{schema}".leads(tenant_id, crm_id)')
    op.execute(f'CREATE INDEX ix_leads_tenant_status ON "{schema}".leads(tenant_id, status)')


def downgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    for table in TABLES:
        op.execute(f'DROP POLICY IF EXISTS tenant_isolation ON "{schema}".{table}')
    op.drop_table("leads", schema="tenant")
    op.drop_table("forms", schema="tenant")
