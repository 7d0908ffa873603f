"""session_workflow_variant_and_root_order

Pins the WSP workflow variant on each session and makes root category
ordering unique per module:
  - inspection_sessions.completion_step (existing rows keep the plain workflow)
  - uq_checklist_root_order partial unique index (parent_id IS NULL)

Revision ID: 8c3d41e6a2f5
Revises: 5f1c2a9e7b30
Create Date: 2026-10-19 15:40:02.517391
"""
from alembic import op
import sqlalchemy as sa


revision = '8c3d41e6a2f5'
down_revision = '5f1c2a9e7b30'
branch_labels = None
depends_on = None


def _columns(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {c["name"] for c in insp.get_columns(table_name)}


def _indexes(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {i["name"] for i in insp.get_indexes(table_name) if i.get("name")}


def upgrade():
    bind = op.get_bind()

    if "completion_step" not in _columns(bind, "inspection_sessions"):
        with op.batch_alter_table("inspection_sessions") as batch_op:
            batch_op.add_column(
                sa.Column("completion_step", sa.Boolean(), nullable=False,
                          server_default=sa.false())
            )

    if "uq_checklist_root_order" not in _indexes(bind, "checklist_nodes"):
        op.create_index(
            "uq_checklist_root_order",
            "checklist_nodes",
            ["module_type", "display_order"],
            unique=True,
            postgresql_where=sa.text("parent_id IS NULL"),
            sqlite_where=sa.text("parent_id IS NULL"),
        )


def downgrade():
    bind = op.get_bind()

    if "uq_checklist_root_order" in _indexes(bind, "checklist_nodes"):
        op.drop_index("uq_checklist_root_order", table_name="checklist_nodes")

    if "completion_step" in _columns(bind, "inspection_sessions"):
        with op.batch_alter_table("inspection_sessions") as batch_op:
            batch_op.drop_column("completion_step")
