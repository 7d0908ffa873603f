"""initial_inspection_schema

Creates the inspection service tables:
  - trains, coaches           — roster and module classification
  - checklist_nodes           — per-module category/subcategory/item/question tree
  - checklist_reasons         — predefined deficiency reasons per question
  - inspection_sessions       — one pass over a (coach, module) pair
  - inspection_answers        — one row per (session, question)
  - inspection_defects        — defects with photo evidence
  - audit_logs                — SESSION INIT decisions and lifecycle events

Tables created conditionally (IF NOT EXISTS semantics) so databases that
already received them via db.create_all() in development can be stamped.

Revision ID: 5f1c2a9e7b30
Revises:
Create Date: 2026-10-19 09:12:44.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5f1c2a9e7b30'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Roster ────────────────────────────────────────────────────────────
    if "trains" not in existing:
        op.create_table(
            "trains",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("train_number", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("train_number"),
        )

    if "coaches" not in existing:
        op.create_table(
            "coaches",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("coach_number", sa.String(length=30), nullable=False),
            sa.Column("train_number", sa.String(length=20), nullable=True),
            sa.Column("module_type", sa.String(length=20), nullable=True),
            sa.Column("coach_type", sa.String(length=30), nullable=True),
            sa.Column("has_compartments", sa.Boolean(), nullable=False),
            sa.Column("amenities_json", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("coach_number"),
        )
        op.create_index("ix_coaches_train_number", "coaches", ["train_number"])

    # ── Checklist hierarchy ───────────────────────────────────────────────
    if "checklist_nodes" not in existing:
        op.create_table(
            "checklist_nodes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("module_type", sa.String(length=20), nullable=False),
            sa.Column("node_type", sa.String(length=20), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("display_order", sa.Integer(), nullable=False),
            sa.Column("requires_compartment", sa.Boolean(), nullable=False),
            sa.Column("requires_amenity", sa.String(length=30), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.ForeignKeyConstraint(["parent_id"], ["checklist_nodes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("module_type", "parent_id", "display_order",
                                name="uq_checklist_sibling_order"),
        )
        op.create_index("ix_checklist_nodes_parent_id", "checklist_nodes", ["parent_id"])
        op.create_index("idx_checklist_module_type", "checklist_nodes", ["module_type", "node_type"])

    if "checklist_reasons" not in existing:
        op.create_table(
            "checklist_reasons",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=False),
            sa.Column("text", sa.String(length=255), nullable=False),
            sa.ForeignKeyConstraint(["question_id"], ["checklist_nodes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_reasons_question_id", "checklist_reasons", ["question_id"])

    # ── Sessions, answers, defects ────────────────────────────────────────
    if "inspection_sessions" not in existing:
        op.create_table(
            "inspection_sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("module_type", sa.String(length=20), nullable=False),
            sa.Column("coach_number", sa.String(length=30), nullable=False),
            sa.Column("train_number", sa.String(length=20), nullable=True),
            sa.Column("inspector_id", sa.String(length=64), nullable=False),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("active_key", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("last_saved_at", nullable=True),
            _ts("submitted_at", nullable=True),
            _ts("completed_at", nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("active_key"),
        )
        op.create_index("idx_session_module_created", "inspection_sessions", ["module_type", "created_at"])
        op.create_index("idx_session_coach_module", "inspection_sessions", ["coach_number", "module_type"])
        op.create_index("idx_session_inspector", "inspection_sessions", ["inspector_id"])

    if "inspection_answers" not in existing:
        op.create_table(
            "inspection_answers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.Integer(), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("answered_by", sa.String(length=64), nullable=False),
            _ts("recorded_at"),
            sa.ForeignKeyConstraint(["session_id"], ["inspection_sessions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["question_id"], ["checklist_nodes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("session_id", "question_id", name="uq_answer_session_question"),
        )
        op.create_index("ix_inspection_answers_session_id", "inspection_answers", ["session_id"])

    if "inspection_defects" not in existing:
        op.create_table(
            "inspection_defects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.Integer(), nullable=False),
            sa.Column("module_type", sa.String(length=20), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("open_key", sa.String(length=64), nullable=True),
            sa.Column("before_photo", sa.String(length=500), nullable=True),
            sa.Column("after_photo", sa.String(length=500), nullable=True),
            sa.Column("reasons_json", sa.Text(), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("resolution_remark", sa.Text(), nullable=True),
            sa.Column("raised_by", sa.String(length=64), nullable=False),
            sa.Column("resolved_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("resolved_at", nullable=True),
            sa.ForeignKeyConstraint(["session_id"], ["inspection_sessions.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["question_id"], ["checklist_nodes.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("open_key"),
        )
        op.create_index("idx_defect_module_created", "inspection_defects", ["module_type", "created_at"])
        op.create_index("idx_defect_session", "inspection_defects", ["session_id"])
        op.create_index("idx_defect_status", "inspection_defects", ["status"])

    # ── Audit ─────────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("module_type", sa.String(length=20), nullable=True),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=64), nullable=False),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "inspection_defects",
        "inspection_answers",
        "inspection_sessions",
        "checklist_reasons",
        "checklist_nodes",
        "coaches",
        "trains",
    ):
        op.drop_table(table)
