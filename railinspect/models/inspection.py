"""
Railway Coach Inspection Service
Inspection domain models.

Models:
    - InspectionSession: one inspection pass over a (coach, module) pair
    - InspectionAnswer:  recorded value for one checklist question in a session
    - Defect:            deficiency raised against a question, resolved with photo evidence

Lifecycle states (per module, see SESSION_WORKFLOWS):
    WSP / CAI:                      DRAFT → SUBMITTED
    WSP (completion variant):       DRAFT → SUBMITTED → COMPLETED
    COMMISSIONARY:                  DRAFT → SUBMITTED → COMPLETED
    SICKLINE / PITLINE:             IN_PROGRESS → SUBMITTED → COMPLETED
    Defect:                         OPEN → RESOLVED

Concurrency columns:
    InspectionSession.version     — bumped by every mutation (compare-and-swap)
    InspectionSession.active_key  — "<MODULE>:<coach>" while non-terminal, unique
    Defect.open_key               — "<session>:<question>" while OPEN, unique
"""

import json
from datetime import UTC, datetime

from railinspect.models import db


# ── Lifecycle Transition Tables ──────────────────────────────────────────────

SESSION_WORKFLOWS = {
    "WSP": {
        "initial": "DRAFT",
        "editable": {"DRAFT"},
        "terminal": {"SUBMITTED"},
        "transitions": {
            "submit": ({"DRAFT"}, "SUBMITTED"),
        },
    },
    "CAI": {
        "initial": "DRAFT",
        "editable": {"DRAFT"},
        "terminal": {"SUBMITTED"},
        "transitions": {
            "submit": ({"DRAFT"}, "SUBMITTED"),
        },
    },
    "COMMISSIONARY": {
        "initial": "DRAFT",
        "editable": {"DRAFT"},
        "terminal": {"COMPLETED"},
        "transitions": {
            "submit": ({"DRAFT"}, "SUBMITTED"),
            "complete": ({"SUBMITTED"}, "COMPLETED"),
        },
    },
    "SICKLINE": {
        "initial": "IN_PROGRESS",
        "editable": {"IN_PROGRESS"},
        "terminal": {"COMPLETED"},
        "transitions": {
            "submit": ({"IN_PROGRESS"}, "SUBMITTED"),
            "complete": ({"SUBMITTED"}, "COMPLETED"),
        },
    },
    "PITLINE": {
        "initial": "IN_PROGRESS",
        "editable": {"IN_PROGRESS"},
        "terminal": {"COMPLETED"},
        "transitions": {
            "submit": ({"IN_PROGRESS"}, "SUBMITTED"),
            "complete": ({"SUBMITTED"}, "COMPLETED"),
        },
    },
}

# WSP variant used by depots that sign off WSP sheets after defect closure.
WSP_COMPLETION_WORKFLOW = {
    "initial": "DRAFT",
    "editable": {"DRAFT"},
    "terminal": {"COMPLETED"},
    "transitions": {
        "submit": ({"DRAFT"}, "SUBMITTED"),
        "complete": ({"SUBMITTED"}, "COMPLETED"),
    },
}

# Statuses in transition order; used to tell "already moved past" from "not there yet".
STATUS_RANK = {"DRAFT": 0, "IN_PROGRESS": 0, "SUBMITTED": 1, "COMPLETED": 2}

ANSWER_STATUSES = {"OK", "DEFICIENCY", "NA"}

DEFECT_STATUSES = {"OPEN", "RESOLVED"}

# Shared cross-module view used by monitoring filters.
NORMALIZED_SESSION_STATUSES = {"OPEN", "COMPLETED"}


def workflow_for(module_type: str, *, wsp_completion_step: bool = False) -> dict:
    """Return the transition table for *module_type*."""
    if module_type == "WSP" and wsp_completion_step:
        return WSP_COMPLETION_WORKFLOW
    return SESSION_WORKFLOWS[module_type]


def validate_session_transition(workflow: dict, action: str, current_status: str):
    """Return the target status if *action* is valid from *current_status*, else None."""
    rule = workflow["transitions"].get(action)
    if not rule:
        return None
    sources, target = rule
    if current_status not in sources:
        return None
    return target


def normalized_status(workflow: dict, status: str) -> str:
    """Map a module-specific status onto the shared OPEN / COMPLETED view."""
    return "COMPLETED" if status in workflow["terminal"] else "OPEN"


def _iso(value):
    return value.isoformat() if value else None


class InspectionSession(db.Model):
    """
    One inspection pass over a coach (or PitLine train coach) under one module.

    At most one non-terminal session exists per (coach, module): the unique
    ``active_key`` column holds the slot and is cleared on reaching a
    terminal status.
    The WSP workflow variant is fixed when the session is opened
    (``completion_step``) so later config changes never reopen it.
    """

    __tablename__ = "inspection_sessions"
    __table_args__ = (
        db.Index("idx_session_module_created", "module_type", "created_at"),
        db.Index("idx_session_coach_module", "coach_number", "module_type"),
        db.Index("idx_session_inspector", "inspector_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    module_type = db.Column(
        db.String(20), nullable=False,
        comment="WSP | SICKLINE | COMMISSIONARY | CAI | PITLINE",
    )
    coach_number = db.Column(db.String(30), nullable=False)
    train_number = db.Column(db.String(20), nullable=True)
    inspector_id = db.Column(db.String(64), nullable=False)
    created_by = db.Column(db.String(64), nullable=False)

    status = db.Column(
        db.String(20), nullable=False,
        comment="DRAFT | IN_PROGRESS | SUBMITTED | COMPLETED (module-specific subset)",
    )
    version = db.Column(db.Integer, nullable=False, default=1)
    completion_step = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="WSP only: session was opened under the SUBMITTED -> COMPLETED variant",
    )
    active_key = db.Column(
        db.String(64), nullable=True, unique=True,
        comment="<MODULE>:<coach_number> while non-terminal, NULL afterwards",
    )

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    last_saved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    answers = db.relationship(
        "InspectionAnswer", backref="session", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    defects = db.relationship("Defect", backref="session", lazy="dynamic")

    @property
    def workflow(self) -> dict:
        return workflow_for(self.module_type, wsp_completion_step=self.completion_step)

    @staticmethod
    def slot_key(module_type: str, coach_number: str) -> str:
        return f"{module_type}:{coach_number}"

    def to_dict(self):
        return {
            "id": self.id,
            "module_type": self.module_type,
            "coach_number": self.coach_number,
            "train_number": self.train_number,
            "inspector_id": self.inspector_id,
            "created_by": self.created_by,
            "status": self.status,
            "version": self.version,
            "completion_step": self.completion_step,
            "created_at": _iso(self.created_at),
            "last_saved_at": _iso(self.last_saved_at),
            "submitted_at": _iso(self.submitted_at),
            "completed_at": _iso(self.completed_at),
        }

    def __repr__(self):
        return f"<InspectionSession {self.id} {self.module_type}/{self.coach_number} {self.status}>"


class InspectionAnswer(db.Model):
    """Recorded value for one question. Re-answering overwrites the row."""

    __tablename__ = "inspection_answers"
    __table_args__ = (
        db.UniqueConstraint("session_id", "question_id", name="uq_answer_session_question"),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("inspection_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, comment="OK | DEFICIENCY | NA")
    remarks = db.Column(db.Text, default="")
    answered_by = db.Column(db.String(64), nullable=False)
    recorded_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "status": self.status,
            "remarks": self.remarks,
            "answered_by": self.answered_by,
            "recorded_at": _iso(self.recorded_at),
        }


class Defect(db.Model):
    """
    Deficiency raised against a question within a session.

    Never deleted; only transitions OPEN → RESOLVED. Resolution requires an
    after-photo reference. ``module_type`` is copied from the owning session
    so cross-module reads need no join.
    """

    __tablename__ = "inspection_defects"
    __table_args__ = (
        db.Index("idx_defect_module_created", "module_type", "created_at"),
        db.Index("idx_defect_session", "session_id"),
        db.Index("idx_defect_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("inspection_sessions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    module_type = db.Column(db.String(20), nullable=False)
    question_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_nodes.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, default="OPEN", comment="OPEN | RESOLVED")
    open_key = db.Column(
        db.String(64), nullable=True, unique=True,
        comment="<session_id>:<question_id> while OPEN, NULL once resolved",
    )

    before_photo = db.Column(db.String(500), nullable=True)
    after_photo = db.Column(db.String(500), nullable=True)
    reasons_json = db.Column(db.Text, default="[]")
    remarks = db.Column(db.Text, default="")
    resolution_remark = db.Column(db.Text, default="")

    raised_by = db.Column(db.String(64), nullable=False)
    resolved_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @staticmethod
    def open_slot_key(session_id: int, question_id: int) -> str:
        return f"{session_id}:{question_id}"

    @property
    def reasons(self) -> list[str]:
        try:
            return list(json.loads(self.reasons_json or "[]"))
        except (json.JSONDecodeError, TypeError):
            return []

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "module_type": self.module_type,
            "question_id": self.question_id,
            "status": self.status,
            "before_photo": self.before_photo,
            "after_photo": self.after_photo,
            "has_before_photo": bool(self.before_photo),
            "has_after_photo": bool(self.after_photo),
            "reasons": self.reasons,
            "remarks": self.remarks,
            "resolution_remark": self.resolution_remark,
            "raised_by": self.raised_by,
            "resolved_by": self.resolved_by,
            "created_at": _iso(self.created_at),
            "resolved_at": _iso(self.resolved_at),
        }

    def __repr__(self):
        return f"<Defect {self.id} s={self.session_id} q={self.question_id} {self.status}>"
