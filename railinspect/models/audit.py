"""
Railway Coach Inspection Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for session and defect events.
"""

import json
from datetime import UTC, datetime

from railinspect.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"session", "defect", "coach"}

AUDIT_ACTIONS = {
    # Module isolation guard (SESSION INIT)
    "session.init.allowed",
    "session.init.denied",
    # Session lifecycle
    "session.create",
    "session.resume",
    "session.submit",
    "session.complete",
    # Defect ledger
    "defect.raise",
    "defect.resolve",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action. ``diff_json`` carries old→new snapshots for status
    changes and the decision context for SESSION INIT rows.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="session | defect | coach",
    )
    entity_id = db.Column(
        db.String(64), nullable=False,
        comment="PK of the referenced entity, or coach number for SESSION INIT",
    )
    module_type = db.Column(db.String(20), nullable=True)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="session.init.denied | session.submit | defect.resolve | …",
    )
    actor = db.Column(db.String(64), nullable=False, default="system")

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "module_type": self.module_type,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    module_type: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        module_type=module_type,
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
