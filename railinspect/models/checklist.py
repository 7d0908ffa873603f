"""
Railway Coach Inspection Service
Checklist hierarchy models.

Models:
    - ChecklistNode: one node of a module's category → subcategory → item → question tree
    - Reason:        predefined deficiency reason attached to a question

Architecture:
    category ──1:N──▶ subcategory ──1:N──▶ item ──1:N──▶ question ──1:N──▶ Reason

Each module owns its own tree. Nodes are authored by administrators and are
read live on every progress computation; sessions never snapshot them.
"""

from railinspect.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NODE_TYPES = ("category", "subcategory", "item", "question")

# node_type → required parent node_type (None = root)
PARENT_RULES = {
    "category": None,
    "subcategory": "category",
    "item": "subcategory",
    "question": "item",
}


class ChecklistNode(db.Model):
    """
    A node of the checklist tree.

    Applicability flags are evaluated against the inspected coach:
        requires_compartment — only for coaches with compartments
        requires_amenity     — only for coaches carrying that amenity
    A node that does not apply removes its whole subtree.
    """

    __tablename__ = "checklist_nodes"
    __table_args__ = (
        db.UniqueConstraint(
            "module_type", "parent_id", "display_order",
            name="uq_checklist_sibling_order",
        ),
        # Roots have a NULL parent, which the constraint above treats as distinct
        db.Index(
            "uq_checklist_root_order",
            "module_type", "display_order",
            unique=True,
            postgresql_where=db.text("parent_id IS NULL"),
            sqlite_where=db.text("parent_id IS NULL"),
        ),
        db.Index("idx_checklist_module_type", "module_type", "node_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    module_type = db.Column(db.String(20), nullable=False)
    node_type = db.Column(
        db.String(20), nullable=False,
        comment="category | subcategory | item | question",
    )
    parent_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_nodes.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name = db.Column(db.Text, nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    requires_compartment = db.Column(db.Boolean, nullable=False, default=False)
    requires_amenity = db.Column(
        db.String(30), nullable=True,
        comment="Amenity code the coach must carry, e.g. LAVATORY",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    reasons = db.relationship(
        "Reason", backref="question", lazy="select",
        cascade="all, delete-orphan", order_by="Reason.id",
    )

    def applies_to(self, profile) -> bool:
        """Evaluate this node's own predicate against a coach profile."""
        if not self.is_active:
            return False
        if self.requires_compartment and not profile.has_compartments:
            return False
        if self.requires_amenity and self.requires_amenity.upper() not in profile.amenities:
            return False
        return True

    def to_dict(self, include_reasons=False):
        d = {
            "id": self.id,
            "module_type": self.module_type,
            "node_type": self.node_type,
            "parent_id": self.parent_id,
            "name": self.name,
            "display_order": self.display_order,
            "requires_compartment": self.requires_compartment,
            "requires_amenity": self.requires_amenity,
        }
        if include_reasons and self.node_type == "question":
            d["reasons"] = [r.to_dict() for r in self.reasons]
        return d

    def __repr__(self):
        return f"<ChecklistNode {self.id} {self.node_type} '{self.name[:30]}'>"


class Reason(db.Model):
    """Deficiency reason an inspector can pick when raising a defect."""

    __tablename__ = "checklist_reasons"

    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text = db.Column(db.String(255), nullable=False)

    def to_dict(self):
        return {"id": self.id, "question_id": self.question_id, "text": self.text}
