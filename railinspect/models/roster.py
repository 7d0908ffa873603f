"""
Railway Coach Inspection Service
Roster domain models.

Models:
    - Train: a rake under PitLine inspection (coaches hang off it by number)
    - Coach: a single coach with its module classification and amenity profile

The module classification decides which inspection workflow a coach may be
inspected under. It is maintained outside the inspection workflows and is
treated as static while a session is open.
"""

import json
from datetime import UTC, datetime

from railinspect.models import MODULE_TYPES, db


class Train(db.Model):
    """Train / rake registered for PitLine inspection."""

    __tablename__ = "trains"

    id = db.Column(db.Integer, primary_key=True)
    train_number = db.Column(db.String(20), nullable=False, unique=True)
    name = db.Column(db.String(100), default="")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "train_number": self.train_number,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Coach(db.Model):
    """
    Coach known to the roster.

    ``module_type`` is the single workflow the coach is classified under;
    ``has_compartments`` and ``amenities`` feed checklist applicability.
    """

    __tablename__ = "coaches"

    id = db.Column(db.Integer, primary_key=True)
    coach_number = db.Column(db.String(30), nullable=False, unique=True)
    train_number = db.Column(db.String(20), nullable=True, index=True)
    module_type = db.Column(
        db.String(20), nullable=True,
        comment="WSP | SICKLINE | COMMISSIONARY | CAI | PITLINE (NULL = unassigned)",
    )
    coach_type = db.Column(db.String(30), default="", comment="e.g. 3A, SL, GEN, PANTRY")
    has_compartments = db.Column(db.Boolean, nullable=False, default=False)
    amenities_json = db.Column(
        db.Text, default="[]",
        comment='JSON list of amenity codes, e.g. ["LAVATORY", "PANTRY"]',
    )
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def amenities(self) -> list[str]:
        try:
            return list(json.loads(self.amenities_json or "[]"))
        except (json.JSONDecodeError, TypeError):
            return []

    @amenities.setter
    def amenities(self, values):
        self.amenities_json = json.dumps(sorted({str(v).upper() for v in values or []}))

    def to_dict(self):
        return {
            "id": self.id,
            "coach_number": self.coach_number,
            "train_number": self.train_number,
            "module_type": self.module_type,
            "coach_type": self.coach_type,
            "has_compartments": self.has_compartments,
            "amenities": self.amenities,
        }

    def __repr__(self):
        return f"<Coach {self.coach_number} [{self.module_type}]>"


def validate_module_type(value) -> bool:
    """Return True if *value* names one of the five inspection modules."""
    return value in MODULE_TYPES
