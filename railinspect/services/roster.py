"""
Roster Service — coach classification and amenity profile lookups.

The module isolation guard and the progress calculator never read the
``coaches`` table directly; they ask a RosterProvider. The default provider
(SqlRoster) reads the local roster tables. Deployments that keep coach
classification in another system register their own provider under
``app.extensions["railinspect.roster"]``.
"""

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import select

from railinspect.models import db
from railinspect.models.roster import Coach

logger = logging.getLogger(__name__)

ROSTER_EXTENSION_KEY = "railinspect.roster"


@dataclass(frozen=True)
class CoachProfile:
    """Applicability facts about a coach, evaluated by checklist predicates."""

    coach_number: str
    module_type: str | None = None
    train_number: str | None = None
    has_compartments: bool = False
    amenities: frozenset = field(default_factory=frozenset)


class RosterProvider:
    """Interface for coach → module classification lookups."""

    def get_module_assignment(self, coach_number: str) -> str | None:
        """Return the module the coach is classified under, or None if unknown."""
        raise NotImplementedError

    def get_profile(self, coach_number: str) -> CoachProfile | None:
        raise NotImplementedError


class SqlRoster(RosterProvider):
    """RosterProvider backed by the local ``coaches`` table."""

    def _coach(self, coach_number: str) -> Coach | None:
        return db.session.execute(
            select(Coach).where(Coach.coach_number == coach_number)
        ).scalar_one_or_none()

    def get_module_assignment(self, coach_number: str) -> str | None:
        coach = self._coach(coach_number)
        return coach.module_type if coach else None

    def get_profile(self, coach_number: str) -> CoachProfile | None:
        coach = self._coach(coach_number)
        if coach is None:
            return None
        return CoachProfile(
            coach_number=coach.coach_number,
            module_type=coach.module_type,
            train_number=coach.train_number,
            has_compartments=bool(coach.has_compartments),
            amenities=frozenset(coach.amenities),
        )


def init_roster(app, provider: RosterProvider | None = None):
    """Register *provider* (default SqlRoster) on the app."""
    app.extensions[ROSTER_EXTENSION_KEY] = provider or SqlRoster()


def current_roster() -> RosterProvider:
    return current_app.extensions[ROSTER_EXTENSION_KEY]


def upsert_coach(coach_number: str, module_type: str | None, *, train_number=None,
                 coach_type: str = "", has_compartments: bool = False,
                 amenities=None) -> Coach:
    """Create or update a roster entry. Used by seeding scripts and tests."""
    coach = db.session.execute(
        select(Coach).where(Coach.coach_number == coach_number)
    ).scalar_one_or_none()
    if coach is None:
        coach = Coach(coach_number=coach_number)
        db.session.add(coach)
    coach.module_type = module_type
    coach.train_number = train_number
    coach.coach_type = coach_type
    coach.has_compartments = has_compartments
    coach.amenities = amenities or []
    db.session.commit()
    logger.info("Roster entry %s classified under %s", coach_number, module_type)
    return coach
