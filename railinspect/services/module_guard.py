"""
Module Isolation Guard.

Decides whether a coach may be inspected under the requested module before
any session is created or resumed. Every decision is written to the audit
trail and logged as a SESSION INIT event, allowed or denied.

Reasons for denial:
    UNKNOWN_COACH    — the roster has no entry for the coach
    UNASSIGNED       — the coach has no module classification
    MODULE_MISMATCH  — the coach is classified under another module
    UNKNOWN_MODULE   — the requested module is not one of the five
"""

import logging
from dataclasses import dataclass

from railinspect.models import MODULE_TYPES, db
from railinspect.models.audit import write_audit
from railinspect.services.roster import RosterProvider, current_roster

logger = logging.getLogger(__name__)

UNKNOWN_COACH = "UNKNOWN_COACH"
UNASSIGNED = "UNASSIGNED"
MODULE_MISMATCH = "MODULE_MISMATCH"
UNKNOWN_MODULE = "UNKNOWN_MODULE"


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    coach_number: str
    module_type: str
    reason: str | None = None
    assigned_module: str | None = None


def _decide(coach_number: str, module_type: str, roster: RosterProvider) -> GuardDecision:
    if module_type not in MODULE_TYPES:
        return GuardDecision(False, coach_number, module_type, UNKNOWN_MODULE)

    profile = roster.get_profile(coach_number)
    if profile is None:
        return GuardDecision(False, coach_number, module_type, UNKNOWN_COACH)

    assigned = roster.get_module_assignment(coach_number)
    if assigned is None:
        return GuardDecision(False, coach_number, module_type, UNASSIGNED)
    if assigned != module_type:
        return GuardDecision(False, coach_number, module_type, MODULE_MISMATCH, assigned)
    return GuardDecision(True, coach_number, module_type, assigned_module=assigned)


def authorize(coach_number: str, module_type: str, principal,
              roster: RosterProvider | None = None) -> GuardDecision:
    """
    Check *coach_number* against the roster for *module_type*.

    Writes one audit row (session.init.allowed / session.init.denied) and
    commits it, so denials survive even though no session is created.
    """
    roster = roster or current_roster()
    decision = _decide(coach_number, module_type, roster)
    outcome = "allowed" if decision.allowed else "denied"

    write_audit(
        entity_type="coach",
        entity_id=coach_number,
        action=f"session.init.{outcome}",
        actor=principal.id,
        module_type=module_type,
        diff={
            "outcome": outcome,
            "coach_number": coach_number,
            "module_type": module_type,
            "principal_role": principal.role,
            "reason": decision.reason,
            "assigned_module": decision.assigned_module,
        },
    )
    db.session.commit()

    log = logger.info if decision.allowed else logger.warning
    log(
        "SESSION INIT %s coach=%s module=%s principal=%s reason=%s",
        outcome.upper(), coach_number, module_type, principal.id, decision.reason,
        extra={
            "event_type": "SESSION_INIT",
            "outcome": outcome,
            "coach_number": coach_number,
            "module_type": module_type,
            "principal_id": principal.id,
        },
    )
    return decision
