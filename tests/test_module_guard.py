"""
Module isolation guard tests.

Covers:
    - allowed decision for a coach classified under the requested module
    - denial for cross-module requests, unknown and unassigned coaches
    - SESSION INIT audit rows and log lines for both outcomes
    - start_or_resume refusing to create a session on denial
    - injected roster providers
"""

import logging

import pytest

from railinspect.core.exceptions import ModuleAccessDenied
from railinspect.models import db
from railinspect.models.audit import AuditLog
from railinspect.models.inspection import InspectionSession
from railinspect.services.module_guard import (
    MODULE_MISMATCH,
    UNASSIGNED,
    UNKNOWN_COACH,
    UNKNOWN_MODULE,
    authorize,
)
from railinspect.services.roster import CoachProfile, RosterProvider, upsert_coach
from railinspect.services.session_lifecycle import start_or_resume


class StaticRoster(RosterProvider):
    def __init__(self, assignments):
        self.assignments = assignments

    def get_module_assignment(self, coach_number):
        return self.assignments.get(coach_number)

    def get_profile(self, coach_number):
        if coach_number not in self.assignments:
            return None
        return CoachProfile(coach_number=coach_number,
                            module_type=self.assignments[coach_number])


def _audit_rows(action):
    return AuditLog.query.filter_by(action=action).all()


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


class TestDecisions:
    def test_allowed_when_classification_matches(self, inspector):
        upsert_coach("21225-B1", "SICKLINE")
        decision = authorize("21225-B1", "SICKLINE", inspector)
        assert decision.allowed is True
        assert decision.reason is None

    @pytest.mark.parametrize("requested", ["WSP", "COMMISSIONARY", "CAI", "PITLINE"])
    def test_cross_module_request_denied(self, inspector, requested):
        upsert_coach("21225-B1", "SICKLINE")
        decision = authorize("21225-B1", requested, inspector)
        assert decision.allowed is False
        assert decision.reason == MODULE_MISMATCH
        assert decision.assigned_module == "SICKLINE"

    def test_unknown_coach_denied(self, inspector):
        decision = authorize("99999-X", "SICKLINE", inspector)
        assert decision.allowed is False
        assert decision.reason == UNKNOWN_COACH

    def test_unassigned_coach_denied(self, inspector):
        upsert_coach("40011-C", None)
        decision = authorize("40011-C", "CAI", inspector)
        assert decision.allowed is False
        assert decision.reason == UNASSIGNED

    def test_unknown_module_denied(self, inspector):
        upsert_coach("21225-B1", "SICKLINE")
        decision = authorize("21225-B1", "YARD", inspector)
        assert decision.allowed is False
        assert decision.reason == UNKNOWN_MODULE

    def test_injected_roster_is_consulted(self, inspector):
        roster = StaticRoster({"PL-300": "PITLINE"})
        assert authorize("PL-300", "PITLINE", inspector, roster).allowed
        assert not authorize("PL-300", "WSP", inspector, roster).allowed


# ═════════════════════════════════════════════════════════════════════════════
# Audit trail
# ═════════════════════════════════════════════════════════════════════════════


class TestSessionInitAudit:
    def test_allowed_decision_writes_audit_row(self, inspector):
        upsert_coach("21225-B1", "SICKLINE")
        authorize("21225-B1", "SICKLINE", inspector)

        rows = _audit_rows("session.init.allowed")
        assert len(rows) == 1
        assert rows[0].entity_id == "21225-B1"
        assert rows[0].module_type == "SICKLINE"
        assert rows[0].actor == inspector.id
        assert rows[0].diff["outcome"] == "allowed"

    def test_denied_decision_writes_audit_row(self, inspector):
        upsert_coach("21225-B1", "COMMISSIONARY")
        authorize("21225-B1", "SICKLINE", inspector)

        rows = _audit_rows("session.init.denied")
        assert len(rows) == 1
        assert rows[0].diff["reason"] == MODULE_MISMATCH
        assert rows[0].diff["assigned_module"] == "COMMISSIONARY"

    def test_denied_audit_survives_rollback(self, inspector):
        authorize("nope", "WSP", inspector)
        db.session.rollback()
        assert len(_audit_rows("session.init.denied")) == 1

    def test_session_init_log_line(self, inspector, caplog):
        upsert_coach("21225-B1", "SICKLINE")
        with caplog.at_level(logging.INFO, logger="railinspect.services.module_guard"):
            authorize("21225-B1", "SICKLINE", inspector)
            authorize("21225-B1", "CAI", inspector)
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("SESSION INIT ALLOWED") for m in messages)
        assert any(m.startswith("SESSION INIT DENIED") for m in messages)


# ═════════════════════════════════════════════════════════════════════════════
# Guard runs before any session is created
# ═════════════════════════════════════════════════════════════════════════════


class TestGuardBeforeSession:
    def test_denied_start_creates_nothing(self, inspector):
        upsert_coach("21225-B1", "COMMISSIONARY")
        with pytest.raises(ModuleAccessDenied) as exc:
            start_or_resume("21225-B1", "SICKLINE", inspector.id, inspector)
        assert exc.value.reason == MODULE_MISMATCH
        assert exc.value.details["assigned_module"] == "COMMISSIONARY"
        assert InspectionSession.query.count() == 0

    def test_resume_is_guarded_too(self, inspector):
        upsert_coach("21225-B1", "SICKLINE")
        session, _ = start_or_resume("21225-B1", "SICKLINE", inspector.id, inspector)
        with pytest.raises(ModuleAccessDenied):
            start_or_resume("21225-B1", "WSP", inspector.id, inspector)
        assert InspectionSession.query.count() == 1
        assert session.module_type == "SICKLINE"
