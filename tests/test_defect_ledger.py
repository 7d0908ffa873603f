"""
Defect ledger tests.

Covers raise (duplicates, reasons, locked sessions), resolve (evidence,
double resolve), per-session listing and the cross-module read accessor.
"""

import pytest

from conftest import build_checklist
from railinspect.core.exceptions import (
    AlreadyResolved,
    DuplicateDefect,
    MissingEvidence,
    NotFoundError,
    SessionTerminal,
    ValidationError,
)
from railinspect.models.audit import AuditLog
from railinspect.models.inspection import Defect
from railinspect.services import defect_ledger, session_lifecycle
from railinspect.services.checklist_store import add_reason
from railinspect.services.roster import upsert_coach


@pytest.fixture()
def open_session(inspector, sickline_coach):
    session, _ = session_lifecycle.start_or_resume("21225-B1", "SICKLINE", inspector.id, inspector)
    return session


@pytest.fixture()
def question(sickline_checklist):
    return sickline_checklist["exterior_questions"][0]


# ═════════════════════════════════════════════════════════════════════════════
# Raise
# ═════════════════════════════════════════════════════════════════════════════


class TestRaise:
    def test_raise_open_defect(self, inspector, open_session, question):
        defect = defect_ledger.raise_defect(open_session.id, question, inspector,
                                            before_photo="s3://before/1.jpg", remarks="loose")
        assert defect.status == "OPEN"
        assert defect.module_type == "SICKLINE"
        assert defect.before_photo == "s3://before/1.jpg"
        assert defect.raised_by == inspector.id
        assert defect.resolved_at is None
        assert AuditLog.query.filter_by(action="defect.raise").count() == 1

    def test_duplicate_open_defect_rejected(self, inspector, open_session, question):
        first = defect_ledger.raise_defect(open_session.id, question, inspector)
        with pytest.raises(DuplicateDefect) as exc:
            defect_ledger.raise_defect(open_session.id, question, inspector)
        assert exc.value.details["existing_defect_id"] == first.id
        assert Defect.query.count() == 1

    def test_raise_again_after_resolution(self, inspector, supervisor, open_session, question):
        first = defect_ledger.raise_defect(open_session.id, question, inspector)
        defect_ledger.resolve_defect(first.id, supervisor, after_photo="s3://after/1.jpg")
        second = defect_ledger.raise_defect(open_session.id, question, inspector)
        assert second.id != first.id

    def test_reason_ids_resolved_to_catalog_text(self, inspector, open_session, question):
        reason = add_reason(question, "Glass cracked")
        defect = defect_ledger.raise_defect(open_session.id, question, inspector,
                                            reasons=[reason.id, "Seal missing"])
        assert defect.reasons == ["Glass cracked", "Seal missing"]

    def test_unknown_reason_id_rejected(self, inspector, open_session, question):
        with pytest.raises(ValidationError) as exc:
            defect_ledger.raise_defect(open_session.id, question, inspector, reasons=[777])
        assert exc.value.details["unknown_reason_ids"] == [777]

    def test_question_from_other_module(self, inspector, open_session):
        cai = build_checklist("CAI")
        with pytest.raises(NotFoundError):
            defect_ledger.raise_defect(open_session.id, cai["exterior_questions"][0], inspector)

    def test_non_question_node_rejected(self, inspector, open_session, sickline_checklist):
        with pytest.raises(NotFoundError):
            defect_ledger.raise_defect(open_session.id, sickline_checklist["exterior"], inspector)

    def test_raise_on_locked_session(self, inspector):
        upsert_coach("C-1", "CAI")
        tree = build_checklist("CAI")
        session, _ = session_lifecycle.start_or_resume("C-1", "CAI", inspector.id, inspector)
        session_lifecycle.autosave(
            session.id,
            [{"question_id": q, "status": "OK"} for q in tree["exterior_questions"]],
            inspector,
        )
        session_lifecycle.submit(session.id, inspector)

        with pytest.raises(SessionTerminal):
            defect_ledger.raise_defect(session.id, tree["exterior_questions"][0], inspector)


# ═════════════════════════════════════════════════════════════════════════════
# Resolve
# ═════════════════════════════════════════════════════════════════════════════


class TestResolve:
    @pytest.mark.parametrize("photo", [None, "", "   "])
    def test_missing_evidence(self, inspector, supervisor, open_session, question, photo):
        defect = defect_ledger.raise_defect(open_session.id, question, inspector)
        with pytest.raises(MissingEvidence):
            defect_ledger.resolve_defect(defect.id, supervisor, after_photo=photo)
        assert defect_ledger.get_defect(defect.id, fresh=True).status == "OPEN"

    def test_resolve_sets_status_and_timestamp(self, inspector, supervisor, open_session, question):
        defect = defect_ledger.raise_defect(open_session.id, question, inspector)
        resolved = defect_ledger.resolve_defect(defect.id, supervisor, after_photo="s3://after/2.jpg",
                                                resolution_remark="replaced")
        assert resolved.status == "RESOLVED"
        assert resolved.resolved_at is not None
        assert resolved.after_photo == "s3://after/2.jpg"
        assert resolved.resolved_by == supervisor.id
        assert resolved.resolution_remark == "replaced"
        assert resolved.open_key is None

    def test_double_resolve(self, inspector, supervisor, open_session, question):
        defect = defect_ledger.raise_defect(open_session.id, question, inspector)
        defect_ledger.resolve_defect(defect.id, supervisor, after_photo="a.jpg")
        with pytest.raises(AlreadyResolved):
            defect_ledger.resolve_defect(defect.id, supervisor, after_photo="b.jpg")

    def test_resolve_allowed_after_submit(self, inspector, supervisor, open_session,
                                          sickline_checklist):
        questions = sickline_checklist["lavatory_questions"] + sickline_checklist["exterior_questions"]
        session_lifecycle.autosave(
            open_session.id, [{"question_id": q, "status": "OK"} for q in questions[1:]], inspector,
        )
        defect = defect_ledger.raise_defect(open_session.id, questions[0], inspector)
        session_lifecycle.submit(open_session.id, inspector)

        assert defect_ledger.resolve_defect(defect.id, supervisor, after_photo="a.jpg").status == "RESOLVED"

    def test_unknown_defect(self, supervisor):
        with pytest.raises(NotFoundError):
            defect_ledger.resolve_defect(999, supervisor, after_photo="a.jpg")


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


class TestReads:
    def test_list_session_defects_with_status_filter(self, inspector, supervisor, open_session,
                                                     sickline_checklist):
        q1, q2 = sickline_checklist["exterior_questions"][:2]
        d1 = defect_ledger.raise_defect(open_session.id, q1, inspector)
        defect_ledger.raise_defect(open_session.id, q2, inspector)
        defect_ledger.resolve_defect(d1.id, supervisor, after_photo="a.jpg")

        assert len(defect_ledger.list_session_defects(open_session.id)) == 2
        assert [d.id for d in defect_ledger.list_session_defects(open_session.id, "RESOLVED")] == [d1.id]
        with pytest.raises(ValidationError):
            defect_ledger.list_session_defects(open_session.id, "CLOSED")

    def test_find_defects_is_module_scoped(self, inspector, open_session, question):
        defect_ledger.raise_defect(open_session.id, question, inspector)
        assert len(defect_ledger.find_defects("SICKLINE")) == 1
        assert defect_ledger.find_defects("CAI") == []
        assert defect_ledger.count_defects("SICKLINE", status="OPEN") == 1
        assert defect_ledger.count_defects("SICKLINE", inspector="someone-else") == 0
