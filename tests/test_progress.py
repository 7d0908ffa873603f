"""
Progress calculator tests.

Covers the applicable-question walk (amenity and compartment predicates,
inactive nodes, subtree pruning), subcategory scoping, the expected == 0
ratio rule, live recomputation after checklist edits, and the pending
defect / compliance extras.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import answer_all, build_subcategory
from railinspect.core.exceptions import NotFoundError, ValidationError
from railinspect.models import db
from railinspect.models.checklist import ChecklistNode
from railinspect.services import defect_ledger, session_lifecycle
from railinspect.services.checklist_store import add_node
from railinspect.services.progress import compute_progress
from railinspect.services.roster import upsert_coach


def _start(coach, module, principal):
    session, _ = session_lifecycle.start_or_resume(coach, module, principal.id, principal)
    return session


# ═════════════════════════════════════════════════════════════════════════════
# Worked example: Lavatory subcategory
# ═════════════════════════════════════════════════════════════════════════════


class TestLavatoryScenario:
    def test_four_answers_and_one_defect_out_of_six(self, inspector, sickline_coach):
        category = add_node("SICKLINE", "category", "Amenities")
        lavatory = ChecklistNode(
            id=123, module_type="SICKLINE", node_type="subcategory", parent_id=category.id,
            name="Lavatory", display_order=1, requires_amenity="LAVATORY",
        )
        db.session.add(lavatory)
        db.session.commit()
        item = add_node("SICKLINE", "item", "Lavatory fittings", parent_id=123)
        questions = [add_node("SICKLINE", "question", f"Q{i}", parent_id=item.id).id
                     for i in range(6)]

        session = _start("21225-B1", "SICKLINE", inspector)
        session_lifecycle.autosave(session.id, answer_all(questions[:4]), inspector)
        defect_ledger.raise_defect(session.id, questions[4], inspector, before_photo="b.jpg")

        result = compute_progress(session.id, subcategory_id=123)
        assert (result["expected"], result["completed"], result["ratio"]) == (6, 5, 0.833)
        assert result["pending_defects"] == 1


# ═════════════════════════════════════════════════════════════════════════════
# Applicability
# ═════════════════════════════════════════════════════════════════════════════


class TestApplicability:
    def test_amenity_and_compartment_predicates(self, inspector, sickline_coach,
                                                sickline_checklist):
        # coach: LAVATORY, no compartments → lavatory (6) + exterior (3)
        session = _start("21225-B1", "SICKLINE", inspector)
        result = compute_progress(session.id)
        assert result["expected"] == 9
        assert result["completed"] == 0
        assert result["ratio"] == 0.0

    def test_coach_without_lavatory(self, inspector, sickline_checklist):
        upsert_coach("GEN-1", "SICKLINE", has_compartments=True)
        session = _start("GEN-1", "SICKLINE", inspector)
        # compartment (2) + exterior (3)
        assert compute_progress(session.id)["expected"] == 5

    def test_inapplicable_subcategory_scope_has_ratio_one(self, inspector, sickline_checklist):
        upsert_coach("GEN-2", "SICKLINE")
        session = _start("GEN-2", "SICKLINE", inspector)
        result = compute_progress(session.id, subcategory_id=sickline_checklist["lavatory"])
        assert result["expected"] == 0
        assert result["completed"] == 0
        assert result["ratio"] == 1.0

    def test_empty_checklist_has_ratio_one(self, inspector):
        upsert_coach("CAI-9", "CAI")
        session = _start("CAI-9", "CAI", inspector)
        result = compute_progress(session.id)
        assert result["expected"] == 0
        assert result["ratio"] == 1.0
        assert result["compliance"] == 100.0

    def test_inactive_node_prunes_subtree(self, inspector, sickline_coach, sickline_checklist):
        node = db.session.get(ChecklistNode, sickline_checklist["lavatory"])
        node.is_active = False
        db.session.commit()

        session = _start("21225-B1", "SICKLINE", inspector)
        assert compute_progress(session.id)["expected"] == 3

    def test_other_modules_trees_ignored(self, inspector, sickline_coach, sickline_checklist):
        category = add_node("PITLINE", "category", "Undergear")
        build_subcategory("PITLINE", category.id, "Bogie", 4)

        session = _start("21225-B1", "SICKLINE", inspector)
        assert compute_progress(session.id)["expected"] == 9


# ═════════════════════════════════════════════════════════════════════════════
# Scoping & live recomputation
# ═════════════════════════════════════════════════════════════════════════════


class TestScoping:
    def test_subcategory_scope_restricts_both_counts(self, inspector, sickline_coach,
                                                     sickline_checklist):
        session = _start("21225-B1", "SICKLINE", inspector)
        session_lifecycle.autosave(
            session.id,
            answer_all(sickline_checklist["exterior_questions"] + sickline_checklist["lavatory_questions"][:1]),
            inspector,
        )
        exterior = compute_progress(session.id, subcategory_id=sickline_checklist["exterior"])
        assert (exterior["expected"], exterior["completed"], exterior["ratio"]) == (3, 3, 1.0)

        lavatory = compute_progress(session.id, subcategory_id=sickline_checklist["lavatory"])
        assert (lavatory["expected"], lavatory["completed"], lavatory["ratio"]) == (6, 1, 0.167)

    def test_unknown_subcategory(self, inspector, sickline_coach, sickline_checklist):
        session = _start("21225-B1", "SICKLINE", inspector)
        with pytest.raises(NotFoundError):
            compute_progress(session.id, subcategory_id=sickline_checklist["category"])
        with pytest.raises(NotFoundError):
            compute_progress(session.id, subcategory_id=9999)

    def test_checklist_edit_seen_on_next_read(self, inspector, sickline_coach, sickline_checklist):
        session = _start("21225-B1", "SICKLINE", inspector)
        assert compute_progress(session.id)["expected"] == 9

        item = ChecklistNode.query.filter_by(
            parent_id=sickline_checklist["exterior"], node_type="item",
        ).one()
        add_node("SICKLINE", "question", "Vestibule door", parent_id=item.id)
        assert compute_progress(session.id)["expected"] == 10

    def test_by_subcategory_breakdown(self, inspector, supervisor, sickline_coach, sickline_checklist):
        session = _start("21225-B1", "SICKLINE", inspector)
        exterior = sickline_checklist["exterior_questions"]
        session_lifecycle.autosave(session.id, answer_all(exterior[:2]), inspector)

        def rows():
            return {row["name"]: row for row in compute_progress(session.id)["by_subcategory"]}

        breakdown = rows()
        assert set(breakdown) == {"Lavatory", "Exterior"}
        assert breakdown["Lavatory"]["status"] == "PENDING"
        assert breakdown["Lavatory"]["completed"] == 0
        assert breakdown["Exterior"]["status"] == "IN_PROGRESS"

        defect = defect_ledger.raise_defect(session.id, exterior[2], inspector, before_photo="b.jpg")
        exterior_row = rows()["Exterior"]
        assert exterior_row["ratio"] == 1.0
        assert exterior_row["pending_defects"] == 1
        assert exterior_row["status"] == "IN_PROGRESS"

        defect_ledger.resolve_defect(defect.id, supervisor, after_photo="a.jpg")
        exterior_row = rows()["Exterior"]
        assert (exterior_row["pending_defects"], exterior_row["status"]) == (0, "COMPLETED")

    def test_unknown_session(self):
        with pytest.raises(NotFoundError):
            compute_progress(31337)


# ═════════════════════════════════════════════════════════════════════════════
# Compliance
# ═════════════════════════════════════════════════════════════════════════════


class TestCompliance:
    def test_ok_share_of_rated_answers(self, inspector, sickline_coach, sickline_checklist):
        session = _start("21225-B1", "SICKLINE", inspector)
        ext = sickline_checklist["exterior_questions"]
        session_lifecycle.autosave(session.id, [
            {"question_id": ext[0], "status": "OK"},
            {"question_id": ext[1], "status": "DEFICIENCY"},
            {"question_id": ext[2], "status": "NA"},
        ], inspector)
        assert compute_progress(session.id)["compliance"] == 50.0


# ═════════════════════════════════════════════════════════════════════════════
# Checklist authoring
# ═════════════════════════════════════════════════════════════════════════════


class TestChecklistOrdering:
    def test_root_order_unique_per_module(self):
        add_node("CAI", "category", "Roof", display_order=1)
        with pytest.raises(ValidationError):
            add_node("CAI", "category", "Underframe", display_order=1)
        # another module may reuse the slot
        assert add_node("WSP", "category", "Roof", display_order=1).display_order == 1

    def test_root_order_enforced_by_database(self):
        add_node("CAI", "category", "Roof", display_order=1)
        db.session.add(ChecklistNode(module_type="CAI", node_type="category",
                                     name="Underframe", display_order=1))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_roots_append_after_last(self):
        add_node("CAI", "category", "Roof")
        assert add_node("CAI", "category", "Underframe").display_order == 2
