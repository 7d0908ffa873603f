"""
Progress Calculator.

Walks the live checklist tree of the session's module, keeps the questions
that apply to the inspected coach and counts how many are addressed. A
question is addressed when it has an answer or any defect raised against it.

Nothing is cached on the session row: the tree and the coach profile are
read on every call.
"""

import logging

from sqlalchemy import select

from railinspect.core.exceptions import NotFoundError
from railinspect.models import db
from railinspect.models.inspection import Defect, InspectionAnswer, InspectionSession
from railinspect.services.checklist_store import get_subcategory, load_tree
from railinspect.services.roster import CoachProfile, RosterProvider, current_roster

logger = logging.getLogger(__name__)


def _ratio(completed: int, expected: int) -> float:
    if expected == 0:
        return 1.0
    return round(completed / expected, 3)


def _compliance(statuses) -> float:
    ok = sum(1 for s in statuses if s == "OK")
    deficient = sum(1 for s in statuses if s == "DEFICIENCY")
    if ok + deficient == 0:
        return 100.0
    return round(ok / (ok + deficient) * 100, 1)


def _subcategory_status(completed: int, expected: int, pending_defects: int) -> str:
    """PENDING until something is addressed; COMPLETED only when all are and no defect is open."""
    if completed >= expected and pending_defects == 0:
        return "COMPLETED"
    if completed == 0:
        return "PENDING"
    return "IN_PROGRESS"


def profile_for(session: InspectionSession, roster: RosterProvider | None = None) -> CoachProfile:
    """Coach profile used for applicability; a minimal profile if the roster dropped the coach."""
    roster = roster or current_roster()
    profile = roster.get_profile(session.coach_number)
    if profile is None:
        logger.warning("Coach %s missing from roster; evaluating session %s with empty profile",
                       session.coach_number, session.id)
        profile = CoachProfile(coach_number=session.coach_number, module_type=session.module_type)
    return profile


def _load_session(session_id: int) -> InspectionSession:
    session = db.session.get(InspectionSession, session_id)
    if session is None:
        raise NotFoundError(resource="InspectionSession", resource_id=session_id)
    return session


def _path_applies(tree, node, profile) -> bool:
    parent = tree.get(node.parent_id) if node.parent_id is not None else None
    while parent is not None:
        if not parent.applies_to(profile):
            return False
        parent = tree.get(parent.parent_id) if parent.parent_id is not None else None
    return True


def _addressed_state(session_id: int):
    answers = dict(db.session.execute(
        select(InspectionAnswer.question_id, InspectionAnswer.status)
        .where(InspectionAnswer.session_id == session_id)
    ).all())
    defects = db.session.execute(
        select(Defect.question_id, Defect.status).where(Defect.session_id == session_id)
    ).all()
    return answers, defects


def missing_questions(session: InspectionSession, roster: RosterProvider | None = None) -> list[int]:
    """Applicable question ids with neither an answer nor a defect."""
    tree = load_tree(session.module_type)
    questions = tree.applicable_questions(profile_for(session, roster))
    answers, defects = _addressed_state(session.id)
    defected = {q for q, _ in defects}
    return sorted(q for q in questions if q not in answers and q not in defected)


def compute_progress(session_id: int, subcategory_id: int | None = None,
                     roster: RosterProvider | None = None) -> dict:
    """
    Expected vs. completed applicable questions for a session.

    With *subcategory_id* both counts are restricted to that subtree; an id
    that is not a subcategory of the session's module raises NotFoundError.
    ``ratio`` is 1.0 when nothing is expected.
    """
    session = _load_session(session_id)
    tree = load_tree(session.module_type)
    profile = profile_for(session, roster)

    if subcategory_id is not None:
        root = get_subcategory(tree, subcategory_id)
        questions = tree.applicable_questions(profile, root) if _path_applies(tree, root, profile) else []
    else:
        questions = tree.applicable_questions(profile)

    answers, defects = _addressed_state(session.id)
    defected = {q for q, _ in defects}
    in_scope = set(questions)

    completed = sum(1 for q in questions if q in answers or q in defected)
    pending = sum(1 for q, status in defects if q in in_scope and status == "OPEN")

    result = {
        "session_id": session.id,
        "module_type": session.module_type,
        "subcategory_id": subcategory_id,
        "expected": len(questions),
        "completed": completed,
        "ratio": _ratio(completed, len(questions)),
        "pending_defects": pending,
        "compliance": _compliance(answers[q] for q in questions if q in answers),
    }

    if subcategory_id is None:
        breakdown = []
        for category in tree.roots():
            if not category.applies_to(profile):
                continue
            for sub in tree.children[category.id]:
                if sub.node_type != "subcategory" or not sub.applies_to(profile):
                    continue
                sub_questions = tree.applicable_questions(profile, sub)
                done = sum(1 for q in sub_questions if q in answers or q in defected)
                scoped = set(sub_questions)
                open_here = sum(1 for q, status in defects if q in scoped and status == "OPEN")
                breakdown.append({
                    "subcategory_id": sub.id,
                    "name": sub.name,
                    "expected": len(sub_questions),
                    "completed": done,
                    "ratio": _ratio(done, len(sub_questions)),
                    "pending_defects": open_here,
                    "status": _subcategory_status(done, len(sub_questions), open_here),
                })
        result["by_subcategory"] = breakdown

    return result
