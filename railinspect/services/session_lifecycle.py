"""
Session Lifecycle Manager.

One engine drives all five modules; each module's behaviour comes from its
transition table in ``railinspect.models.inspection.SESSION_WORKFLOWS``.

Concurrency:
    - The (coach, module) slot is claimed by inserting a row with a unique
      ``active_key``. The loser of a concurrent start gets an IntegrityError,
      rolls back and resumes the winner's session.
    - Every mutation is a compare-and-swap UPDATE on ``version`` (and
      ``status``). Submit/complete re-run their checks when only the version
      moved and raise AlreadyTransitioned once the status has moved on.
    - No in-process lock is held across a database call.
"""

import logging
from datetime import UTC, datetime

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from railinspect.core.exceptions import (
    AlreadyTransitioned,
    IncompleteChecklist,
    InvalidTransition,
    ModuleAccessDenied,
    NotFoundError,
    SessionTerminal,
    UnresolvedDefects,
    ValidationError,
)
from railinspect.models import db
from railinspect.models.audit import write_audit
from railinspect.models.checklist import ChecklistNode
from railinspect.models.inspection import (
    ANSWER_STATUSES,
    STATUS_RANK,
    Defect,
    InspectionAnswer,
    InspectionSession,
    validate_session_transition,
    workflow_for,
)
from railinspect.services.module_guard import authorize
from railinspect.services.progress import missing_questions
from railinspect.services.roster import RosterProvider, current_roster

logger = logging.getLogger(__name__)

AUTOSAVE_ATTEMPTS = 2


def completion_step_for(module_type: str) -> bool:
    """Whether a session opened now runs the WSP completion variant; read at creation only."""
    return module_type == "WSP" and bool(current_app.config.get("WSP_COMPLETION_STEP", False))


def get_session(session_id: int, *, fresh: bool = False) -> InspectionSession:
    session = db.session.get(InspectionSession, session_id, populate_existing=fresh)
    if session is None:
        raise NotFoundError(resource="InspectionSession", resource_id=session_id)
    return session


def _active_session(module_type: str, coach_number: str) -> InspectionSession | None:
    return db.session.execute(
        select(InspectionSession)
        .where(InspectionSession.active_key == InspectionSession.slot_key(module_type, coach_number))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


# ── Start / resume ───────────────────────────────────────────────────────────


def start_or_resume(coach_number: str, module_type: str, inspector_id: str, principal,
                    roster: RosterProvider | None = None) -> tuple[InspectionSession, bool]:
    """
    Return the non-terminal session for (coach, module), creating it if none exists.

    The module isolation guard runs first on every call. Returns
    ``(session, created)``.
    """
    roster = roster or current_roster()
    decision = authorize(coach_number, module_type, principal, roster)
    if not decision.allowed:
        raise ModuleAccessDenied(coach_number, module_type, decision.reason,
                                 assigned_module=decision.assigned_module)

    existing = _active_session(module_type, coach_number)
    if existing is not None:
        _record_resume(existing, principal)
        return existing, False

    completion_step = completion_step_for(module_type)
    workflow = workflow_for(module_type, wsp_completion_step=completion_step)
    profile = roster.get_profile(coach_number)
    session = InspectionSession(
        module_type=module_type,
        coach_number=coach_number,
        train_number=profile.train_number if profile else None,
        inspector_id=str(inspector_id or principal.id),
        created_by=principal.id,
        status=workflow["initial"],
        version=1,
        completion_step=completion_step,
        active_key=InspectionSession.slot_key(module_type, coach_number),
    )
    try:
        db.session.add(session)
        db.session.flush()
        write_audit(
            entity_type="session",
            entity_id=session.id,
            action="session.create",
            actor=principal.id,
            module_type=module_type,
            diff={"coach_number": coach_number, "status": session.status},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = _active_session(module_type, coach_number)
        if existing is None:
            raise
        logger.info("Concurrent start for %s/%s; resuming session %s",
                    module_type, coach_number, existing.id)
        _record_resume(existing, principal)
        return existing, False

    logger.info("Session %s created for %s/%s by %s",
                session.id, module_type, coach_number, principal.id,
                extra={"session_id": session.id, "module_type": module_type,
                       "coach_number": coach_number, "principal_id": principal.id})
    return session, True


def _record_resume(session: InspectionSession, principal):
    write_audit(
        entity_type="session",
        entity_id=session.id,
        action="session.resume",
        actor=principal.id,
        module_type=session.module_type,
        diff={"status": session.status},
    )
    db.session.commit()


# ── Autosave ─────────────────────────────────────────────────────────────────


def _normalize_answers(answers) -> dict[int, dict]:
    """Validate the raw answer list; the last entry wins per question."""
    if not isinstance(answers, list):
        raise ValidationError("answers must be a list", details={"field": "answers"})
    cleaned: dict[int, dict] = {}
    for idx, raw in enumerate(answers):
        if not isinstance(raw, dict):
            raise ValidationError("Each answer must be an object", details={"index": idx})
        try:
            question_id = int(raw.get("question_id"))
        except (TypeError, ValueError):
            raise ValidationError("question_id is required", details={"index": idx})
        status = str(raw.get("status") or "").upper()
        if status not in ANSWER_STATUSES:
            raise ValidationError(
                f"Invalid answer status '{raw.get('status')}'",
                details={"index": idx, "allowed": sorted(ANSWER_STATUSES)},
            )
        cleaned[question_id] = {"status": status, "remarks": str(raw.get("remarks") or "")}
    return cleaned


def _check_questions(module_type: str, question_ids) -> None:
    if not question_ids:
        return
    known = set(db.session.execute(
        select(ChecklistNode.id).where(
            ChecklistNode.id.in_(question_ids),
            ChecklistNode.module_type == module_type,
            ChecklistNode.node_type == "question",
        )
    ).scalars())
    unknown = sorted(set(question_ids) - known)
    if unknown:
        raise ValidationError(
            f"{len(unknown)} question(s) do not belong to the {module_type} checklist",
            details={"unknown_question_ids": unknown},
        )


def autosave(session_id: int, answers, principal) -> dict:
    """
    Upsert answers for a session and bump ``last_saved_at``.

    Only accepted while the session is in an editable state; otherwise
    SessionTerminal. Safe to retry: re-sending an answer overwrites it.
    """
    session = get_session(session_id)
    cleaned = _normalize_answers(answers)
    _check_questions(session.module_type, list(cleaned))
    workflow = session.workflow

    for attempt in range(AUTOSAVE_ATTEMPTS):
        now = datetime.now(UTC)
        claimed = db.session.execute(
            update(InspectionSession)
            .where(
                InspectionSession.id == session_id,
                InspectionSession.status.in_(sorted(workflow["editable"])),
            )
            .values(version=InspectionSession.version + 1, last_saved_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.session.rollback()
            current = get_session(session_id, fresh=True)
            raise SessionTerminal(session_id, current.status)

        existing = {
            a.question_id: a
            for a in db.session.execute(
                select(InspectionAnswer).where(
                    InspectionAnswer.session_id == session_id,
                    InspectionAnswer.question_id.in_(list(cleaned)),
                )
            ).scalars()
        }
        for question_id, values in cleaned.items():
            answer = existing.get(question_id)
            if answer is None:
                answer = InspectionAnswer(session_id=session_id, question_id=question_id)
                db.session.add(answer)
            answer.status = values["status"]
            answer.remarks = values["remarks"]
            answer.answered_by = principal.id
            answer.recorded_at = now
        try:
            db.session.commit()
            break
        except IntegrityError:
            # Another autosave inserted one of these questions first
            db.session.rollback()
            if attempt == AUTOSAVE_ATTEMPTS - 1:
                raise
            logger.info("Autosave conflict on session %s; retrying", session_id)

    session = get_session(session_id, fresh=True)
    logger.debug("Autosaved %d answer(s) on session %s", len(cleaned), session_id,
                 extra={"session_id": session_id, "module_type": session.module_type})
    return {
        "session_id": session.id,
        "saved": len(cleaned),
        "version": session.version,
        "last_saved_at": session.last_saved_at.isoformat() if session.last_saved_at else None,
    }


def list_answers(session_id: int) -> list[InspectionAnswer]:
    get_session(session_id)
    return db.session.execute(
        select(InspectionAnswer)
        .where(InspectionAnswer.session_id == session_id)
        .order_by(InspectionAnswer.question_id)
    ).scalars().all()


# ── Transitions ──────────────────────────────────────────────────────────────


def _check_preconditions(session: InspectionSession, action: str):
    if action == "submit":
        missing = missing_questions(session)
        if missing:
            raise IncompleteChecklist(session.id, missing)
    elif action == "complete":
        open_ids = db.session.execute(
            select(Defect.id).where(Defect.session_id == session.id, Defect.status == "OPEN")
        ).scalars().all()
        if open_ids:
            raise UnresolvedDefects(session.id, list(open_ids))


def _transition(session_id: int, action: str, principal) -> InspectionSession:
    retries = current_app.config.get("TRANSITION_RETRIES", 3)

    for _ in range(retries + 1):
        session = get_session(session_id, fresh=True)
        workflow = session.workflow
        old_status = session.status

        target = validate_session_transition(workflow, action, old_status)
        if target is None:
            rule = workflow["transitions"].get(action)
            if rule and STATUS_RANK.get(old_status, 0) >= STATUS_RANK[rule[1]]:
                raise AlreadyTransitioned(session_id, action, old_status)
            raise InvalidTransition(session_id, action, old_status, session.module_type)

        _check_preconditions(session, action)

        now = datetime.now(UTC)
        values = {"status": target, "version": session.version + 1}
        if target in workflow["terminal"]:
            values["active_key"] = None
        if action == "submit":
            values["submitted_at"] = now
        else:
            values["completed_at"] = now

        result = db.session.execute(
            update(InspectionSession)
            .where(
                InspectionSession.id == session_id,
                InspectionSession.version == session.version,
                InspectionSession.status == old_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            write_audit(
                entity_type="session",
                entity_id=session_id,
                action=f"session.{action}",
                actor=principal.id,
                module_type=session.module_type,
                diff={"status": [old_status, target]},
            )
            db.session.commit()
            logger.info("Session %s %s: %s → %s", session_id, action, old_status, target,
                        extra={"session_id": session_id, "module_type": session.module_type,
                               "principal_id": principal.id})
            return get_session(session_id, fresh=True)

        db.session.rollback()
        logger.debug("Session %s moved under '%s'; re-checking", session_id, action)

    current = get_session(session_id, fresh=True)
    raise AlreadyTransitioned(session_id, action, current.status)


def submit(session_id: int, principal) -> InspectionSession:
    """Move the session to SUBMITTED once every applicable question is addressed."""
    return _transition(session_id, "submit", principal)


def complete(session_id: int, principal) -> InspectionSession:
    """Move a SUBMITTED session to COMPLETED once all of its defects are resolved."""
    return _transition(session_id, "complete", principal)
