"""
Defect Ledger — raise, resolve and query defects across all modules.

Defects share one table; every row carries the ``module_type`` of the
session it was raised under, so cross-module reads need no join.

Raising is allowed only while the owning session is editable. Resolving is
allowed at any time but requires an after-photo reference, and only an OPEN
defect can be resolved. Duplicate OPEN defects per (session, question) are
blocked by the unique ``open_key`` column.
"""

import json
import logging
from datetime import UTC, datetime, time

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from railinspect.core.exceptions import (
    AlreadyResolved,
    DuplicateDefect,
    MissingEvidence,
    NotFoundError,
    SessionTerminal,
    ValidationError,
)
from railinspect.models import db
from railinspect.models.audit import write_audit
from railinspect.models.checklist import ChecklistNode
from railinspect.models.inspection import DEFECT_STATUSES, Defect, InspectionSession
from railinspect.services.session_lifecycle import get_session

logger = logging.getLogger(__name__)


def get_defect(defect_id: int, *, fresh: bool = False) -> Defect:
    defect = db.session.get(Defect, defect_id, populate_existing=fresh)
    if defect is None:
        raise NotFoundError(resource="Defect", resource_id=defect_id)
    return defect


def _reason_texts(question: ChecklistNode, reasons) -> list[str]:
    """Resolve reason ids against the question's catalog; free-text entries pass through."""
    catalog = {r.id: r.text for r in question.reasons}
    texts, unknown = [], []
    for entry in reasons or []:
        if isinstance(entry, int) and not isinstance(entry, bool):
            if entry in catalog:
                texts.append(catalog[entry])
            else:
                unknown.append(entry)
        elif isinstance(entry, str) and entry.strip():
            texts.append(entry.strip())
    if unknown:
        raise ValidationError(
            f"Unknown reason id(s) for question {question.id}",
            details={"question_id": question.id, "unknown_reason_ids": unknown},
        )
    return texts


def raise_defect(session_id: int, question_id: int, principal, before_photo: str | None = None,
                 reasons=None, remarks: str = "") -> Defect:
    """Record a defect against a question of an editable session."""
    session = get_session(session_id)
    workflow = session.workflow

    question = db.session.get(ChecklistNode, question_id)
    if (question is None or question.node_type != "question"
            or question.module_type != session.module_type):
        raise NotFoundError(resource="Question", resource_id=question_id)
    reason_texts = _reason_texts(question, reasons)

    key = Defect.open_slot_key(session_id, question_id)
    existing = db.session.execute(select(Defect).where(Defect.open_key == key)).scalar_one_or_none()
    if existing is not None:
        raise DuplicateDefect(session_id, question_id, existing.id)

    # Claim the session row so a concurrent submit re-checks after this write
    claimed = db.session.execute(
        update(InspectionSession)
        .where(
            InspectionSession.id == session_id,
            InspectionSession.status.in_(sorted(workflow["editable"])),
        )
        .values(version=InspectionSession.version + 1)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.session.rollback()
        raise SessionTerminal(session_id, get_session(session_id, fresh=True).status)

    defect = Defect(
        session_id=session_id,
        module_type=session.module_type,
        question_id=question_id,
        status="OPEN",
        open_key=key,
        before_photo=before_photo or None,
        reasons_json=json.dumps(reason_texts),
        remarks=remarks or "",
        raised_by=principal.id,
    )
    try:
        db.session.add(defect)
        db.session.flush()
        write_audit(
            entity_type="defect",
            entity_id=defect.id,
            action="defect.raise",
            actor=principal.id,
            module_type=session.module_type,
            diff={"session_id": session_id, "question_id": question_id},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = db.session.execute(select(Defect).where(Defect.open_key == key)).scalar_one_or_none()
        if winner is None:
            raise
        raise DuplicateDefect(session_id, question_id, winner.id)

    logger.info("Defect %s raised on session %s question %s", defect.id, session_id, question_id,
                extra={"defect_id": defect.id, "session_id": session_id,
                       "module_type": session.module_type, "principal_id": principal.id})
    return defect


def resolve_defect(defect_id: int, principal, after_photo: str | None = None,
                   resolution_remark: str = "") -> Defect:
    """Mark an OPEN defect RESOLVED; requires *after_photo*."""
    defect = get_defect(defect_id)
    if not after_photo or not str(after_photo).strip():
        raise MissingEvidence(defect_id)

    now = datetime.now(UTC)
    result = db.session.execute(
        update(Defect)
        .where(Defect.id == defect_id, Defect.status == "OPEN")
        .values(
            status="RESOLVED",
            open_key=None,
            after_photo=str(after_photo).strip(),
            resolution_remark=resolution_remark or "",
            resolved_by=principal.id,
            resolved_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise AlreadyResolved(defect_id, get_defect(defect_id, fresh=True).status)

    write_audit(
        entity_type="defect",
        entity_id=defect_id,
        action="defect.resolve",
        actor=principal.id,
        module_type=defect.module_type,
        diff={"status": ["OPEN", "RESOLVED"]},
    )
    db.session.commit()
    logger.info("Defect %s resolved by %s", defect_id, principal.id,
                extra={"defect_id": defect_id, "module_type": defect.module_type,
                       "principal_id": principal.id})
    return get_defect(defect_id, fresh=True)


def _check_status(status):
    if status is not None and status not in DEFECT_STATUSES:
        raise ValidationError(
            f"Invalid defect status '{status}'",
            details={"allowed": sorted(DEFECT_STATUSES)},
        )


def list_session_defects(session_id: int, status: str | None = None) -> list[Defect]:
    get_session(session_id)
    _check_status(status)
    stmt = select(Defect).where(Defect.session_id == session_id)
    if status:
        stmt = stmt.where(Defect.status == status)
    return db.session.execute(stmt.order_by(Defect.created_at, Defect.id)).scalars().all()


# ── Cross-session reads ──────────────────────────────────────────────────────


def _filtered(stmt, module_type, *, start_date=None, end_date=None, inspector=None, status=None):
    _check_status(status)
    stmt = stmt.where(Defect.module_type == module_type)
    if start_date:
        stmt = stmt.where(Defect.created_at >= datetime.combine(start_date, time.min, tzinfo=UTC))
    if end_date:
        stmt = stmt.where(Defect.created_at <= datetime.combine(end_date, time.max, tzinfo=UTC))
    if inspector:
        stmt = stmt.where(Defect.raised_by == inspector)
    if status:
        stmt = stmt.where(Defect.status == status)
    return stmt


def find_defects(module_type: str, *, top: int | None = None, **filters) -> list[Defect]:
    """Newest-first defects of one module matching *filters* (start_date, end_date, inspector, status)."""
    stmt = _filtered(select(Defect), module_type, **filters).order_by(
        Defect.created_at.desc(), Defect.id.desc()
    )
    if top is not None:
        stmt = stmt.limit(top)
    return db.session.execute(stmt).scalars().all()


def count_defects(module_type: str, **filters) -> int:
    return db.session.execute(
        _filtered(select(func.count(Defect.id)), module_type, **filters)
    ).scalar() or 0
