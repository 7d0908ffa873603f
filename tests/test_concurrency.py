"""
Concurrency tests against a file-backed SQLite database.

In-memory SQLite shares one connection across threads, so these tests
build their own app on a temporary database file and run real threads,
each inside its own app context.
"""

import threading

import pytest

from conftest import answer_all, build_checklist
from railinspect import create_app
from railinspect.auth import Principal
from railinspect.core.exceptions import AlreadyTransitioned, DuplicateDefect, InspectionError
from railinspect.models import db
from railinspect.models.inspection import Defect, InspectionAnswer, InspectionSession
from railinspect.services import defect_ledger, session_lifecycle
from railinspect.services.roster import upsert_coach


@pytest.fixture()
def file_app(tmp_path):
    application = create_app(
        "testing",
        config_overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}"},
    )
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_pair(app, target):
    """Run *target* in two threads released together; return their outcomes."""
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker(n):
        with app.app_context():
            barrier.wait()
            try:
                result = target(n)
            except InspectionError as exc:
                result = exc
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_concurrent_submit_exactly_one_wins(file_app):
    inspector = Principal(id="insp-1", role="inspector")
    with file_app.app_context():
        upsert_coach("CM-77", "COMMISSIONARY")
        tree = build_checklist("COMMISSIONARY")
        session, _ = session_lifecycle.start_or_resume("CM-77", "COMMISSIONARY", inspector.id, inspector)
        session_lifecycle.autosave(session.id, answer_all(tree["exterior_questions"]), inspector)
        session_id = session.id
        db.session.remove()

    outcomes = _run_pair(
        file_app, lambda n: session_lifecycle.submit(session_id, inspector).status,
    )

    assert sorted(o if isinstance(o, str) else "lost" for o in outcomes) == ["SUBMITTED", "lost"]
    with file_app.app_context():
        stored = db.session.get(InspectionSession, session_id)
        assert stored.status == "SUBMITTED"
        assert stored.version == 3  # autosave + one submit


def test_concurrent_start_yields_one_session(file_app):
    with file_app.app_context():
        upsert_coach("21225-B1", "SICKLINE")
        db.session.remove()

    def start(n):
        principal = Principal(id=f"insp-{n}", role="inspector")
        session, _ = session_lifecycle.start_or_resume("21225-B1", "SICKLINE", principal.id, principal)
        return session.id

    outcomes = _run_pair(file_app, start)

    assert len(outcomes) == 2
    assert outcomes[0] == outcomes[1]
    with file_app.app_context():
        assert InspectionSession.query.count() == 1


def _submitted_sickline(app, inspector, coach="SL-9"):
    with app.app_context():
        upsert_coach(coach, "SICKLINE")
        tree = build_checklist("SICKLINE")
        session, _ = session_lifecycle.start_or_resume(coach, "SICKLINE", inspector.id, inspector)
        session_lifecycle.autosave(session.id, answer_all(tree["exterior_questions"]), inspector)
        session_lifecycle.submit(session.id, inspector)
        session_id = session.id
        db.session.remove()
    return session_id


def test_concurrent_complete_exactly_one_wins(file_app):
    supervisor = Principal(id="sup-1", role="supervisor")
    session_id = _submitted_sickline(file_app, Principal(id="insp-1", role="inspector"))

    outcomes = _run_pair(
        file_app, lambda n: session_lifecycle.complete(session_id, supervisor).status,
    )

    assert "COMPLETED" in outcomes
    assert sum(isinstance(o, AlreadyTransitioned) for o in outcomes) == 1
    with file_app.app_context():
        stored = db.session.get(InspectionSession, session_id)
        assert stored.status == "COMPLETED"
        assert stored.active_key is None
        assert stored.version == 4  # autosave + submit + one complete


def test_concurrent_raise_on_one_question_keeps_one_open_defect(file_app):
    inspector = Principal(id="insp-1", role="inspector")
    with file_app.app_context():
        upsert_coach("21225-B1", "SICKLINE")
        tree = build_checklist("SICKLINE")
        session, _ = session_lifecycle.start_or_resume("21225-B1", "SICKLINE", inspector.id, inspector)
        session_id, question_id = session.id, tree["exterior_questions"][0]
        db.session.remove()

    outcomes = _run_pair(
        file_app,
        lambda n: defect_ledger.raise_defect(session_id, question_id, inspector,
                                             before_photo=f"b{n}.jpg").id,
    )

    winners = [o for o in outcomes if isinstance(o, int)]
    losers = [o for o in outcomes if isinstance(o, DuplicateDefect)]
    assert len(winners) == 1 and len(losers) == 1
    assert losers[0].details["existing_defect_id"] == winners[0]
    with file_app.app_context():
        assert Defect.query.filter_by(session_id=session_id, status="OPEN").count() == 1


def test_submit_rechecks_after_concurrent_autosave(file_app, monkeypatch):
    inspector = Principal(id="insp-1", role="inspector")
    with file_app.app_context():
        upsert_coach("CM-78", "COMMISSIONARY")
        tree = build_checklist("COMMISSIONARY")
        session, _ = session_lifecycle.start_or_resume("CM-78", "COMMISSIONARY", inspector.id, inspector)
        exterior = tree["exterior_questions"]
        session_lifecycle.autosave(session.id, answer_all(exterior), inspector)
        session_id = session.id
        db.session.remove()

    def autosave_from_other_device():
        with file_app.app_context():
            try:
                session_lifecycle.autosave(session_id, answer_all(exterior, "DEFICIENCY"), inspector)
            finally:
                db.session.remove()

    seen_versions = []
    check = session_lifecycle._check_preconditions

    def check_then_interleave(session, action):
        seen_versions.append(session.version)
        check(session, action)
        if len(seen_versions) == 1:
            other = threading.Thread(target=autosave_from_other_device)
            other.start()
            other.join(timeout=30)

    monkeypatch.setattr(session_lifecycle, "_check_preconditions", check_then_interleave)

    with file_app.app_context():
        submitted = session_lifecycle.submit(session_id, inspector)
        assert seen_versions == [2, 3]
        assert (submitted.status, submitted.version) == ("SUBMITTED", 4)
        statuses = {a.status for a in InspectionAnswer.query.filter_by(session_id=session_id)}
        assert statuses == {"DEFICIENCY"}
        db.session.remove()
