"""
Shared pytest fixtures for the railway inspection test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - inspector / supervisor / admin: Principal objects for service calls
    - inspector_headers / admin_headers: Bearer headers for API calls
    - sickline_coach / sickline_checklist: a SICKLINE coach and its checklist
"""

import pytest

from railinspect import create_app
from railinspect.auth import Principal
from railinspect.models import db as _db
from railinspect.services.checklist_store import add_node
from railinspect.services.jwt_service import generate_access_token
from railinspect.services.roster import upsert_coach


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Principals & tokens ──────────────────────────────────────────────────


@pytest.fixture()
def inspector():
    return Principal(id="insp-7", role="inspector")


@pytest.fixture()
def supervisor():
    return Principal(id="sup-2", role="supervisor")


@pytest.fixture()
def admin():
    return Principal(id="admin-1", role="admin")


def auth_headers(principal_id: str, role: str) -> dict:
    return {"Authorization": f"Bearer {generate_access_token(principal_id, role)}"}


@pytest.fixture()
def inspector_headers(inspector):
    return auth_headers(inspector.id, inspector.role)


@pytest.fixture()
def admin_headers(admin):
    return auth_headers(admin.id, admin.role)


# ── Roster & checklist factories ─────────────────────────────────────────


def build_subcategory(module, category_id, name, n_questions, *,
                      requires_amenity=None, requires_compartment=False):
    """Create subcategory → item → n questions; return (subcategory, [question ids])."""
    sub = add_node(module, "subcategory", name, parent_id=category_id,
                   requires_amenity=requires_amenity,
                   requires_compartment=requires_compartment)
    item = add_node(module, "item", f"{name} fittings", parent_id=sub.id)
    questions = [
        add_node(module, "question", f"{name} check {i + 1}", parent_id=item.id).id
        for i in range(n_questions)
    ]
    return sub, questions


def build_checklist(module):
    """
    Standard tree used across the suite:

        Coach Interior
          ├─ Lavatory      (requires LAVATORY)      6 questions
          ├─ Compartment   (requires compartments)  2 questions
          └─ Exterior                               3 questions
    """
    category = add_node(module, "category", "Coach Interior")
    lavatory, lav_q = build_subcategory(module, category.id, "Lavatory", 6,
                                        requires_amenity="LAVATORY")
    compartment, comp_q = build_subcategory(module, category.id, "Compartment", 2,
                                            requires_compartment=True)
    exterior, ext_q = build_subcategory(module, category.id, "Exterior", 3)
    return {
        "category": category.id,
        "lavatory": lavatory.id,
        "lavatory_questions": lav_q,
        "compartment": compartment.id,
        "compartment_questions": comp_q,
        "exterior": exterior.id,
        "exterior_questions": ext_q,
    }


@pytest.fixture()
def sickline_coach():
    return upsert_coach("21225-B1", "SICKLINE", train_number="12951",
                        coach_type="3A", amenities=["LAVATORY"])


@pytest.fixture()
def sickline_checklist():
    return build_checklist("SICKLINE")


def answer_all(questions, status="OK"):
    return [{"question_id": q, "status": status} for q in questions]
