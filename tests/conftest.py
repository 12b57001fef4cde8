"""
Shared pytest fixtures for the Solution Approval Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_solution / make_workflow: service-level factories
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services.helpers.locking import reset_locks


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        reset_locks()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_solution():
    """Factory: create a Solution through the service layer and return its dict."""
    from app.services.solution_service import create_solution

    def _make(name="Data Center Migration", actor="alice", **fields):
        payload = {
            "name": name,
            "customer": "Acme Corp",
            "opportunity": "OPP-1001",
            "estimatedValue": 250000,
            "projectType": "migration",
            **fields,
        }
        return create_solution(payload, actor)

    return _make


@pytest.fixture()
def make_workflow():
    """Factory: create an ApprovalWorkflow through the service layer and return its dict."""
    from app.services.workflow_service import create_workflow

    def _make(name="Finance Review", actor="admin", steps=None, conditions=None, **fields):
        payload = {
            "name": name,
            "steps": steps if steps is not None else [
                {"name": "Finance Check", "type": "review", "assignedApprovers": ["cfo@acme.test"]},
            ],
            "conditionRules": conditions or [],
            **fields,
        }
        return create_workflow(payload, actor)

    return _make
