"""
Shared pytest fixtures for the Dossier Workflow Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_agent / make_document: ORM factories
    - llc_product: two-step product (CLIENT step, then ADMIN step requiring one document)
    - verificateur / createur / admin_actor: actors for service-level tests
    - headers_for: dev-header builder for API tests

Fixture rows are committed, not just flushed: services roll the session back
on failure and must not take the fixture data with them.
"""

import pytest

from app import create_app
from app.auth import Actor
from app.models import db as _db
from app.models.agent import Agent
from app.models.catalog import DocumentType, Product, ProductStep, Step, StepDocumentType
from app.models.dossier import Document


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_agent():
    """Factory: make_agent(email, agent_type="VERIFICATEUR", active=True) -> Agent."""

    def _make(email, agent_type="VERIFICATEUR", active=True, name=None):
        agent = Agent(email=email, name=name or email.split("@")[0], agent_type=agent_type, active=active)
        _db.session.add(agent)
        _db.session.commit()
        return agent

    return _make


@pytest.fixture()
def make_document():
    """Factory: make_document(instance, document_type, status="PENDING", source="ADMIN",
    version_id=None) -> Document."""

    def _make(instance, document_type, status="PENDING", source="ADMIN", version_id=None):
        doc = Document(
            dossier_id=instance.dossier_id,
            step_instance_id=instance.id,
            document_type_id=document_type.id,
            status=status,
            source=source,
            current_version_id=version_id,
        )
        _db.session.add(doc)
        _db.session.commit()
        return doc

    return _make


@pytest.fixture()
def make_product():
    """Factory: make_product(steps) where steps is a list of
    (code, step_type, dossier_status_on_approval) tuples in position order."""

    def _make(steps, name="Test Product", active=True):
        product = Product(name=name, dossier_type="LLC_FORMATION", price_amount=49900, active=active)
        _db.session.add(product)
        _db.session.flush()
        for position, (code, step_type, status_on_approval) in enumerate(steps):
            step = Step(code=code, label=code.replace("_", " ").title(), step_type=step_type)
            _db.session.add(step)
            _db.session.flush()
            _db.session.add(ProductStep(
                product_id=product.id,
                step_id=step.id,
                position=position,
                dossier_status_on_approval=status_on_approval,
            ))
        _db.session.commit()
        return product

    return _make


@pytest.fixture()
def llc_product(make_product):
    """S1 (CLIENT) then S2 (ADMIN, approval → COMPLETED, requires ARTICLES)."""
    product = make_product(
        [
            ("S1_CLIENT_FORM", "CLIENT", None),
            ("S2_ADMIN_FILING", "ADMIN", "COMPLETED"),
        ],
        name="LLC Formation",
    )
    articles = DocumentType(code="ARTICLES", label="Articles of Organization")
    _db.session.add(articles)
    _db.session.flush()
    s2 = product.product_steps[1].step
    _db.session.add(StepDocumentType(step_id=s2.id, document_type_id=articles.id))
    _db.session.commit()
    return product


@pytest.fixture()
def articles_type(llc_product):
    return DocumentType.query.filter_by(code="ARTICLES").first()


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def verificateur(make_agent):
    agent = make_agent("verif@example.com", "VERIFICATEUR")
    return agent, Actor(user_id="u-verif", email=agent.email, role="AGENT")


@pytest.fixture()
def createur(make_agent):
    agent = make_agent("createur@example.com", "CREATEUR")
    return agent, Actor(user_id="u-createur", email=agent.email, role="AGENT")


@pytest.fixture()
def admin_actor():
    return Actor(user_id="u-admin", email="admin@example.com", role="ADMIN")


@pytest.fixture()
def headers_for():
    """Build dev auth headers for an Actor (API_AUTH_ENABLED=false in testing)."""

    def _headers(actor):
        return {
            "X-User-Id": actor.user_id,
            "X-User-Email": actor.email,
            "X-User-Role": actor.role,
        }

    return _headers
