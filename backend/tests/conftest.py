"""
Pytest fixtures for marketplace backend tests.

Provides test database setup, admin/seller/product fixtures, auth headers,
and a recording notifier standing in for the Socket.IO channel.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from marketplace import create_app
from marketplace.config import TestConfig
from marketplace.extensions import db
from marketplace.models import Product, User, ROLE_ADMIN, ROLE_SELLER
from marketplace.services import realtime, session_service
from marketplace.services.auth_service import hash_password

PASSWORD = "Password123!"


class RecordingNotifier(realtime.Notifier):
    """Collects pushes instead of emitting them; online set is explicit."""

    def __init__(self):
        self.online: set[str] = set()
        self.events: list[tuple] = []
        self.fail = False

    def is_online(self, user_id) -> bool:
        return str(user_id) in self.online

    def emit(self, user_id, event, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.events.append((user_id, event, payload))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    """Swap the Socket.IO notifier for a recording one."""
    original = app.extensions.get(realtime.EXTENSION_KEY)
    recording = RecordingNotifier()
    app.extensions[realtime.EXTENSION_KEY] = recording
    yield recording
    app.extensions[realtime.EXTENSION_KEY] = original


def make_user(db_session, *, email, role=ROLE_SELLER, approved=True, credit="0", name=None) -> User:
    user = User(
        name=name or email.split("@")[0],
        email=email,
        password_hash=hash_password(PASSWORD),
        role=role,
        approved=approved,
        credit_amount=Decimal(credit),
        pending_amount=Decimal("0"),
        total_orders=0,
    )
    db_session.add(user)
    db_session.commit()
    return user


def balances(db_session, user_id) -> tuple[Decimal, Decimal]:
    """Fresh (credit, pending) straight from the database."""
    db_session.expire_all()
    user = db_session.get(User, user_id)
    return Decimal(user.credit_amount), Decimal(user.pending_amount)


def set_credit(db_session, user_id, amount) -> None:
    db_session.execute(update(User).where(User.id == user_id).values(credit_amount=Decimal(amount)))
    db_session.commit()


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, email="admin@marketplace.test", role=ROLE_ADMIN, name="Admin")


@pytest.fixture(scope='function')
def seller(db_session):
    """Approved seller with 200.00 credit."""
    return make_user(db_session, email="seller@shop.test", credit="200", name="Seller One")


@pytest.fixture(scope='function')
def other_seller(db_session):
    return make_user(db_session, email="other@shop.test", credit="50", name="Seller Two")


@pytest.fixture(scope='function')
def unapproved_seller(db_session):
    return make_user(db_session, email="new@shop.test", approved=False, name="New Seller")


@pytest.fixture(scope='function')
def product(db_session):
    """List price 100.00, sold at 80.00."""
    p = Product(
        name="Widget",
        category="gadgets",
        price=Decimal("100.00"),
        discounted_price=Decimal("80.00"),
        quantity=10,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def plain_product(db_session):
    """No discount: sold at list price 25.00."""
    p = Product(name="Cable", category="gadgets", price=Decimal("25.00"), quantity=5)
    db_session.add(p)
    db_session.commit()
    return p


def token_for(user: User) -> str:
    _, token = session_service.create_session(user.id)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(token_for(admin))


@pytest.fixture(scope='function')
def seller_headers(seller):
    return auth_headers(token_for(seller))


@pytest.fixture(scope='function')
def other_seller_headers(other_seller):
    return auth_headers(token_for(other_seller))
