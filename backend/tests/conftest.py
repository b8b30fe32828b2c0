"""
Pytest fixtures for marketplace lifecycle tests.

Provides an in-memory database, the usual cast of parties (seller, buyer,
admin) and factories that walk offers and transactions to a given status.
"""

from datetime import timedelta

import pytest

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import Entity, Property, User
from marketplace.services import offer_service, transaction_service
from marketplace.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_ATTEMPTS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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


def make_user(email, *, full_name=None, is_admin=False, with_entity=False):
    user = User(email=email, full_name=full_name or email.split("@")[0].title(), is_admin=is_admin)
    db.session.add(user)
    db.session.flush()
    if with_entity:
        db.session.add(Entity(user_id=user.id, name=user.full_name, entity_type="individual"))
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def user_factory(db_session):
    return make_user


@pytest.fixture(scope='function')
def seller(db_session):
    """Property owner."""
    return make_user("seller@test.local", full_name="Sam Seller", with_entity=True)


@pytest.fixture(scope='function')
def buyer(db_session):
    """Buyer with a purchasing entity on file."""
    return make_user("buyer@test.local", full_name="Bea Buyer", with_entity=True)


@pytest.fixture(scope='function')
def other_buyer(db_session):
    return make_user("other.buyer@test.local", full_name="Otto Buyer", with_entity=True)


@pytest.fixture(scope='function')
def admin(db_session):
    """Moderator."""
    return make_user("admin@test.local", full_name="Ada Admin", is_admin=True)


@pytest.fixture(scope='function')
def listing(db_session, seller):
    """Active property owned by seller."""
    prop = Property(
        owner_id=seller.id,
        street_address="12 Harbour St",
        suburb="Balmain",
        state="NSW",
        postcode="2041",
        status="active",
        price_cents=150_000_000,
    )
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture(scope='function')
def submitted_offer(db_session, listing, buyer):
    """Buyer's offer, submitted and awaiting the seller."""
    offer = offer_service.create_offer(listing.id, buyer.id, amount_cents=140_000_000, deposit_cents=14_000_000)
    return offer_service.submit_offer(offer.id)


@pytest.fixture(scope='function')
def make_transaction(db_session, listing, buyer, seller):
    """
    Factory: accept a fresh offer and walk the transaction to `status`.

    Cooling-off is opened with an end time in the past so the walk can
    continue to unconditional without waiting.
    """
    def _make(status="pending", **offer_kwargs):
        offer_kwargs.setdefault("amount_cents", 140_000_000)
        offer = offer_service.create_offer(listing.id, buyer.id, **offer_kwargs)
        offer_service.submit_offer(offer.id)
        txn = offer_service.accept_offer(offer.id, user_id=seller.id)

        steps = [
            ("exchanged", lambda t: transaction_service.exchange(t.id)),
            ("in_cooling_off", lambda t: transaction_service.start_cooling_off(
                t.id, ends_at=utcnow() - timedelta(seconds=1))),
            ("unconditional", lambda t: transaction_service.go_unconditional(t.id)),
            ("settling", lambda t: transaction_service.start_settling(t.id)),
            ("settled", lambda t: transaction_service.settle(t.id)),
        ]
        for name, step in steps:
            if txn.status == status:
                break
            txn = step(txn)
        assert txn.status == status
        return txn

    return _make


@pytest.fixture(scope='function')
def settled_transaction(make_transaction):
    return make_transaction("settled")
