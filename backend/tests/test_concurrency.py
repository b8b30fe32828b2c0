# Overview: Pytest coverage for the unit-of-work retry helper.

import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError

from marketplace.extensions import db
from marketplace.models import DomainEvent, Offer
from marketplace.services.concurrency import get_locked, run_with_retry
from marketplace.validation import ConflictError, NotFoundError


class TestRunWithRetry:
    def test_retries_stale_data_then_succeeds(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(_op, attempts=3, backoff_base=0) == "ok"
        assert len(calls) == 2

    def test_exhausted_stale_data_becomes_conflict(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(ConflictError):
            run_with_retry(_op, attempts=2, backoff_base=0)
        assert len(calls) == 2

    def test_domain_error_rolls_back_pending_writes(self, db_session):
        def _op():
            db.session.add(DomainEvent(event_type="test.event", entity_type="test", entity_id=1))
            db.session.flush()
            raise ValueError("guard failed")

        with pytest.raises(ValueError):
            run_with_retry(_op)
        assert db_session.query(DomainEvent).count() == 0

    def test_concurrent_version_bump_is_detected(self, db_session, submitted_offer):
        """A write against a row someone else changed since it was read never lands."""
        offer_id = submitted_offer.id

        def _op():
            offer = get_locked(Offer, offer_id)
            # Another writer commits between our read and our write
            db.session.execute(
                text("UPDATE offers SET version_id = version_id + 1 WHERE id = :id"), {"id": offer_id}
            )
            offer.seller_response = "Overwritten"
            db.session.flush()

        with pytest.raises(ConflictError):
            run_with_retry(_op, attempts=2, backoff_base=0)

        assert db_session.get(Offer, offer_id).seller_response is None


class TestGetLocked:
    def test_missing_row(self, db_session):
        with pytest.raises(NotFoundError):
            get_locked(Offer, 424242)
