# Overview: Pytest coverage for the Flask CLI command groups.

from datetime import timedelta

import pytest

from marketplace.models import Offer, Property
from marketplace.services import offer_service, review_service
from marketplace.time_utils import to_utc_z, utcnow


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestSweepCommands:
    def test_expire_overdue_with_as_of(self, db_session, runner, submitted_offer):
        as_of = to_utc_z(utcnow() + timedelta(days=10))
        result = runner.invoke(args=["offers", "expire-overdue", "--as-of", as_of])

        assert result.exit_code == 0, result.output
        assert "Expired 1 overdue offers." in result.output
        assert offer_service.get_offer(submitted_offer.id).status == "expired"

    def test_expire_overdue_nothing_due(self, db_session, runner, submitted_offer):
        result = runner.invoke(args=["offers", "expire-overdue"])
        assert result.exit_code == 0, result.output
        assert "Expired 0 overdue offers." in result.output

    def test_bad_as_of_is_rejected(self, db_session, runner):
        result = runner.invoke(args=["offers", "expire-overdue", "--as-of", "next tuesday"])
        assert result.exit_code != 0
        assert "Not an ISO-8601 datetime" in result.output

    def test_publish_held(self, db_session, runner, settled_transaction, buyer, seller):
        review = review_service.create_review(
            seller.id, buyer.id, overall_rating=1, body="Buyer was rude to the agent at every inspection."
        )
        as_of = to_utc_z(utcnow() + timedelta(hours=49))
        result = runner.invoke(args=["reviews", "publish-held", "--as-of", as_of])

        assert result.exit_code == 0, result.output
        assert "Published 1 held reviews." in result.output
        assert review_service.get_review(review.id).status == "published"


class TestInspectionCommands:
    def test_list_transactions(self, db_session, runner, make_transaction):
        txn = make_transaction("exchanged")
        result = runner.invoke(args=["transactions", "list", "--status", "exchanged"])

        assert result.exit_code == 0, result.output
        assert "exchanged" in result.output
        assert "$1,400,000.00" in result.output
        assert str(txn.offer_id) in result.output

    def test_list_transactions_empty(self, db_session, runner):
        result = runner.invoke(args=["transactions", "list"])
        assert result.exit_code == 0
        assert "No transactions found." in result.output

    def test_list_rejects_unknown_status(self, db_session, runner):
        result = runner.invoke(args=["transactions", "list", "--status", "closed"])
        assert result.exit_code != 0

    def test_timeline(self, db_session, runner, make_transaction):
        txn = make_transaction("exchanged")
        result = runner.invoke(args=["transactions", "timeline", str(txn.id)])
        assert result.exit_code == 0, result.output
        assert "Offer accepted" in result.output
        assert "Contracts exchanged" in result.output


class TestSystemCommands:
    def test_reset_db_requires_confirmation(self, db_session, runner, listing):
        result = runner.invoke(args=["system", "reset-db"], input="n\n")
        assert result.exit_code != 0
        assert db_session.query(Property).count() == 1

    def test_reset_db(self, db_session, runner, submitted_offer):
        db_session.commit()
        result = runner.invoke(args=["system", "reset-db", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Database reset." in result.output
        assert db_session.query(Offer).count() == 0
