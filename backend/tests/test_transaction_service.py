# Overview: Pytest coverage for the transaction lifecycle service.

"""
Transaction Lifecycle Tests

Walks accepted sales through exchange, cooling-off, conditions and
settlement, and checks both ways a sale can fall through.
"""

from datetime import date, datetime, timedelta

import pytest

from marketplace.models import DomainEvent, Offer, Property, Transaction
from marketplace.services import offer_service, transaction_service
from marketplace.services.lifecycle_service import InvalidStateTransition
from marketplace.time_utils import utcnow
from marketplace.validation import ValidationError


def _future(hours=24):
    return utcnow() + timedelta(hours=hours)


class TestCoolingOffCalculation:
    def test_skips_weekend(self, app):
        # Thursday + 5 business days -> following Thursday
        end = transaction_service.calculate_cooling_off_end(date(2026, 3, 5), 5)
        assert end.date() == date(2026, 3, 12)
        assert end == datetime.combine(date(2026, 3, 12), datetime.max.time())

    def test_friday_exchange(self, app):
        end = transaction_service.calculate_cooling_off_end(date(2026, 3, 6), 1)
        assert end.date() == date(2026, 3, 9)

    def test_uses_configured_business_days(self, app):
        end = transaction_service.calculate_cooling_off_end(date(2026, 3, 2))
        assert end.date() == date(2026, 3, 9)


class TestPrimaryPath:
    def test_full_path_to_settled(self, db_session, make_transaction):
        txn = make_transaction("settled")

        assert txn.settled_at is not None
        prop = db_session.get(Property, txn.property_id)
        assert prop.status == "sold"
        assert prop.sold_price_cents == txn.sale_price_cents

        timeline = [e.event_type for e in transaction_service.get_timeline(txn.id)]
        assert timeline == [
            "created", "exchanged", "cooling_off_started", "unconditional", "settling", "settled",
        ]

        ledger = [
            e.event_type
            for e in db_session.query(DomainEvent)
            .filter_by(entity_type="transaction", entity_id=txn.id)
            .order_by(DomainEvent.id)
        ]
        assert ledger == [
            "transaction.created",
            "transaction.exchanged",
            "transaction.cooling_off_started",
            "transaction.unconditional",
            "transaction.settling",
            "transaction.settled",
        ]

    def test_exchange_records_date(self, db_session, make_transaction):
        txn = make_transaction("pending")
        txn = transaction_service.exchange(txn.id, exchange_date=date(2026, 3, 5))
        assert txn.status == "exchanged"
        assert txn.exchange_date == date(2026, 3, 5)

    def test_cooling_off_defaults_from_exchange_date(self, db_session, make_transaction):
        txn = make_transaction("pending")
        transaction_service.exchange(txn.id, exchange_date=date(2026, 3, 5))
        txn = transaction_service.start_cooling_off(txn.id)
        assert txn.status == "in_cooling_off"
        assert txn.cooling_off_ends_at.date() == date(2026, 3, 12)

    def test_cannot_settle_from_pending(self, db_session, make_transaction):
        txn = make_transaction("pending")
        with pytest.raises(InvalidStateTransition):
            transaction_service.settle(txn.id)
        assert transaction_service.get_transaction(txn.id).status == "pending"

    def test_go_unconditional_waits_for_cooling_off(self, db_session, make_transaction):
        txn = make_transaction("exchanged")
        transaction_service.start_cooling_off(txn.id, ends_at=_future())

        with pytest.raises(InvalidStateTransition) as exc_info:
            transaction_service.go_unconditional(txn.id)
        assert "cooling-off period runs until" in exc_info.value.reason
        assert transaction_service.get_transaction(txn.id).status == "in_cooling_off"

    def test_sale_price_is_unchanged_through_lifecycle(self, db_session, make_transaction):
        txn = make_transaction("settled", amount_cents=123_456_789)
        assert txn.sale_price_cents == 123_456_789
        assert txn.offer.amount_cents == 123_456_789


class TestRescindAndCancel:
    def test_rescind_during_cooling_off(self, db_session, make_transaction):
        txn = make_transaction("exchanged")
        transaction_service.start_cooling_off(txn.id, ends_at=_future())

        txn = transaction_service.rescind(txn.id)
        assert txn.status == "fallen_through"
        assert txn.fallen_through_reason == "Buyer exercised cooling-off rights"
        assert txn.fallen_through_at is not None
        assert db_session.get(Property, txn.property_id).status == "active"

    def test_rescind_after_cooling_off_ends(self, db_session, make_transaction):
        txn = make_transaction("in_cooling_off")
        with pytest.raises(InvalidStateTransition) as exc_info:
            transaction_service.rescind(txn.id)
        assert "ended" in exc_info.value.reason
        assert transaction_service.get_transaction(txn.id).status == "in_cooling_off"

    def test_rescind_outside_cooling_off(self, db_session, make_transaction):
        txn = make_transaction("unconditional")
        with pytest.raises(InvalidStateTransition):
            transaction_service.rescind(txn.id)

    @pytest.mark.parametrize("status", ["pending", "exchanged", "unconditional", "settling"])
    def test_cancel_from_active_statuses(self, db_session, make_transaction, status):
        txn = make_transaction(status)
        txn = transaction_service.cancel(txn.id, "Buyer finance declined")
        assert txn.status == "fallen_through"
        assert txn.fallen_through_reason == "Buyer finance declined"

    def test_cancel_requires_reason(self, db_session, make_transaction):
        txn = make_transaction("pending")
        with pytest.raises(ValidationError):
            transaction_service.cancel(txn.id, "  ")

    def test_cannot_cancel_during_cooling_off(self, db_session, make_transaction):
        txn = make_transaction("exchanged")
        transaction_service.start_cooling_off(txn.id, ends_at=_future())
        with pytest.raises(InvalidStateTransition):
            transaction_service.cancel(txn.id, "Changed mind")

    def test_cannot_cancel_settled(self, db_session, make_transaction):
        txn = make_transaction("settled")
        with pytest.raises(InvalidStateTransition):
            transaction_service.cancel(txn.id, "Too late")
        assert db_session.get(Property, txn.property_id).status == "sold"

    def test_fallen_through_frees_property_for_new_sale(self, db_session, make_transaction):
        first = make_transaction("pending")
        transaction_service.cancel(first.id, "Vendor withdrew")
        second = make_transaction("pending")
        assert second.id != first.id
        assert second.property_id == first.property_id


    def test_fallen_through_keeps_withdrawn_listing_off_market(self, db_session, make_transaction, listing):
        txn = make_transaction("pending")
        listing.status = "withdrawn"
        db_session.commit()

        transaction_service.cancel(txn.id, "Vendor withdrew")
        assert db_session.get(Property, listing.id).status == "withdrawn"

    def test_fallen_through_releases_under_offer_listing(self, db_session, make_transaction, listing):
        txn = make_transaction("pending")
        listing.status = "under_offer"
        db_session.commit()

        transaction_service.cancel(txn.id, "Buyer finance declined")
        assert db_session.get(Property, listing.id).status == "active"


class TestSettlementClosesProperty:
    def test_settle_rejects_other_open_offers(self, db_session, make_transaction, listing, other_buyer, seller):
        rival = offer_service.submit_offer(
            offer_service.create_offer(listing.id, other_buyer.id, amount_cents=145_000_000).id
        )
        txn = make_transaction("settled")

        rival = offer_service.get_offer(rival.id)
        assert rival.status == "rejected"
        assert rival.seller_response == "Property has been sold"
        assert rival.rejected_at is not None

        with pytest.raises(InvalidStateTransition):
            offer_service.accept_offer(rival.id, user_id=seller.id)
        assert db_session.query(Transaction).count() == 1
        assert db_session.get(Property, listing.id).status == "sold"

        settled_event = [e for e in transaction_service.get_timeline(txn.id) if e.event_type == "settled"]
        assert settled_event[0].event_metadata["offers_closed"] == 1

    def test_settle_leaves_closed_offers_alone(self, db_session, make_transaction, listing, other_buyer, seller):
        withdrawn = offer_service.submit_offer(
            offer_service.create_offer(listing.id, other_buyer.id, amount_cents=145_000_000).id
        )
        offer_service.withdraw_offer(withdrawn.id, other_buyer.id)

        make_transaction("settled")

        assert offer_service.get_offer(withdrawn.id).status == "withdrawn"
        assert db_session.query(Offer).filter_by(status="rejected").count() == 0

    def test_transaction_has_no_disputed_column(self, app):
        # Disputes belong to reviews; a sale carries no dispute flag
        assert "disputed" not in Transaction.__table__.columns



class TestConditions:
    def test_outstanding_conditions_block_settling(self, db_session, make_transaction):
        txn = make_transaction(
            "unconditional",
            subject_to_finance=True,
            subject_to_building_inspection=True,
        )
        with pytest.raises(InvalidStateTransition) as exc_info:
            transaction_service.start_settling(txn.id)
        assert "finance" in exc_info.value.reason
        assert "building_inspection" in exc_info.value.reason

        transaction_service.approve_finance(txn.id)
        transaction_service.pass_building_inspection(txn.id)
        txn = transaction_service.start_settling(txn.id)
        assert txn.status == "settling"

    def test_recording_condition_keeps_status(self, db_session, make_transaction):
        txn = make_transaction("unconditional", subject_to_pest_inspection=True)
        txn = transaction_service.pass_pest_inspection(txn.id)
        assert txn.status == "unconditional"
        assert txn.pest_inspection_passed is True
        assert txn.pest_inspection_at is not None

    def test_recording_condition_is_idempotent(self, db_session, make_transaction):
        txn = make_transaction("unconditional", subject_to_finance=True)
        transaction_service.approve_finance(txn.id)
        transaction_service.approve_finance(txn.id)
        timeline = [e.event_type for e in transaction_service.get_timeline(txn.id)]
        assert timeline.count("finance_approved") == 1

    def test_conditions_not_recorded_before_unconditional(self, db_session, make_transaction):
        txn = make_transaction("pending", subject_to_finance=True)
        with pytest.raises(InvalidStateTransition):
            transaction_service.approve_finance(txn.id)

    def test_waived_condition_no_longer_blocks(self, db_session, make_transaction):
        txn = make_transaction("unconditional", subject_to_finance=True)
        transaction_service.waive_condition(txn.id, "finance")
        assert transaction_service.start_settling(txn.id).status == "settling"

    def test_waive_unknown_condition(self, db_session, make_transaction):
        txn = make_transaction("unconditional")
        with pytest.raises(ValidationError):
            transaction_service.waive_condition(txn.id, "strata_report")


class TestDepositAndTimeline:
    def test_deposit_payments_accumulate(self, db_session, make_transaction):
        txn = make_transaction("exchanged", deposit_cents=10_000_000)
        transaction_service.record_deposit_payment(txn.id, 4_000_000)
        txn = transaction_service.record_deposit_payment(txn.id, 6_000_000)
        assert txn.deposit_paid_cents == 10_000_000
        assert txn.deposit_remaining_cents == 0

    def test_deposit_rejected_on_closed_transaction(self, db_session, make_transaction):
        txn = make_transaction("pending")
        transaction_service.cancel(txn.id, "Vendor withdrew")
        with pytest.raises(InvalidStateTransition):
            transaction_service.record_deposit_payment(txn.id, 100)

    def test_timeline_note(self, db_session, make_transaction):
        txn = make_transaction("pending")
        event = transaction_service.add_timeline_note(txn.id, "Contract drafted", description="v2 from solicitor")
        assert event.event_type == "custom"
        assert transaction_service.get_timeline(txn.id)[-1].title == "Contract drafted"

    def test_list_transactions_by_status(self, db_session, make_transaction):
        first = make_transaction("pending")
        transaction_service.cancel(first.id, "Vendor withdrew")
        second = make_transaction("exchanged")

        assert [t.id for t in transaction_service.list_transactions(status="exchanged")] == [second.id]
        assert len(transaction_service.list_transactions()) == 2
