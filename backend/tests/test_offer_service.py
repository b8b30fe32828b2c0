# Overview: Pytest coverage for the offer lifecycle service.

"""
Offer Lifecycle Tests

Covers creation and submission rules, recipient responses, counter-offer
chains, acceptance opening exactly one Transaction, and the expiry sweep.
"""

from datetime import timedelta

import pytest

from marketplace.extensions import db
from marketplace.models import DomainEvent, Offer, Transaction
from marketplace.services import offer_service
from marketplace.services.lifecycle_service import InvalidStateTransition
from marketplace.time_utils import utcnow
from marketplace.validation import ConflictError, NotEligibleError, ValidationError


class TestCreateAndSubmit:
    def test_create_offer_starts_as_draft(self, db_session, listing, buyer):
        offer = offer_service.create_offer(
            listing.id, buyer.id,
            amount_cents=135_000_000,
            finance_type="pre_approved",
            subject_to_finance=True,
        )
        assert offer.status == "draft"
        assert offer.made_by_user_id == buyer.id
        assert offer.submitted_at is None
        assert offer.conditions_list() == ["Finance"]

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_amount_must_be_positive_integer_cents(self, db_session, listing, buyer, amount):
        with pytest.raises(ValidationError):
            offer_service.create_offer(listing.id, buyer.id, amount_cents=amount)
        assert db_session.query(Offer).count() == 0

    def test_deposit_cannot_exceed_amount(self, db_session, listing, buyer):
        with pytest.raises(ValidationError):
            offer_service.create_offer(listing.id, buyer.id, amount_cents=100, deposit_cents=101)

    def test_owner_cannot_offer_on_own_property(self, db_session, listing, seller):
        with pytest.raises(NotEligibleError):
            offer_service.create_offer(listing.id, seller.id, amount_cents=100_000)

    def test_inactive_property_rejects_offers(self, db_session, listing, buyer):
        listing.status = "withdrawn"
        db_session.commit()
        with pytest.raises(NotEligibleError):
            offer_service.create_offer(listing.id, buyer.id, amount_cents=100_000)

    def test_submit_sets_timestamps_and_entity(self, db_session, listing, buyer):
        offer = offer_service.create_offer(listing.id, buyer.id, amount_cents=100_000)
        before = utcnow()
        offer = offer_service.submit_offer(offer.id)

        assert offer.status == "submitted"
        assert offer.submitted_at >= before
        assert offer.expires_at == offer.submitted_at + timedelta(days=5)
        assert offer.buyer_entity_id is not None

        events = db_session.query(DomainEvent).filter_by(event_type="offer.submitted").all()
        assert len(events) == 1
        assert events[0].entity_id == offer.id

    def test_submit_requires_purchasing_entity(self, db_session, listing, user_factory):
        newcomer = user_factory("newcomer@test.local")
        offer = offer_service.create_offer(listing.id, newcomer.id, amount_cents=100_000)

        with pytest.raises(NotEligibleError):
            offer_service.submit_offer(offer.id)

        assert offer_service.get_offer(offer.id).status == "draft"

    def test_submit_twice_is_rejected(self, db_session, submitted_offer):
        with pytest.raises(InvalidStateTransition):
            offer_service.submit_offer(submitted_offer.id)


class TestRecipientResponses:
    def test_view_by_recipient(self, db_session, submitted_offer, seller):
        offer = offer_service.mark_offer_viewed(submitted_offer.id, seller.id)
        assert offer.status == "viewed"
        assert offer.viewed_at is not None

    def test_view_by_author_is_noop(self, db_session, submitted_offer, buyer):
        offer = offer_service.mark_offer_viewed(submitted_offer.id, buyer.id)
        assert offer.status == "submitted"
        assert offer.viewed_at is None

    def test_view_is_idempotent(self, db_session, submitted_offer, seller):
        first = offer_service.mark_offer_viewed(submitted_offer.id, seller.id)
        viewed_at = first.viewed_at
        second = offer_service.mark_offer_viewed(submitted_offer.id, seller.id)
        assert second.viewed_at == viewed_at
        assert db_session.query(DomainEvent).filter_by(event_type="offer.viewed").count() == 1

    def test_accept_opens_transaction(self, db_session, submitted_offer, seller, buyer, listing):
        txn = offer_service.accept_offer(submitted_offer.id, seller_response="Deal", user_id=seller.id)

        offer = offer_service.get_offer(submitted_offer.id)
        assert offer.status == "accepted"
        assert offer.accepted_at is not None
        assert offer.seller_response == "Deal"

        assert txn.status == "pending"
        assert txn.offer_id == offer.id
        assert txn.buyer_id == buyer.id
        assert txn.seller_id == seller.id
        assert txn.sale_price_cents == offer.amount_cents
        assert txn.settlement_date == offer.accepted_at.date() + timedelta(days=offer.settlement_days)

        event_types = [e.event_type for e in txn.events]
        assert event_types == ["created"]
        assert db_session.query(DomainEvent).filter_by(event_type="transaction.created").count() == 1

    def test_accept_after_view(self, db_session, submitted_offer, seller):
        offer_service.mark_offer_viewed(submitted_offer.id, seller.id)
        txn = offer_service.accept_offer(submitted_offer.id, user_id=seller.id)
        assert txn.status == "pending"

    def test_only_recipient_may_accept(self, db_session, submitted_offer, buyer):
        with pytest.raises(NotEligibleError):
            offer_service.accept_offer(submitted_offer.id, user_id=buyer.id)
        assert db_session.query(Transaction).count() == 0

    def test_accept_draft_fails_without_side_effects(self, db_session, listing, buyer):
        offer = offer_service.create_offer(listing.id, buyer.id, amount_cents=100_000)
        with pytest.raises(InvalidStateTransition):
            offer_service.accept_offer(offer.id)
        assert offer_service.get_offer(offer.id).status == "draft"
        assert db_session.query(Transaction).count() == 0

    def test_second_acceptance_on_property_conflicts(self, db_session, listing, buyer, other_buyer, seller):
        first = offer_service.submit_offer(
            offer_service.create_offer(listing.id, buyer.id, amount_cents=100_000).id
        )
        second = offer_service.submit_offer(
            offer_service.create_offer(listing.id, other_buyer.id, amount_cents=110_000).id
        )
        offer_service.accept_offer(first.id, user_id=seller.id)

        with pytest.raises(ConflictError):
            offer_service.accept_offer(second.id, user_id=seller.id)

        assert offer_service.get_offer(second.id).status == "submitted"
        assert db_session.query(Transaction).count() == 1

    def test_accept_refused_on_sold_property(self, db_session, submitted_offer, listing, seller):
        listing.status = "sold"
        db_session.commit()

        with pytest.raises(ConflictError):
            offer_service.accept_offer(submitted_offer.id, user_id=seller.id)

        assert offer_service.get_offer(submitted_offer.id).status == "submitted"
        assert db_session.query(Transaction).count() == 0

    def test_accept_refused_once_a_sale_has_settled(self, db_session, settled_transaction, listing, other_buyer, seller):
        # Listing put back to active by hand; the settled sale still counts
        listing.status = "active"
        db_session.commit()
        late = offer_service.submit_offer(
            offer_service.create_offer(listing.id, other_buyer.id, amount_cents=150_000_000).id
        )

        with pytest.raises(ConflictError):
            offer_service.accept_offer(late.id, user_id=seller.id)

        assert offer_service.get_offer(late.id).status == "submitted"
        assert db_session.query(Transaction).count() == 1

    def test_state_is_checked_before_recipient(self, db_session, submitted_offer, seller, buyer):
        offer_service.reject_offer(submitted_offer.id, user_id=seller.id)

        with pytest.raises(InvalidStateTransition):
            offer_service.accept_offer(submitted_offer.id, user_id=buyer.id)
        with pytest.raises(InvalidStateTransition):
            offer_service.reject_offer(submitted_offer.id, user_id=buyer.id)
        with pytest.raises(InvalidStateTransition):
            offer_service.counter_offer(submitted_offer.id, 145_000_000, user_id=buyer.id)

    def test_accept_is_refused_once_deadline_has_passed(self, db_session, submitted_offer, seller):
        submitted_offer.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        with pytest.raises(InvalidStateTransition) as exc_info:
            offer_service.accept_offer(submitted_offer.id, user_id=seller.id)
        assert exc_info.value.reason == "offer has expired"

    def test_reject(self, db_session, submitted_offer, seller):
        offer = offer_service.reject_offer(submitted_offer.id, seller_response="Too low", user_id=seller.id)
        assert offer.status == "rejected"
        assert offer.rejected_at is not None
        with pytest.raises(InvalidStateTransition):
            offer_service.accept_offer(offer.id)


class TestCounterOffers:
    def test_counter_creates_child_offer(self, db_session, submitted_offer, seller, buyer):
        child = offer_service.counter_offer(submitted_offer.id, 145_000_000, user_id=seller.id)

        parent = offer_service.get_offer(submitted_offer.id)
        assert parent.status == "countered"
        assert child.status == "submitted"
        assert child.parent_offer_id == parent.id
        assert child.amount_cents == 145_000_000
        assert child.buyer_id == buyer.id
        assert child.made_by_user_id == seller.id
        assert child.recipient_user_id == buyer.id
        assert child.settlement_days == parent.settlement_days

    def test_invalid_counter_amount_writes_nothing(self, db_session, submitted_offer, seller):
        with pytest.raises(ValidationError):
            offer_service.counter_offer(submitted_offer.id, 0, user_id=seller.id)
        assert offer_service.get_offer(submitted_offer.id).status == "submitted"
        assert db_session.query(Offer).count() == 1

    def test_countered_parent_cannot_be_accepted(self, db_session, submitted_offer, seller):
        offer_service.counter_offer(submitted_offer.id, 145_000_000, user_id=seller.id)
        with pytest.raises(InvalidStateTransition):
            offer_service.accept_offer(submitted_offer.id)

    def test_buyer_accepts_counter(self, db_session, submitted_offer, seller, buyer):
        child = offer_service.counter_offer(submitted_offer.id, 145_000_000, user_id=seller.id)

        with pytest.raises(NotEligibleError):
            offer_service.accept_offer(child.id, user_id=seller.id)

        txn = offer_service.accept_offer(child.id, user_id=buyer.id)
        assert txn.sale_price_cents == 145_000_000
        assert txn.buyer_id == buyer.id
        assert txn.seller_id == seller.id

    def test_counter_chain(self, db_session, submitted_offer, seller, buyer):
        counter = offer_service.counter_offer(submitted_offer.id, 148_000_000, user_id=seller.id)
        recounter = offer_service.counter_offer(counter.id, 144_000_000, user_id=buyer.id)

        chain = offer_service.get_offer_chain(recounter.id)
        assert [o.id for o in chain] == [submitted_offer.id, counter.id, recounter.id]
        assert recounter.made_by_user_id == buyer.id
        assert recounter.recipient_user_id == seller.id

    def test_counter_caps_deposit(self, db_session, submitted_offer, seller):
        child = offer_service.counter_offer(submitted_offer.id, 10_000_000, user_id=seller.id)
        assert child.deposit_cents == 10_000_000


class TestWithdraw:
    def test_author_withdraws(self, db_session, submitted_offer, buyer):
        offer = offer_service.withdraw_offer(submitted_offer.id, buyer.id)
        assert offer.status == "withdrawn"
        assert offer.withdrawn_at is not None

    def test_withdraw_draft(self, db_session, listing, buyer):
        offer = offer_service.create_offer(listing.id, buyer.id, amount_cents=100_000)
        assert offer_service.withdraw_offer(offer.id, buyer.id).status == "withdrawn"

    def test_non_author_cannot_withdraw(self, db_session, submitted_offer, seller):
        with pytest.raises(NotEligibleError):
            offer_service.withdraw_offer(submitted_offer.id, seller.id)

    def test_cannot_withdraw_accepted_offer(self, db_session, submitted_offer, seller, buyer):
        offer_service.accept_offer(submitted_offer.id, user_id=seller.id)
        with pytest.raises(InvalidStateTransition):
            offer_service.withdraw_offer(submitted_offer.id, buyer.id)


class TestExpiry:
    def test_expire_before_deadline_is_noop(self, db_session, submitted_offer):
        assert offer_service.expire_offer(submitted_offer.id) is False
        assert offer_service.get_offer(submitted_offer.id).status == "submitted"

    def test_expire_after_deadline(self, db_session, submitted_offer):
        later = submitted_offer.expires_at + timedelta(seconds=1)
        assert offer_service.expire_offer(submitted_offer.id, now=later) is True

        offer = offer_service.get_offer(submitted_offer.id)
        assert offer.status == "expired"
        assert offer.expired_at == later
        # Second attempt finds nothing to do
        assert offer_service.expire_offer(submitted_offer.id, now=later) is False

    def test_sweep_expires_only_overdue_active_offers(self, db_session, listing, buyer, other_buyer, seller):
        stale = offer_service.submit_offer(
            offer_service.create_offer(listing.id, buyer.id, amount_cents=100_000).id
        )
        fresh = offer_service.submit_offer(
            offer_service.create_offer(listing.id, other_buyer.id, amount_cents=120_000).id
        )
        rejected = offer_service.submit_offer(
            offer_service.create_offer(listing.id, other_buyer.id, amount_cents=90_000).id
        )
        offer_service.reject_offer(rejected.id, user_id=seller.id)

        stale.expires_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        assert offer_service.expire_overdue_offers() == 1
        assert offer_service.get_offer(stale.id).status == "expired"
        assert offer_service.get_offer(fresh.id).status == "submitted"
        assert offer_service.get_offer(rejected.id).status == "rejected"

        assert offer_service.expire_overdue_offers() == 0

    def test_list_offers_for_property(self, db_session, listing, submitted_offer, seller):
        offer_service.counter_offer(submitted_offer.id, 145_000_000, user_id=seller.id)
        assert len(offer_service.list_offers_for_property(listing.id)) == 2
        submitted = offer_service.list_offers_for_property(listing.id, status="submitted")
        assert [o.parent_offer_id for o in submitted] == [submitted_offer.id]


def _terminal_offer(status, offer, seller, buyer):
    """Drive a submitted offer to a terminal status through the services."""
    if status == "accepted":
        offer_service.accept_offer(offer.id, user_id=seller.id)
    elif status == "rejected":
        offer_service.reject_offer(offer.id, user_id=seller.id)
    elif status == "withdrawn":
        offer_service.withdraw_offer(offer.id, buyer.id)
    elif status == "expired":
        offer_service.expire_offer(offer.id, now=offer.expires_at + timedelta(seconds=1))
    return offer_service.get_offer(offer.id)


class TestTerminalOffers:
    """Closed offers refuse every response and leave nothing behind."""

    @pytest.mark.parametrize("status", ["accepted", "rejected", "withdrawn", "expired"])
    @pytest.mark.parametrize("event", ["accept", "reject", "counter"])
    def test_response_on_terminal_offer_is_refused(self, db_session, submitted_offer, seller, buyer, status, event):
        offer = _terminal_offer(status, submitted_offer, seller, buyer)
        assert offer.status == status
        offers_before = db_session.query(Offer).count()
        transactions_before = db_session.query(Transaction).count()
        assert transactions_before == (1 if status == "accepted" else 0)

        respond = {
            "accept": lambda: offer_service.accept_offer(offer.id, user_id=seller.id),
            "reject": lambda: offer_service.reject_offer(offer.id, user_id=seller.id),
            "counter": lambda: offer_service.counter_offer(offer.id, 145_000_000, user_id=seller.id),
        }[event]
        with pytest.raises(InvalidStateTransition):
            respond()

        assert offer_service.get_offer(offer.id).status == status
        assert db_session.query(Offer).count() == offers_before
        assert db_session.query(Offer).filter_by(parent_offer_id=offer.id).count() == 0
        assert db_session.query(Transaction).count() == transactions_before
