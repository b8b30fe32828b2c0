"""initial marketplace schema

Revision ID: m001_initial_marketplace
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the transaction lifecycle schema:
- users / entities: parties and the legal entities they buy through
- properties: listings that receive offers
- offers: offers and counter-offers (parent_offer_id chain)
- transactions / transaction_events: accepted sales and their timeline
- reviews / review_disputes: post-settlement reviews and moderation
- domain_events: append-only lifecycle ledger

Partial unique indexes:
- one active transaction per property
- one unresolved dispute per review
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'm001_initial_marketplace'
down_revision = None
branch_labels = None
depends_on = None


ACTIVE_TRANSACTION_PREDICATE = "status NOT IN ('settled', 'fallen_through')"
UNRESOLVED_DISPUTE_PREDICATE = "status IN ('pending', 'under_review')"


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
    ]


def upgrade():
    # ============================================================================
    # users / entities
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'entities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False, server_default='individual'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('entities', schema=None) as batch_op:
        batch_op.create_index('ix_entities_user_id', ['user_id'], unique=False)

    # ============================================================================
    # properties
    # ============================================================================
    op.create_table(
        'properties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('owner_entity_id', sa.Integer(), nullable=True),
        sa.Column('street_address', sa.String(length=255), nullable=False),
        sa.Column('suburb', sa.String(length=128), nullable=False),
        sa.Column('state', sa.String(length=8), nullable=False),
        sa.Column('postcode', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('price_cents', sa.BigInteger(), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_price_cents', sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.ForeignKeyConstraint(['owner_entity_id'], ['entities.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('properties', schema=None) as batch_op:
        batch_op.create_index('ix_properties_owner_id', ['owner_id'], unique=False)
        batch_op.create_index('ix_properties_status', ['status'], unique=False)
        batch_op.create_index('ix_properties_owner_status', ['owner_id', 'status'], unique=False)

    # ============================================================================
    # offers
    # ============================================================================
    op.create_table(
        'offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('buyer_id', sa.Integer(), nullable=False),
        sa.Column('buyer_entity_id', sa.Integer(), nullable=True),
        sa.Column('made_by_user_id', sa.Integer(), nullable=False),
        sa.Column('parent_offer_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('deposit_cents', sa.BigInteger(), nullable=True),
        sa.Column('finance_type', sa.String(length=32), nullable=False, server_default='cash'),
        sa.Column('finance_lender', sa.String(length=128), nullable=True),
        sa.Column('settlement_days', sa.Integer(), nullable=False),
        sa.Column('subject_to_finance', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('subject_to_building_inspection', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('subject_to_pest_inspection', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('other_conditions', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('viewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('withdrawn_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('seller_response', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['buyer_entity_id'], ['entities.id']),
        sa.ForeignKeyConstraint(['made_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['parent_offer_id'], ['offers.id']),
        sa.CheckConstraint('amount_cents > 0', name='ck_offers_amount_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('offers', schema=None) as batch_op:
        batch_op.create_index('ix_offers_property_id', ['property_id'], unique=False)
        batch_op.create_index('ix_offers_buyer_id', ['buyer_id'], unique=False)
        batch_op.create_index('ix_offers_made_by_user_id', ['made_by_user_id'], unique=False)
        batch_op.create_index('ix_offers_parent_offer_id', ['parent_offer_id'], unique=False)
        batch_op.create_index('ix_offers_status', ['status'], unique=False)
        batch_op.create_index('ix_offers_submitted_at', ['submitted_at'], unique=False)
        batch_op.create_index('ix_offers_property_status', ['property_id', 'status'], unique=False)
        batch_op.create_index('ix_offers_status_expires', ['status', 'expires_at'], unique=False)

    # ============================================================================
    # transactions / transaction_events
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('buyer_id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('buyer_entity_id', sa.Integer(), nullable=True),
        sa.Column('seller_entity_id', sa.Integer(), nullable=True),
        sa.Column('sale_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('deposit_cents', sa.BigInteger(), nullable=True),
        sa.Column('deposit_paid_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('exchange_date', sa.Date(), nullable=True),
        sa.Column('settlement_date', sa.Date(), nullable=True),
        sa.Column('cooling_off_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finance_approved', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('finance_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('building_inspection_passed', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('building_inspection_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pest_inspection_passed', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('pest_inspection_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finance_waived', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('building_inspection_waived', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('pest_inspection_waived', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fallen_through_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fallen_through_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['offer_id'], ['offers.id']),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id']),
        sa.ForeignKeyConstraint(['buyer_entity_id'], ['entities.id']),
        sa.ForeignKeyConstraint(['seller_entity_id'], ['entities.id']),
        sa.CheckConstraint('sale_price_cents > 0', name='ck_transactions_sale_price_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('offer_id', name='uq_transactions_offer'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.create_index('ix_transactions_property_id', ['property_id'], unique=False)
        batch_op.create_index('ix_transactions_buyer_id', ['buyer_id'], unique=False)
        batch_op.create_index('ix_transactions_seller_id', ['seller_id'], unique=False)
        batch_op.create_index('ix_transactions_status', ['status'], unique=False)
        batch_op.create_index('ix_transactions_settlement_date', ['settlement_date'], unique=False)
        batch_op.create_index(
            'ix_transactions_buyer_seller_status', ['buyer_id', 'seller_id', 'status'], unique=False
        )

    # One active transaction per property
    op.create_index(
        'uq_transactions_active_property',
        'transactions',
        ['property_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_TRANSACTION_PREDICATE),
        postgresql_where=sa.text(ACTIVE_TRANSACTION_PREDICATE),
    )

    op.create_table(
        'transaction_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('event_metadata', sa.JSON(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transaction_events', schema=None) as batch_op:
        batch_op.create_index('ix_transaction_events_transaction_id', ['transaction_id'], unique=False)
        batch_op.create_index('ix_transaction_events_event_type', ['event_type'], unique=False)
        batch_op.create_index('ix_transaction_events_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index(
            'ix_transaction_events_txn_occurred', ['transaction_id', 'occurred_at'], unique=False
        )

    # ============================================================================
    # reviews / review_disputes
    # ============================================================================
    op.create_table(
        'reviews',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reviewer_id', sa.Integer(), nullable=False),
        sa.Column('reviewee_id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('reviewee_role', sa.String(length=16), nullable=False),
        sa.Column('overall_rating', sa.Integer(), nullable=False),
        sa.Column('category_ratings', sa.JSON(), nullable=False),
        sa.Column('title', sa.String(length=100), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('is_disputed', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('hold_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('hold_reason', sa.String(length=255), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('removed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('public_response', sa.Text(), nullable=True),
        sa.Column('public_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.ForeignKeyConstraint(['reviewer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['reviewee_id'], ['users.id']),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id']),
        sa.ForeignKeyConstraint(['removed_by_user_id'], ['users.id']),
        sa.CheckConstraint('overall_rating BETWEEN 1 AND 5', name='ck_reviews_rating_range'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'reviewer_id', name='uq_reviews_transaction_reviewer'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('reviews', schema=None) as batch_op:
        batch_op.create_index('ix_reviews_reviewer_id', ['reviewer_id'], unique=False)
        batch_op.create_index('ix_reviews_reviewee_id', ['reviewee_id'], unique=False)
        batch_op.create_index('ix_reviews_transaction_id', ['transaction_id'], unique=False)
        batch_op.create_index('ix_reviews_status', ['status'], unique=False)
        batch_op.create_index('ix_reviews_reviewee_status', ['reviewee_id', 'status'], unique=False)
        batch_op.create_index('ix_reviews_status_hold_until', ['status', 'hold_until'], unique=False)

    op.create_table(
        'review_disputes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('review_id', sa.Integer(), nullable=False),
        sa.Column('disputed_by_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=False),
        sa.Column('evidence', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('reviewed_by_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['review_id'], ['reviews.id']),
        sa.ForeignKeyConstraint(['disputed_by_id'], ['users.id']),
        sa.ForeignKeyConstraint(['reviewed_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('review_disputes', schema=None) as batch_op:
        batch_op.create_index('ix_review_disputes_review_id', ['review_id'], unique=False)
        batch_op.create_index('ix_review_disputes_disputed_by_id', ['disputed_by_id'], unique=False)
        batch_op.create_index('ix_review_disputes_status', ['status'], unique=False)
        batch_op.create_index('ix_review_disputes_status_created', ['status', 'created_at'], unique=False)

    # One unresolved dispute per review
    op.create_index(
        'uq_review_disputes_unresolved_review',
        'review_disputes',
        ['review_id'],
        unique=True,
        sqlite_where=sa.text(UNRESOLVED_DISPUTE_PREDICATE),
        postgresql_where=sa.text(UNRESOLVED_DISPUTE_PREDICATE),
    )

    # ============================================================================
    # domain_events: append-only lifecycle ledger
    # ============================================================================
    op.create_table(
        'domain_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('property_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('domain_events', schema=None) as batch_op:
        batch_op.create_index('ix_domain_events_event_type', ['event_type'], unique=False)
        batch_op.create_index('ix_domain_events_actor_user_id', ['actor_user_id'], unique=False)
        batch_op.create_index('ix_domain_events_property_id', ['property_id'], unique=False)
        batch_op.create_index('ix_domain_events_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('ix_domain_events_type_occurred', ['event_type', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('domain_events')
    op.drop_index('uq_review_disputes_unresolved_review', table_name='review_disputes')
    op.drop_table('review_disputes')
    op.drop_table('reviews')
    op.drop_table('transaction_events')
    op.drop_index('uq_transactions_active_property', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('offers')
    op.drop_table('properties')
    op.drop_table('entities')
    op.drop_table('users')
