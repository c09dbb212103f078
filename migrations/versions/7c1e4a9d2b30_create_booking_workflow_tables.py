"""create_booking_workflow_tables

Revision ID: 7c1e4a9d2b30
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4a9d2b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_type = sa.Enum(
    'lab_administrator', 'mjiit_member', 'utm_member', 'external_member',
    name='user_type',
)
user_status = sa.Enum('pending', 'active', 'inactive', 'rejected', 'suspended', name='user_status')
booking_status = sa.Enum(
    'draft', 'pending_user_verification', 'pending_approval', 'revision_requested',
    'approved', 'rejected', 'in_progress', 'completed', 'cancelled',
    name='booking_status',
)
sample_status = sa.Enum(
    'pending', 'received', 'in_analysis', 'return_requested', 'analysis_complete', 'returned',
    name='sample_status',
)
modification_status = sa.Enum('pending', 'approved', 'rejected', name='modification_status')
modification_initiator = sa.Enum('admin', 'customer', name='modification_initiator')
notification_type = sa.Enum(
    'booking_approved', 'booking_rejected', 'booking_revision_requested', 'booking_submitted',
    'booking_completed', 'booking_cancelled', 'service_modification_requested',
    'service_modification_resolved',
    name='notification_type',
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('user_type', user_type, nullable=False),
        sa.Column('status', user_status, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_user_type', 'users', ['user_type'])
    op.create_index('ix_users_status', 'users', ['status'])

    op.create_table(
        'services',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column(
            'requires_sample', sa.Boolean(), nullable=False,
            comment='Whether booking this service produces sample tracking rows',
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )

    op.create_table(
        'service_pricing',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_type', user_type, nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit', sa.String(length=30), nullable=False),
        sa.UniqueConstraint('service_id', 'user_type', name='uq_service_pricing_tier'),
    )
    op.create_index('ix_service_pricing_service_id', 'service_pricing', ['service_id'])

    op.create_table(
        'booking_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reference_number', sa.String(length=50), nullable=False, unique=True),
        sa.Column('status', booking_status, nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('preferred_start_date', sa.Date(), nullable=True),
        sa.Column('preferred_end_date', sa.Date(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_booking_requests_user_id', 'booking_requests', ['user_id'])
    op.create_index('ix_booking_requests_status', 'booking_requests', ['status'])

    op.create_table(
        'booking_service_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'booking_request_id', sa.Uuid(),
            sa.ForeignKey('booking_requests.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('duration_months', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='service_item_quantity_positive'),
    )
    op.create_index('ix_booking_service_items_booking_request_id', 'booking_service_items', ['booking_request_id'])

    op.create_table(
        'workspace_bookings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'booking_request_id', sa.Uuid(),
            sa.ForeignKey('booking_requests.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='workspace_end_after_start'),
    )
    op.create_index('ix_workspace_bookings_booking_request_id', 'workspace_bookings', ['booking_request_id'])

    op.create_table(
        'sample_tracking',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'booking_service_item_id', sa.Uuid(),
            sa.ForeignKey('booking_service_items.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('sample_identifier', sa.String(length=100), nullable=False, unique=True),
        sa.Column('status', sample_status, nullable=False),
        sa.Column('updated_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('analysis_start_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('analysis_complete_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('return_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_sample_tracking_booking_service_item_id', 'sample_tracking', ['booking_service_item_id'])
    op.create_index('ix_sample_tracking_status', 'sample_tracking', ['status'])

    op.create_table(
        'sample_modifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'booking_service_item_id', sa.Uuid(),
            sa.ForeignKey('booking_service_items.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False),
        sa.Column('original_total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('new_total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', modification_status, nullable=False),
        sa.Column('initiated_by', modification_initiator, nullable=False),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('approved_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('response_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('new_quantity >= 1', name='modification_quantity_positive'),
    )
    op.create_index(
        'ix_sample_modifications_booking_service_item_id',
        'sample_modifications',
        ['booking_service_item_id'],
    )
    # At most one pending modification per service item
    op.create_index(
        'uq_sample_modification_pending_per_item',
        'sample_modifications',
        ['booking_service_item_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('related_entity_type', sa.String(length=50), nullable=False),
        sa.Column('related_entity_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('email_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_related_entity_id', 'notifications', ['related_entity_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_index('uq_sample_modification_pending_per_item', table_name='sample_modifications')
    op.drop_table('sample_modifications')
    op.drop_table('sample_tracking')
    op.drop_table('workspace_bookings')
    op.drop_table('booking_service_items')
    op.drop_table('booking_requests')
    op.drop_table('service_pricing')
    op.drop_table('services')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (
        notification_type,
        modification_initiator,
        modification_status,
        sample_status,
        booking_status,
        user_status,
        user_type,
    ):
        enum_type.drop(bind, checkfirst=True)
