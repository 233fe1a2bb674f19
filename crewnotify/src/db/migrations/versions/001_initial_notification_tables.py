"""Create notification engine tables

Revision ID: 001_initial_notification_tables
Revises:
Create Date: 2026-10-19

Creates the four tables of the notification engine:
- recipients: identity rows resolved from the caller's employee ids
- notifications: persisted per-recipient notifications and delivery state
- notification_preferences: one row per recipient
- threshold_states: last observed level per watched condition (edge trigger)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_initial_notification_tables'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_type():
    return postgresql.UUID(as_uuid=True).with_variant(sa.LargeBinary(16), 'sqlite')


def _json_type():
    return postgresql.JSONB().with_variant(sa.JSON(), 'sqlite')


def upgrade() -> None:
    """
    Create recipients, notifications, notification_preferences and
    threshold_states.
    """
    op.create_table(
        'recipients',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', _uuid_type(), nullable=False),
        sa.Column('external_id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_recipients_uuid', 'recipients', ['uuid'], unique=True)
    op.create_index('ix_recipients_external_id', 'recipients', ['external_id'], unique=True)

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', _uuid_type(), nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.String(length=1000), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('priority', sa.String(length=10), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('related_entity_kind', sa.String(length=20), nullable=True),
        sa.Column('related_entity_id', sa.String(length=100), nullable=True),
        sa.Column('data', _json_type(), nullable=True),
        sa.Column('push_token', sa.String(length=255), nullable=True),
        sa.Column('web_push_subscription', _json_type(), nullable=True),
        sa.Column('push_response', _json_type(), nullable=True),
        sa.Column('web_push_response', _json_type(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('delivery_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['recipient_id'], ['recipients.id'], name='fk_notifications_recipient_id'),
        sa.ForeignKeyConstraint(['sender_id'], ['recipients.id'], name='fk_notifications_sender_id'),
    )
    op.create_index('ix_notifications_uuid', 'notifications', ['uuid'], unique=True)
    op.create_index('ix_notifications_recipient_id', 'notifications', ['recipient_id'])
    op.create_index('ix_notifications_type', 'notifications', ['type'])
    op.create_index('ix_notifications_status', 'notifications', ['status'])
    op.create_index('ix_notifications_scheduled_for', 'notifications', ['scheduled_for'])
    op.create_index('ix_notifications_next_attempt_at', 'notifications', ['next_attempt_at'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('ix_notifications_recipient_status', 'notifications', ['recipient_id', 'status'])
    op.create_index('ix_notifications_due', 'notifications', ['status', 'scheduled_for'])
    op.create_index('ix_notifications_retry', 'notifications', ['status', 'next_attempt_at'])

    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('push_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('email_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_types', _json_type(), nullable=False),
        sa.Column('quiet_hours', _json_type(), nullable=False),
        sa.Column('reminder_settings', _json_type(), nullable=False),
        sa.Column('push_token', sa.String(length=255), nullable=True),
        sa.Column('web_push_subscription', _json_type(), nullable=True),
        sa.Column('last_updated', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['recipient_id'], ['recipients.id'],
            name='fk_notification_preferences_recipient_id',
            ondelete='CASCADE',
        ),
    )
    op.create_index(
        'ix_notification_preferences_recipient_id',
        'notification_preferences',
        ['recipient_id'],
        unique=True,
    )

    op.create_table(
        'threshold_states',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('watch_key', sa.String(length=255), nullable=False),
        sa.Column('last_value', sa.Float(), nullable=False),
        sa.Column('is_below', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_threshold_states_watch_key', 'threshold_states', ['watch_key'], unique=True)


def downgrade() -> None:
    """Drop the notification engine tables."""
    op.drop_index('ix_threshold_states_watch_key', table_name='threshold_states')
    op.drop_table('threshold_states')

    op.drop_index('ix_notification_preferences_recipient_id', table_name='notification_preferences')
    op.drop_table('notification_preferences')

    for index_name in (
        'ix_notifications_retry',
        'ix_notifications_due',
        'ix_notifications_recipient_status',
        'ix_notifications_created_at',
        'ix_notifications_next_attempt_at',
        'ix_notifications_scheduled_for',
        'ix_notifications_status',
        'ix_notifications_type',
        'ix_notifications_recipient_id',
        'ix_notifications_uuid',
    ):
        op.drop_index(index_name, table_name='notifications')
    op.drop_table('notifications')

    op.drop_index('ix_recipients_external_id', table_name='recipients')
    op.drop_index('ix_recipients_uuid', table_name='recipients')
    op.drop_table('recipients')
