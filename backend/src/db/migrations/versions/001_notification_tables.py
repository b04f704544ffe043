"""Create notification dispatch tables.

Revision ID: 001_notification_tables
Revises:
Create Date: 2026-02-12

- users: notification recipients
- notification_preferences: per-user toggles, time, dedup marker and badge
- push_subscriptions: one Web Push subscription per user
- event_occurrences: calendar events resolved to Gregorian dates
- notification_logs: append-only delivery audit trail
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_notification_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create users, preferences, subscriptions, occurrences and logs."""
    bind = op.get_bind()
    dialect = bind.dialect.name

    if dialect == 'postgresql':
        now = sa.text('NOW()')
        json_type = postgresql.JSONB()
    else:
        now = sa.text("datetime('now')")
        json_type = sa.JSON()

    # =========================================================================
    # users
    # =========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
    )

    # =========================================================================
    # notification_preferences
    # =========================================================================
    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_notification_preferences_user_id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notification_time', sa.String(8), nullable=False, server_default='08:00'),
        sa.Column('personal_events', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('shared_events', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('system_events', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('ancestor_worship_events', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_notified_at', sa.DateTime(), nullable=True),
        sa.Column('badge_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=now),
        sa.CheckConstraint('badge_count >= 0', name='ck_notification_preferences_badge_nonneg'),
    )
    op.create_index(
        'ix_notification_preferences_user_id', 'notification_preferences', ['user_id'], unique=True
    )

    # =========================================================================
    # push_subscriptions
    # =========================================================================
    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_push_subscriptions_user_id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('endpoint', sa.String(1024), nullable=False),
        sa.Column('p256dh_key', sa.String(255), nullable=False),
        sa.Column('auth_key', sa.String(255), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=now),
    )
    op.create_index(
        'ix_push_subscriptions_user_id', 'push_subscriptions', ['user_id'], unique=True
    )

    # =========================================================================
    # event_occurrences
    # =========================================================================
    op.create_table(
        'event_occurrences',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_event_occurrences_user_id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column('source_event_id', sa.String(64), nullable=True),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('occurrence_date', sa.Date(), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=True),
        sa.Column('ancestor_name', sa.String(200), nullable=True),
        sa.Column('ancestor_precall', sa.String(100), nullable=True),
        sa.Column('owner_name', sa.String(255), nullable=True),
        sa.Column('lunar_label', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
    )
    op.create_index('ix_event_occurrences_user_id', 'event_occurrences', ['user_id'])
    op.create_index(
        'ix_event_occurrences_date_category', 'event_occurrences', ['occurrence_date', 'category']
    )

    # =========================================================================
    # notification_logs
    # =========================================================================
    op.create_table(
        'notification_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_notification_logs_user_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('sent_at', sa.DateTime(), nullable=False, server_default=now),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('event_ids', json_type, nullable=False),
        sa.Column('categories', json_type, nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('body', sa.String(500), nullable=False),
    )
    op.create_index('ix_notification_logs_user_id', 'notification_logs', ['user_id'])
    op.create_index(
        'ix_notification_logs_user_sent_at', 'notification_logs', ['user_id', 'sent_at']
    )

    # Failed-attempt counts for the status endpoint (PostgreSQL only)
    if dialect == 'postgresql':
        op.create_index(
            'ix_notification_logs_failed_sent_at',
            'notification_logs',
            ['sent_at'],
            postgresql_where=sa.text('success = false'),
        )


def downgrade() -> None:
    """Drop notification dispatch tables."""
    bind = op.get_bind()
    dialect = bind.dialect.name

    if dialect == 'postgresql':
        op.drop_index('ix_notification_logs_failed_sent_at', table_name='notification_logs')
    op.drop_index('ix_notification_logs_user_sent_at', table_name='notification_logs')
    op.drop_index('ix_notification_logs_user_id', table_name='notification_logs')
    op.drop_table('notification_logs')

    op.drop_index('ix_event_occurrences_date_category', table_name='event_occurrences')
    op.drop_index('ix_event_occurrences_user_id', table_name='event_occurrences')
    op.drop_table('event_occurrences')

    op.drop_index('ix_push_subscriptions_user_id', table_name='push_subscriptions')
    op.drop_table('push_subscriptions')

    op.drop_index('ix_notification_preferences_user_id', table_name='notification_preferences')
    op.drop_table('notification_preferences')

    op.drop_table('users')
