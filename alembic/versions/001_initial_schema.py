"""Initial schema: directory, import feed, thresholds, tasks and notifications.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TASK_STATUSES = (
    'not_started', 'assigned', 'in_progress', 'responded',
    'under_review', 're_opened', 'completed', 'closed',
)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(100), nullable=False, server_default='user'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('study_access', postgresql.JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'trials',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('protocol_id', sa.String(100), nullable=False, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'domain_records',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('trial_id', sa.Integer, sa.ForeignKey('trials.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain', sa.String(20), nullable=False),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('record_id', sa.String(100), nullable=False),
        sa.Column('record_data', sa.Text, nullable=False),
        sa.Column('imported_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('trial_id', 'domain', 'source', 'record_id', name='uq_domain_record'),
    )
    op.create_index('ix_domain_records_trial_id', 'domain_records', ['trial_id'])

    op.create_table(
        'threshold_rules',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('trial_id', sa.Integer, sa.ForeignKey('trials.id', ondelete='CASCADE'), nullable=False),
        sa.Column('metric_name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('low', sa.Float, nullable=False),
        sa.Column('medium', sa.Float, nullable=False),
        sa.Column('high', sa.Float, nullable=False),
        sa.Column('critical', sa.Float, nullable=False),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            'direction',
            sa.Enum('above', 'below', 'two_sided', name='ruledirection'),
            nullable=False,
            server_default='above',
        ),
        sa.Column('reference_low', sa.Float, nullable=True),
        sa.Column('reference_high', sa.Float, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('trial_id', 'metric_name', name='uq_threshold_rule_metric'),
        # Bands only need to be ordered while the rule is live
        sa.CheckConstraint(
            'NOT enabled OR (low < medium AND medium < high AND high < critical)',
            name='ck_threshold_bands_increasing',
        ),
    )
    op.create_index('ix_threshold_rules_trial_id', 'threshold_rules', ['trial_id'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('task_id', sa.String(40), nullable=False, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column(
            'priority',
            sa.Enum('Critical', 'High', 'Medium', 'Low', name='taskpriority'),
            nullable=False,
        ),
        sa.Column(
            'status',
            sa.Enum(*TASK_STATUSES, name='taskstatus'),
            nullable=False,
            server_default='not_started',
        ),
        sa.Column('trial_id', sa.Integer, sa.ForeignKey('trials.id'), nullable=False),
        sa.Column('site_id', sa.Integer, nullable=True),
        sa.Column('detection_id', sa.Integer, nullable=True),
        sa.Column('assigned_to', sa.String(100), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(20), nullable=True),
        sa.Column('record_id', sa.String(100), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('data_context', postgresql.JSONB, nullable=True),
        sa.Column('dedup_key', sa.String(64), nullable=True),
        sa.Column('due_date', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('last_comment_at', sa.DateTime, nullable=True),
        sa.Column('last_comment_by', sa.String(255), nullable=True),
    )
    op.create_index('ix_tasks_priority', 'tasks', ['priority'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_trial_id', 'tasks', ['trial_id'])
    op.create_index('ix_tasks_assigned_to', 'tasks', ['assigned_to'])
    op.create_index('ix_tasks_due_date', 'tasks', ['due_date'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'], postgresql_ops={'created_at': 'DESC'})

    # One open task per dedup key; completing or closing releases the key
    op.create_index(
        'uq_tasks_open_dedup_key',
        'tasks',
        ['dedup_key'],
        unique=True,
        postgresql_where=sa.text("status NOT IN ('completed', 'closed')"),
    )

    op.create_table(
        'task_comments',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('tasks.id'), nullable=False),
        sa.Column('comment', sa.Text, nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('attachments', postgresql.JSONB, nullable=True),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    op.create_table(
        'task_history',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'change_type',
            sa.Enum(
                'created', 'status_changed', 'priority_changed', 'due_date_changed',
                'assigned', 'commented', 'completed', 'closed',
                name='taskchangetype',
            ),
            nullable=False,
        ),
        sa.Column('field_name', sa.String(50), nullable=True),
        sa.Column('old_value', sa.Text, nullable=True),
        sa.Column('new_value', sa.Text, nullable=True),
        sa.Column('changed_by', sa.String(255), nullable=True),
        sa.Column('changed_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_task_history_task_id', 'task_history', ['task_id'])
    op.create_index('ix_task_history_changed_at', 'task_history', ['changed_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('trial_id', sa.Integer, sa.ForeignKey('trials.id'), nullable=True),
        sa.Column('source', sa.String(100), nullable=True),
        sa.Column('related_entity_type', sa.String(30), nullable=True),
        sa.Column('related_entity_id', sa.Integer, nullable=True),
        sa.Column('target_roles', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('target_users', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('action_required', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('action_url', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('read_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint(
            'related_entity_type', 'related_entity_id', 'user_id',
            name='uq_notification_entity_user',
        ),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])

    op.create_table(
        'notification_read_status',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column(
            'notification_id', sa.Integer,
            sa.ForeignKey('notifications.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('read_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('notification_id', 'user_id', name='uq_notification_read_user'),
    )
    op.create_index('ix_notification_read_status_notification_id', 'notification_read_status', ['notification_id'])
    op.create_index('ix_notification_read_status_user_id', 'notification_read_status', ['user_id'])

    op.create_table(
        'notification_settings',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column(
            'user_id', sa.Integer,
            sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True,
        ),
        sa.Column('email_notifications', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('push_notifications', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('critical_only', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )


def downgrade() -> None:
    op.drop_table('notification_settings')
    op.drop_table('notification_read_status')
    op.drop_table('notifications')
    op.drop_table('task_history')
    op.drop_table('task_comments')
    op.drop_index('uq_tasks_open_dedup_key', table_name='tasks')
    op.drop_table('tasks')
    op.drop_table('threshold_rules')
    op.drop_table('domain_records')
    op.drop_table('trials')
    op.drop_table('users')

    op.execute('DROP TYPE IF EXISTS taskchangetype')
    op.execute('DROP TYPE IF EXISTS taskstatus')
    op.execute('DROP TYPE IF EXISTS taskpriority')
    op.execute('DROP TYPE IF EXISTS ruledirection')
