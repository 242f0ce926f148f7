"""Initial workflow schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Creates all tables for:
- Hierarchy (applications, features, tasks)
- Sessions and their audit records (file_changes, checkpoints, snapshots,
  decisions, scope_validations, feedback)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


FEATURE_STATUSES = (
    'planned', 'backlog', 'ready', 'in_progress', 'blocked', 'on_hold',
    'in_review', 'completed', 'wont_do', 'abandoned', 'archived',
)
TASK_STATUSES = (
    'backlog', 'ready', 'blocked', 'on_hold', 'in_progress', 'in_review',
    'needs_revision', 'completed', 'wont_do', 'abandoned', 'archived',
)

ENUM_NAMES = (
    'feature_status', 'task_status', 'session_task_type', 'session_status',
    'change_type', 'validation_type', 'validation_result', 'feedback_type',
)


def _blocking_constraints(table: str) -> list:
    return [
        sa.CheckConstraint('blocked_by_id IS NULL OR blocked_by_id != id', name=f'{table}_no_self_blocking'),
        sa.CheckConstraint(
            '(blocking_reason IS NULL AND blocked_by_id IS NULL) OR '
            '(blocking_reason IS NOT NULL AND blocked_by_id IS NOT NULL)',
            name=f'{table}_blocking_requires_reason',
        ),
        sa.CheckConstraint("status != 'blocked' OR blocked_by_id IS NOT NULL", name=f'{table}_blocked_requires_blocker'),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Hierarchy
    # ==========================================================================

    op.create_table(
        'applications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('repository_url', sa.String(length=2000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'features',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*FEATURE_STATUSES, name='feature_status'), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('blocked_by_id', sa.Uuid(), nullable=True),
        sa.Column('blocking_reason', sa.Text(), nullable=True),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('status_history', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['blocked_by_id'], ['features.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id', 'name', name='uq_features_application_name'),
        *_blocking_constraints('features'),
    )
    op.create_index('ix_features_application_id', 'features', ['application_id'], unique=False)
    op.create_index('ix_features_status', 'features', ['status'], unique=False)
    op.create_index('ix_features_blocked_by_id', 'features', ['blocked_by_id'], unique=False)

    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('feature_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('acceptance_criteria', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*TASK_STATUSES, name='task_status'), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('blocked_by_id', sa.Uuid(), nullable=True),
        sa.Column('blocking_reason', sa.Text(), nullable=True),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('status_history', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['feature_id'], ['features.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['blocked_by_id'], ['tasks.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('feature_id', 'name', name='uq_tasks_feature_name'),
        *_blocking_constraints('tasks'),
    )
    op.create_index('ix_tasks_feature_id', 'tasks', ['feature_id'], unique=False)
    op.create_index('ix_tasks_status', 'tasks', ['status'], unique=False)
    op.create_index('ix_tasks_blocked_by_id', 'tasks', ['blocked_by_id'], unique=False)

    # ==========================================================================
    # Sessions
    # ==========================================================================

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('task_id', sa.Uuid(), nullable=True),
        sa.Column('feature_id', sa.Uuid(), nullable=True),
        sa.Column('application_id', sa.Uuid(), nullable=True),
        sa.Column('task_type', sa.Enum('code-editing', 'planning', 'research', 'exploration', name='session_task_type'), nullable=False),
        sa.Column('context_description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('active', 'completed', 'abandoned', name='session_status'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('last_checkpoint_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_file_change_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_decision_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('compliance_score', sa.Integer(), nullable=False, server_default='100'),
        sa.ForeignKeyConstraint(['task_id'], ['tasks.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['feature_id'], ['features.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('compliance_score >= 0 AND compliance_score <= 100', name='sessions_compliance_score_range'),
    )
    op.create_index('ix_sessions_task_id', 'sessions', ['task_id'], unique=False)
    op.create_index('ix_sessions_feature_id', 'sessions', ['feature_id'], unique=False)
    op.create_index('ix_sessions_application_id', 'sessions', ['application_id'], unique=False)
    op.create_index('ix_sessions_status', 'sessions', ['status'], unique=False)

    # ==========================================================================
    # Session Audit Records
    # ==========================================================================

    op.create_table(
        'file_changes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('change_type', sa.Enum('created', 'modified', 'deleted', name='change_type'), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_file_changes_session_id', 'file_changes', ['session_id'], unique=False)
    op.create_index('ix_file_changes_file_path', 'file_changes', ['file_path'], unique=False)

    op.create_table(
        'checkpoints',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('progress', sa.Text(), nullable=False),
        sa.Column('changes_description', sa.Text(), nullable=False),
        sa.Column('current_thinking', sa.Text(), nullable=False),
        sa.Column('next_steps', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_checkpoints_session_id', 'checkpoints', ['session_id'], unique=False)

    op.create_table(
        'snapshots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'file_path', 'content_hash', name='uq_snapshots_session_file_hash'),
    )
    op.create_index('ix_snapshots_session_id', 'snapshots', ['session_id'], unique=False)
    op.create_index('ix_snapshots_file_path', 'snapshots', ['file_path'], unique=False)

    op.create_table(
        'decisions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reasoning', sa.Text(), nullable=False),
        sa.Column('alternatives', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_decisions_session_id', 'decisions', ['session_id'], unique=False)

    op.create_table(
        'scope_validations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('validation_type', sa.Enum('scope_check', 'checkpoint_reminder', 'file_verification', name='validation_type'), nullable=False),
        sa.Column('result', sa.Enum('pass', 'warning', 'violation', name='validation_result'), nullable=False),
        sa.Column('details', sa.Text(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scope_validations_session_id', 'scope_validations', ['session_id'], unique=False)

    op.create_table(
        'feedback',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=True),
        sa.Column('decision_id', sa.Uuid(), nullable=True),
        sa.Column('feedback_type', sa.Enum('positive', 'negative', 'neutral', name='feedback_type'), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reusability_score', sa.Integer(), nullable=True),
        sa.Column('applicable_task_types', sa.JSON(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['decision_id'], ['decisions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            'reusability_score IS NULL OR (reusability_score >= 1 AND reusability_score <= 10)',
            name='feedback_reusability_score_range',
        ),
    )
    op.create_index('ix_feedback_session_id', 'feedback', ['session_id'], unique=False)
    op.create_index('ix_feedback_decision_id', 'feedback', ['decision_id'], unique=False)
    op.create_index('ix_feedback_type_score', 'feedback', ['feedback_type', 'reusability_score'], unique=False)


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('feedback')
    op.drop_table('scope_validations')
    op.drop_table('decisions')
    op.drop_table('snapshots')
    op.drop_table('checkpoints')
    op.drop_table('file_changes')
    op.drop_table('sessions')
    op.drop_table('tasks')
    op.drop_table('features')
    op.drop_table('applications')

    # Drop enums (PostgreSQL only; SQLite stores them as VARCHAR + CHECK)
    if op.get_bind().dialect.name == 'postgresql':
        for name in ENUM_NAMES:
            op.execute(f"DROP TYPE IF EXISTS {name}")
