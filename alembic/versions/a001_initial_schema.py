"""Initial schema creation

Revision ID: a001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a001'
down_revision = None
branch_labels = None
depends_on = None


RESCHEDULE_STATUSES = ('PENDING', 'ACCEPTED', 'APPROVED', 'COMPLETED', 'REJECTED', 'CANCELLED', 'EXPIRED')
PRIORITIES = ('LOW', 'NORMAL', 'HIGH', 'URGENT')


def upgrade() -> None:
    """Create initial database schema."""

    # Create branches table
    op.create_table(
        'branches',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Create staff table
    op.create_table(
        'staff',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.Enum('OWNER', 'MANAGER', 'STAFF', name='staffrole'), nullable=False),
        sa.Column('job_title', sa.String(100), nullable=True),
        sa.Column('line_user_id', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('line_user_id')
    )

    # Create staff_branches table
    op.create_table(
        'staff_branches',
        sa.Column('staff_id', sa.String(36), nullable=False),
        sa.Column('branch_id', sa.String(36), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('staff_id', 'branch_id'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'])
    )
    op.create_index('ix_staff_branches_branch_id', 'staff_branches', ['branch_id'])

    # Create work_shifts table
    op.create_table(
        'work_shifts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('staff_id', sa.String(36), nullable=False),
        sa.Column('branch_id', sa.String(36), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.Enum('SCHEDULED', 'CANCELLED', name='shiftstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'])
    )
    op.create_index('ix_work_shifts_staff_id', 'work_shifts', ['staff_id'])
    op.create_index('ix_work_shifts_branch_id', 'work_shifts', ['branch_id'])
    op.create_index('ix_work_shifts_staff_range', 'work_shifts', ['staff_id', 'start_time', 'end_time'])

    # Create reschedule_requests table
    op.create_table(
        'reschedule_requests',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('requester_staff_id', sa.String(36), nullable=False),
        sa.Column('target_staff_id', sa.String(36), nullable=True),
        sa.Column('branch_id', sa.String(36), nullable=False),
        sa.Column('swap_type', sa.Enum('SWAP', 'GIVEAWAY', 'COVER_REQUEST', name='swaptype'), nullable=False),
        sa.Column('source_shift_id', sa.String(36), nullable=False),
        sa.Column('target_shift_id', sa.String(36), nullable=True),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('priority', sa.Enum(*PRIORITIES, name='reschedulepriority'), nullable=False),
        sa.Column('status', sa.Enum(*RESCHEDULE_STATUSES, name='reschedulestatus'), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('accepted_by', sa.String(36), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('approved_by', sa.String(36), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_by', sa.String(36), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.String(500), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('conflict_detected', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('open_source_shift_id', sa.String(36), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['requester_staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['target_staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['source_shift_id'], ['work_shifts.id']),
        sa.ForeignKeyConstraint(['target_shift_id'], ['work_shifts.id']),
        sa.ForeignKeyConstraint(['accepted_by'], ['staff.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['staff.id']),
        sa.ForeignKeyConstraint(['rejected_by'], ['staff.id']),
        sa.UniqueConstraint('open_source_shift_id', name='uq_open_request_source_shift')
    )
    op.create_index('ix_reschedule_requests_requester_staff_id', 'reschedule_requests', ['requester_staff_id'])
    op.create_index('ix_reschedule_requests_target_staff_id', 'reschedule_requests', ['target_staff_id'])
    op.create_index('ix_reschedule_requests_branch_id', 'reschedule_requests', ['branch_id'])
    op.create_index('ix_reschedule_requests_source_shift_id', 'reschedule_requests', ['source_shift_id'])
    op.create_index('ix_reschedule_requests_status', 'reschedule_requests', ['status'])
    op.create_index('ix_reschedule_requests_expires_at', 'reschedule_requests', ['expires_at'])
    op.create_index('ix_reschedule_requests_branch_status', 'reschedule_requests', ['branch_id', 'status'])

    # Create reschedule_state_history table
    op.create_table(
        'reschedule_state_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('request_id', sa.String(36), nullable=False),
        sa.Column('from_status', sa.Enum(*RESCHEDULE_STATUSES, name='reschedulestatus'), nullable=True),
        sa.Column('to_status', sa.Enum(*RESCHEDULE_STATUSES, name='reschedulestatus'), nullable=False),
        sa.Column('changed_by', sa.String(36), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['request_id'], ['reschedule_requests.id'], ondelete='CASCADE')
    )
    op.create_index('ix_reschedule_state_history_request_id', 'reschedule_state_history', ['request_id'])

    # Create notification_outbox table
    op.create_table(
        'notification_outbox',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('request_id', sa.String(36), nullable=False),
        sa.Column('recipient_staff_id', sa.String(36), nullable=False),
        sa.Column('recipient_role', sa.Enum('REQUESTER', 'TARGET', 'APPROVER', name='recipientrole'), nullable=False),
        sa.Column('new_status', sa.Enum(*RESCHEDULE_STATUSES, name='reschedulestatus'), nullable=False),
        sa.Column('changed_fields', sa.JSON(), nullable=False),
        sa.Column('priority', sa.Enum(*PRIORITIES, name='reschedulepriority'), nullable=False),
        sa.Column('urgent', sa.Boolean(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'SENT', 'FAILED', name='outboxstatus'), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.String(2000), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id')
    )
    op.create_index('ix_notification_outbox_request_id', 'notification_outbox', ['request_id'])
    op.create_index('ix_notification_outbox_due', 'notification_outbox', ['status', 'next_retry_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('notification_outbox')
    op.drop_table('reschedule_state_history')
    op.drop_table('reschedule_requests')
    op.drop_table('work_shifts')
    op.drop_table('staff_branches')
    op.drop_table('staff')
    op.drop_table('branches')
