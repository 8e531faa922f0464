"""Baseline: rooms, members, slots, exchange requests, negotiations.

Revision ID: 0001_coordination_baseline
Revises:
Create Date: 2026-10-19

Creates:
- users
- rooms (with version counter), room_schedule_windows, room_blocked_times
- room_members, member_preferences
- negotiations, negotiation_members, negotiation_messages
- carry_over_entries
- time_slots (atomic 30-minute rows)
- exchange_requests
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_coordination_baseline'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('token_version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    # ==========================================================================
    # rooms
    # ==========================================================================
    op.create_table(
        'rooms',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('min_weekly_minutes', sa.Integer(), nullable=False),
        sa.Column('travel_mode', sa.String(30), nullable=True),
        sa.Column('auto_confirm_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('travel_mode_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'room_schedule_windows',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('room_id', sa.Uuid(), nullable=False),
        sa.Column('day_of_week', sa.String(10), nullable=True),
        sa.Column('specific_date', sa.Date(), nullable=True),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('start_minute < end_minute', name='ck_schedule_window_range'),
    )
    op.create_index('idx_room_schedule_windows_room', 'room_schedule_windows', ['room_id'])

    op.create_table(
        'room_blocked_times',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('room_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'room_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('room_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('carry_over_minutes', sa.Integer(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', 'user_id', name='uq_room_member'),
    )

    op.create_table(
        'member_preferences',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('member_id', sa.Uuid(), nullable=False),
        sa.Column('day_of_week', sa.String(10), nullable=True),
        sa.Column('specific_date', sa.Date(), nullable=True),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['room_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('start_minute < end_minute', name='ck_member_preference_range'),
    )
    op.create_index('idx_member_preferences_member', 'member_preferences', ['member_id'])

    # ==========================================================================
    # negotiations
    # ==========================================================================
    op.create_table(
        'negotiations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('room_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column('slot_date', sa.Date(), nullable=False),
        sa.Column('day', sa.String(10), nullable=False),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('resolution', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_negotiations_room_status', 'negotiations', ['room_id', 'status', 'week_start']
    )

    op.create_table(
        'negotiation_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('negotiation_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('required_slots', sa.Integer(), nullable=False),
        sa.Column('response', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('yield_option', sa.String(20), nullable=True),
        sa.Column('alternative_slots', sa.JSON(), nullable=True),
        sa.Column('chosen_slot', sa.JSON(), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['negotiation_id'], ['negotiations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('negotiation_id', 'user_id', name='uq_negotiation_member'),
    )

    op.create_table(
        'negotiation_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('negotiation_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('author_id', sa.Uuid(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['negotiation_id'], ['negotiations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['author_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'carry_over_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('member_id', sa.Uuid(), nullable=False),
        sa.Column('negotiation_id', sa.Uuid(), nullable=True),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('minutes', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['room_members.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['negotiation_id'], ['negotiations.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('member_id', 'negotiation_id', name='uq_carry_over_negotiation'),
    )

    # ==========================================================================
    # time_slots
    # ==========================================================================
    op.create_table(
        'time_slots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('room_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('slot_date', sa.Date(), nullable=False),
        sa.Column('day', sa.String(10), nullable=False),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'confirmed'"), nullable=False),
        sa.Column('subject', sa.String(200), nullable=True),
        sa.Column('negotiation_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['negotiation_id'], ['negotiations.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'room_id', 'user_id', 'slot_date', 'start_minute', name='uq_time_slot_user_start'
        ),
        sa.CheckConstraint('end_minute - start_minute = 30', name='ck_time_slot_atomic'),
    )
    op.create_index('idx_time_slots_room_date', 'time_slots', ['room_id', 'slot_date'])

    # ==========================================================================
    # exchange_requests
    # ==========================================================================
    op.create_table(
        'exchange_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('room_id', sa.Uuid(), nullable=False),
        sa.Column('requester_id', sa.Uuid(), nullable=False),
        sa.Column('target_user_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(30), server_default=sa.text("'exchange_request'"), nullable=False),
        sa.Column('status', sa.String(30), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('requester_slots', sa.JSON(), nullable=False),
        sa.Column('target_slot', sa.JSON(), nullable=False),
        sa.Column('chain_data', sa.JSON(), nullable=True),
        sa.Column('parent_request_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['requester_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['target_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_request_id'], ['exchange_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_exchange_requests_room_status', 'exchange_requests', ['room_id', 'status'])
    op.create_index('idx_exchange_requests_target', 'exchange_requests', ['target_user_id', 'status'])


def downgrade() -> None:
    op.drop_table('exchange_requests')
    op.drop_table('time_slots')
    op.drop_table('carry_over_entries')
    op.drop_table('negotiation_messages')
    op.drop_table('negotiation_members')
    op.drop_table('negotiations')
    op.drop_table('member_preferences')
    op.drop_table('room_members')
    op.drop_table('room_blocked_times')
    op.drop_table('room_schedule_windows')
    op.drop_table('rooms')
    op.drop_table('users')
