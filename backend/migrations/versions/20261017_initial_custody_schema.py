"""initial custody schema

Revision ID: 20261017_custody
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the cash custody schema:
- stations / station_configs: station directory and per-station settings
- users / session_tokens: cash holders and their bearer tokens
- nozzle_readings: sales source for expected shift cash
- shifts: one active shift per employee (partial unique index)
- cash_handovers: custody chain links, one root per shift, one successor per link
- custody_events: append-only audit trail of custody transitions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_custody'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True):
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade():
    # ============================================================================
    # stations
    # ============================================================================
    op.create_table(
        'stations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('owner_user_id', sa.Integer(), nullable=True),
        sa.Column('manager_user_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('code', name='uq_stations_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stations_code', 'stations', ['code'])
    op.create_index('ix_stations_owner_user_id', 'stations', ['owner_user_id'])
    op.create_index('ix_stations_manager_user_id', 'stations', ['manager_user_id'])

    op.create_table(
        'station_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('station_id', sa.Integer(), sa.ForeignKey('stations.id'), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('station_id', 'key', name='uq_station_configs_station_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_station_configs_station_id', 'station_configs', ['station_id'])

    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='employee'),
        sa.Column('station_id', sa.Integer(), sa.ForeignKey('stations.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_users_username', 'users', ['username'])
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_station_id', 'users', ['station_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        *_timestamps(updated=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('token_hash', name='uq_session_tokens_token_hash'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'])

    # ============================================================================
    # nozzle_readings
    # ============================================================================
    op.create_table(
        'nozzle_readings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('station_id', sa.Integer(), sa.ForeignKey('stations.id'), nullable=False),
        sa.Column('entered_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('litres_sold', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('online_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_initial_reading', sa.Boolean(), nullable=False, server_default=sa.false()),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_nozzle_readings_station_id', 'nozzle_readings', ['station_id'])
    op.create_index('ix_nozzle_readings_entered_by_user_id', 'nozzle_readings', ['entered_by_user_id'])
    op.create_index('ix_nozzle_readings_station_recorded', 'nozzle_readings', ['station_id', 'recorded_at'])

    # ============================================================================
    # shifts
    # ============================================================================
    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('station_id', sa.Integer(), sa.ForeignKey('stations.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('shift_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shift_type', sa.String(length=16), nullable=False, server_default='custom'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('opening_cash_cents', sa.Integer(), nullable=True),
        sa.Column('expected_cash_cents', sa.Integer(), nullable=True),
        sa.Column('actual_cash_cents', sa.Integer(), nullable=True),
        sa.Column('actual_online_cents', sa.Integer(), nullable=True),
        sa.Column('cash_difference_cents', sa.Integer(), nullable=True),
        sa.Column('expected_online_cents', sa.Integer(), nullable=True),
        sa.Column('expected_credit_cents', sa.Integer(), nullable=True),
        sa.Column('readings_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_litres', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('end_notes', sa.Text(), nullable=True),
        sa.Column('ended_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_shifts_station_id', 'shifts', ['station_id'])
    op.create_index('ix_shifts_employee_id', 'shifts', ['employee_id'])
    op.create_index('ix_shifts_status', 'shifts', ['status'])
    op.create_index('ix_shifts_station_date', 'shifts', ['station_id', 'shift_date'])
    op.create_index('ix_shifts_employee_date', 'shifts', ['employee_id', 'shift_date'])
    op.create_index(
        'uq_shifts_one_active_per_employee',
        'shifts',
        ['employee_id'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    # ============================================================================
    # cash_handovers
    # ============================================================================
    op.create_table(
        'cash_handovers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('station_id', sa.Integer(), sa.ForeignKey('stations.id'), nullable=False),
        sa.Column('handover_type', sa.String(length=32), nullable=False),
        sa.Column('handover_date', sa.Date(), nullable=False),
        sa.Column('from_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('to_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('shift_id', sa.Integer(), sa.ForeignKey('shifts.id'), nullable=True),
        sa.Column('previous_handover_id', sa.Integer(), sa.ForeignKey('cash_handovers.id'), nullable=True),
        sa.Column('expected_amount_cents', sa.Integer(), nullable=False),
        sa.Column('actual_amount_cents', sa.Integer(), nullable=True),
        sa.Column('difference_cents', sa.Integer(), nullable=True),
        sa.Column('resolved_amount_cents', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('bank_name', sa.String(length=100), nullable=True),
        sa.Column('deposit_reference', sa.String(length=50), nullable=True),
        sa.Column('deposit_receipt_url', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('dispute_notes', sa.Text(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('shift_id', name='uq_cash_handovers_shift_id'),
        sa.UniqueConstraint('previous_handover_id', name='uq_cash_handovers_previous_handover_id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_handovers_station_id', 'cash_handovers', ['station_id'])
    op.create_index('ix_cash_handovers_handover_type', 'cash_handovers', ['handover_type'])
    op.create_index('ix_cash_handovers_handover_date', 'cash_handovers', ['handover_date'])
    op.create_index('ix_cash_handovers_from_user_id', 'cash_handovers', ['from_user_id'])
    op.create_index('ix_cash_handovers_to_user_id', 'cash_handovers', ['to_user_id'])
    op.create_index('ix_cash_handovers_status', 'cash_handovers', ['status'])
    op.create_index('ix_cash_handovers_station_date', 'cash_handovers', ['station_id', 'handover_date'])
    op.create_index('ix_cash_handovers_station_status', 'cash_handovers', ['station_id', 'status'])

    # ============================================================================
    # custody_events: append-only
    # ============================================================================
    op.create_table(
        'custody_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('station_id', sa.Integer(), sa.ForeignKey('stations.id'), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(updated=False),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_custody_events_station_id', 'custody_events', ['station_id'])
    op.create_index('ix_custody_events_event_type', 'custody_events', ['event_type'])
    op.create_index('ix_custody_events_actor_user_id', 'custody_events', ['actor_user_id'])
    op.create_index('ix_custody_events_occurred_at', 'custody_events', ['occurred_at'])
    op.create_index('ix_custody_events_station_occurred', 'custody_events', ['station_id', 'occurred_at'])
    op.create_index('ix_custody_events_entity', 'custody_events', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_table('custody_events')
    op.drop_table('cash_handovers')
    op.drop_index('uq_shifts_one_active_per_employee', table_name='shifts')
    op.drop_table('shifts')
    op.drop_table('nozzle_readings')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('station_configs')
    op.drop_table('stations')
