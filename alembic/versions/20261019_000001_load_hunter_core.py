"""Load Hunter core tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Adds:
- freight_load and fleet_vehicle (read side of ingestion and fleet)
- load_hunt_match with bid summary columns
- match_action_history (append-only audit log)
- load_bid with a partial unique index allowing one sent bid per load
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_000001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'freight_load',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('customer', sa.String(), nullable=True),
        sa.Column('origin_city', sa.String(), nullable=True),
        sa.Column('origin_state', sa.String(), nullable=True),
        sa.Column('origin_lat', sa.Float(), nullable=True),
        sa.Column('origin_lng', sa.Float(), nullable=True),
        sa.Column('destination_city', sa.String(), nullable=True),
        sa.Column('destination_state', sa.String(), nullable=True),
        sa.Column('destination_lat', sa.Float(), nullable=True),
        sa.Column('destination_lng', sa.Float(), nullable=True),
        sa.Column('posted_rate', sa.Numeric(12, 2), nullable=True),
        sa.Column('equipment_type', sa.String(), nullable=True),
        sa.Column('weight', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'fleet_vehicle',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('vehicle_number', sa.String(), nullable=True),
        sa.Column('asset_type', sa.String(), nullable=True),
        sa.Column('driver_1_id', sa.String(), nullable=True),
        sa.Column('driver_2_id', sa.String(), nullable=True),
        sa.Column('carrier', sa.String(), nullable=True),
        sa.Column('bid_as', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'load_hunt_match',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('load_id', sa.String(), nullable=False),
        sa.Column('vehicle_id', sa.String(), nullable=False),
        sa.Column('distance_miles', sa.Float(), nullable=True),
        sa.Column('matched_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('bid_rate', sa.Numeric(12, 2), nullable=True),
        sa.Column('bid_by', sa.String(), nullable=True),
        sa.Column('bid_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['load_id'], ['freight_load.id']),
        sa.ForeignKeyConstraint(['vehicle_id'], ['fleet_vehicle.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_load_hunt_match_load_id'), 'load_hunt_match', ['load_id'], unique=False)
    op.create_index(op.f('ix_load_hunt_match_vehicle_id'), 'load_hunt_match', ['vehicle_id'], unique=False)
    op.create_index(op.f('ix_load_hunt_match_status'), 'load_hunt_match', ['status'], unique=False)

    op.create_table(
        'match_action_history',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('match_id', sa.String(), nullable=False),
        sa.Column('dispatcher_id', sa.String(), nullable=True),
        sa.Column('dispatcher_email', sa.String(), nullable=True),
        sa.Column('dispatcher_name', sa.String(), nullable=True),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('action_details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['match_id'], ['load_hunt_match.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_match_action_history_match_id'), 'match_action_history', ['match_id'], unique=False)
    op.create_index(op.f('ix_match_action_history_dispatcher_email'), 'match_action_history', ['dispatcher_email'], unique=False)
    op.create_index(op.f('ix_match_action_history_action_type'), 'match_action_history', ['action_type'], unique=False)
    op.create_index('idx_match_action_history_match_created', 'match_action_history', ['match_id', 'created_at'], unique=False)

    op.create_table(
        'load_bid',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('load_id', sa.String(), nullable=False),
        sa.Column('match_id', sa.String(), nullable=False),
        sa.Column('vehicle_id', sa.String(), nullable=True),
        sa.Column('dispatcher_id', sa.String(), nullable=True),
        sa.Column('dispatcher_email', sa.String(), nullable=True),
        sa.Column('dispatcher_name', sa.String(), nullable=True),
        sa.Column('bid_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('to_email', sa.String(), nullable=False),
        sa.Column('cc_email', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['load_id'], ['freight_load.id']),
        sa.ForeignKeyConstraint(['match_id'], ['load_hunt_match.id']),
        sa.ForeignKeyConstraint(['vehicle_id'], ['fleet_vehicle.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_load_bid_load_id'), 'load_bid', ['load_id'], unique=False)
    op.create_index(op.f('ix_load_bid_match_id'), 'load_bid', ['match_id'], unique=False)
    # At most one sent bid per load; duplicates are recorded with status 'duplicate'
    op.create_index(
        'uq_load_bid_one_sent_per_load',
        'load_bid',
        ['load_id'],
        unique=True,
        postgresql_where=sa.text("status = 'sent'"),
    )


def downgrade() -> None:
    op.drop_index('uq_load_bid_one_sent_per_load', table_name='load_bid')
    op.drop_index(op.f('ix_load_bid_match_id'), table_name='load_bid')
    op.drop_index(op.f('ix_load_bid_load_id'), table_name='load_bid')
    op.drop_table('load_bid')

    op.drop_index('idx_match_action_history_match_created', table_name='match_action_history')
    op.drop_index(op.f('ix_match_action_history_action_type'), table_name='match_action_history')
    op.drop_index(op.f('ix_match_action_history_dispatcher_email'), table_name='match_action_history')
    op.drop_index(op.f('ix_match_action_history_match_id'), table_name='match_action_history')
    op.drop_table('match_action_history')

    op.drop_index(op.f('ix_load_hunt_match_status'), table_name='load_hunt_match')
    op.drop_index(op.f('ix_load_hunt_match_vehicle_id'), table_name='load_hunt_match')
    op.drop_index(op.f('ix_load_hunt_match_load_id'), table_name='load_hunt_match')
    op.drop_table('load_hunt_match')

    op.drop_table('fleet_vehicle')
    op.drop_table('freight_load')
