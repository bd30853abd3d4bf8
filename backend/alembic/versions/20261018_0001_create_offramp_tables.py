"""create off-ramp saga tables

Revision ID: 7b1c2d3e4f50
Revises:
Create Date: 2026-10-18 00:01:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '7b1c2d3e4f50'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create offramp_sagas table
    op.create_table(
        'offramp_sagas',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('swap_id', sa.String(64), nullable=False),
        sa.Column('idempotency_token', sa.String(64), nullable=False),
        sa.Column('request_payload', sa.Text, nullable=False),
        sa.Column('step', sa.String(32), nullable=False, server_default='validate'),
        sa.Column('outcome', sa.String(16), nullable=False, server_default='running'),
        sa.Column('running', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('source_tx_hash', sa.String(80), nullable=True),
        sa.Column('source_transfer_submitted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('bridge_status', sa.String(32), nullable=True),
        sa.Column('receive_amount', sa.String(80), nullable=True),
        sa.Column('min_receive_amount', sa.String(80), nullable=True),
        sa.Column('payout_rate', sa.String(80), nullable=True),
        sa.Column('fiat_amount', sa.String(80), nullable=True),
        sa.Column('payout_order_id', sa.String(64), nullable=True),
        sa.Column('payout_receive_address', sa.String(42), nullable=True),
        sa.Column('payout_sender_fee', sa.String(80), nullable=True),
        sa.Column('payout_transaction_fee', sa.String(80), nullable=True),
        sa.Column('settlement_amount', sa.String(80), nullable=True),
        sa.Column('settlement_tx_hash', sa.String(66), nullable=True),
        sa.Column('final_status', sa.String(16), nullable=True),
        sa.Column('error_code', sa.String(40), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('idempotency_token', name='uq_offramp_sagas_idempotency_token'),
    )
    op.create_index('ix_offramp_sagas_swap_id', 'offramp_sagas', ['swap_id'], unique=True)
    op.create_index('ix_offramp_sagas_outcome', 'offramp_sagas', ['outcome'])
    op.create_index('ix_offramp_sagas_payout_order_id', 'offramp_sagas', ['payout_order_id'])

    # Create payout_order_statuses table
    op.create_table(
        'payout_order_statuses',
        sa.Column('order_id', sa.String(64), primary_key=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('source', sa.String(16), nullable=False),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('provider_timestamp', sa.String(40), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_payout_order_statuses_status', 'payout_order_statuses', ['status'])

    # Create settlement_transfers table
    op.create_table(
        'settlement_transfers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('idempotency_key', sa.String(96), nullable=False),
        sa.Column('to_address', sa.String(42), nullable=False),
        sa.Column('token_address', sa.String(42), nullable=False),
        sa.Column('amount_base_units', sa.String(80), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('state', sa.String(16), nullable=False, server_default='reserved'),
        sa.Column('broadcast_uncertain', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('confirmed_at', sa.TIMESTAMP, nullable=True),
        sa.UniqueConstraint('tx_hash', name='uq_settlement_transfers_tx_hash'),
    )
    op.create_index('ix_settlement_transfers_idempotency_key', 'settlement_transfers', ['idempotency_key'], unique=True)
    op.create_index('ix_settlement_transfers_state', 'settlement_transfers', ['state'])


def downgrade() -> None:
    op.drop_index('ix_settlement_transfers_state', 'settlement_transfers')
    op.drop_index('ix_settlement_transfers_idempotency_key', 'settlement_transfers')
    op.drop_table('settlement_transfers')

    op.drop_index('ix_payout_order_statuses_status', 'payout_order_statuses')
    op.drop_table('payout_order_statuses')

    op.drop_index('ix_offramp_sagas_payout_order_id', 'offramp_sagas')
    op.drop_index('ix_offramp_sagas_outcome', 'offramp_sagas')
    op.drop_index('ix_offramp_sagas_swap_id', 'offramp_sagas')
    op.drop_table('offramp_sagas')
