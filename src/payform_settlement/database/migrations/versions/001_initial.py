"""Initial migration - create orders, commission_records and settlement_events tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('order_id', sa.String(64), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('provider_order_ref', sa.String(255), nullable=True, unique=True),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('form_id', sa.String(255), nullable=False),
        sa.Column('payer_email', sa.String(255), nullable=False),
        sa.Column('payer_name', sa.String(255), nullable=True),
        sa.Column('payer_phone', sa.String(32), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('gross_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('payee_id', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='created'),
        sa.Column('gateway_fee', sa.Numeric(12, 2), nullable=True),
        sa.Column('platform_commission', sa.Numeric(12, 2), nullable=True),
        sa.Column('net_to_payee', sa.Numeric(12, 2), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('settled_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_payer_form', 'orders', ['payer_email', 'form_id', 'status'])
    op.create_index('ix_orders_payee_id', 'orders', ['payee_id'])

    op.create_table(
        'commission_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(64), sa.ForeignKey('orders.order_id'), nullable=False, unique=True),
        sa.Column('payee_id', sa.String(255), nullable=False),
        sa.Column('platform_commission', sa.Numeric(12, 2), nullable=False),
        sa.Column('gateway_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('net_to_payee', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_commission_records_payee_id', 'commission_records', ['payee_id'])
    op.create_index('ix_commission_records_recorded_at', 'commission_records', ['recorded_at'])

    op.create_table(
        'settlement_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(64), sa.ForeignKey('orders.order_id'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('detail_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_settlement_events_order_id', 'settlement_events', ['order_id'])
    op.create_index('ix_settlement_events_created_at', 'settlement_events', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_settlement_events_created_at', table_name='settlement_events')
    op.drop_index('ix_settlement_events_order_id', table_name='settlement_events')

    op.drop_index('ix_commission_records_recorded_at', table_name='commission_records')
    op.drop_index('ix_commission_records_payee_id', table_name='commission_records')

    op.drop_index('ix_orders_payee_id', table_name='orders')
    op.drop_index('ix_orders_payer_form', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')

    op.drop_table('settlement_events')
    op.drop_table('commission_records')
    op.drop_table('orders')
