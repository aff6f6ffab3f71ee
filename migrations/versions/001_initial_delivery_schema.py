"""
Alembic migration: Initial delivery schema.

Creates the users, orders and order_status_history tables with their
indexes, range checks and the per-order unique history sequence. Enum
columns are stored as bounded strings.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('CURRENT_TIMESTAMP'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('CURRENT_TIMESTAMP'),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """
    Upgrade database schema to the initial delivery model.
    """
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('rating', sa.Float(), nullable=False),
        sa.Column('total_deliveries', sa.Integer(), nullable=False),
        sa.Column('completed_deliveries', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_users_rating_range'),
        sa.CheckConstraint(
            'completed_deliveries >= 0 AND total_deliveries >= 0',
            name='ck_users_delivery_counters_positive',
        ),
        comment='Customers, delivery personnel and admins',
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index(
        'ix_users_role_active_available',
        'users',
        ['role', 'is_active', 'is_available'],
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('delivery_person_id', sa.Uuid(), nullable=True),
        sa.Column('pickup_address', sa.String(length=500), nullable=False),
        sa.Column('drop_address', sa.String(length=500), nullable=False),
        sa.Column('item_description', sa.String(length=1000), nullable=False),
        sa.Column('pickup_lat', sa.Float(), nullable=True),
        sa.Column('pickup_lng', sa.Float(), nullable=True),
        sa.Column('drop_lat', sa.Float(), nullable=True),
        sa.Column('drop_lng', sa.Float(), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('delivery_instructions', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('current_lat', sa.Float(), nullable=True),
        sa.Column('current_lng', sa.Float(), nullable=True),
        sa.Column('last_location_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_delivery_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_pickup_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_delivery_time', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['delivery_person_id'], ['users.id'], ondelete='RESTRICT'),
        sa.CheckConstraint(
            'pickup_lat IS NULL OR (pickup_lat >= -90 AND pickup_lat <= 90)',
            name='ck_orders_pickup_lat_range',
        ),
        sa.CheckConstraint(
            'drop_lat IS NULL OR (drop_lat >= -90 AND drop_lat <= 90)',
            name='ck_orders_drop_lat_range',
        ),
        sa.CheckConstraint(
            'pickup_lng IS NULL OR (pickup_lng >= -180 AND pickup_lng <= 180)',
            name='ck_orders_pickup_lng_range',
        ),
        sa.CheckConstraint(
            'drop_lng IS NULL OR (drop_lng >= -180 AND drop_lng <= 180)',
            name='ck_orders_drop_lng_range',
        ),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_delivery_person_id', 'orders', ['delivery_person_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_customer_created', 'orders', ['customer_id', 'created_at'])
    op.create_index(
        'ix_orders_delivery_person_status',
        'orders',
        ['delivery_person_id', 'status'],
    )
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_by', sa.Uuid(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['updated_by'], ['users.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('order_id', 'sequence', name='uq_order_status_history_sequence'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])


def downgrade() -> None:
    """
    Downgrade database schema by dropping the delivery tables.
    """
    op.drop_index('ix_order_status_history_order_id', table_name='order_status_history')
    op.drop_table('order_status_history')

    for index in (
        'ix_orders_status_created',
        'ix_orders_delivery_person_status',
        'ix_orders_customer_created',
        'ix_orders_status',
        'ix_orders_delivery_person_id',
        'ix_orders_customer_id',
        'ix_orders_order_number',
    ):
        op.drop_index(index, table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_users_role_active_available', table_name='users')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
