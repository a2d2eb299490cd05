"""Add seller payouts and the corporate catalog

Revision ID: h2b3c4d5e6f7
Revises: g1a2b3c4d5e6
Create Date: 2026-10-19 12:00:00.000000

- seller_payouts: one settlement per (seller, period)
- orders.payout_id: the payout an order was settled in, NULL until then
- corporate_catalog_items: products opened to corporate buyers
- b2b_inquiries.catalog_item_id: optional catalog item an inquiry is about
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'h2b3c4d5e6f7'
down_revision = 'g1a2b3c4d5e6'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'seller_payouts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('period_label', sa.String(length=64), nullable=False),
        sa.Column('order_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('commission_percent', sa.Integer(), nullable=False),
        sa.Column('commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_payout_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('transaction_reference', sa.String(length=128), nullable=True),
        sa.Column('created_by_admin_id', sa.Integer(), nullable=True),
        sa.Column('paid_by_admin_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['seller_id'], ['sellers.id'], ),
        sa.ForeignKeyConstraint(['created_by_admin_id'], ['admins.id'], ),
        sa.ForeignKeyConstraint(['paid_by_admin_id'], ['admins.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('seller_id', 'period_start', 'period_end', name='uq_seller_payouts_period'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_seller_payouts_seller_id', 'seller_payouts', ['seller_id'])

    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.add_column(sa.Column('payout_id', sa.Integer(), nullable=True))
        batch_op.create_foreign_key('fk_orders_payout', 'seller_payouts', ['payout_id'], ['id'])
        batch_op.create_index('ix_orders_payout_id', ['payout_id'], unique=False)

    op.create_table(
        'corporate_catalog_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('corporate_price_cents', sa.Integer(), nullable=True),
        sa.Column('min_order_qty', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('max_order_qty', sa.Integer(), nullable=False, server_default='10000'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('added_by_admin_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['added_by_admin_id'], ['admins.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id'),
        sqlite_autoincrement=True
    )

    with op.batch_alter_table('b2b_inquiries', schema=None) as batch_op:
        batch_op.add_column(sa.Column('catalog_item_id', sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            'fk_b2b_inquiries_catalog_item', 'corporate_catalog_items', ['catalog_item_id'], ['id'],
        )


def downgrade():
    with op.batch_alter_table('b2b_inquiries', schema=None) as batch_op:
        batch_op.drop_constraint('fk_b2b_inquiries_catalog_item', type_='foreignkey')
        batch_op.drop_column('catalog_item_id')

    op.drop_table('corporate_catalog_items')

    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index('ix_orders_payout_id')
        batch_op.drop_constraint('fk_orders_payout', type_='foreignkey')
        batch_op.drop_column('payout_id')

    op.drop_index('ix_seller_payouts_seller_id', table_name='seller_payouts')
    op.drop_table('seller_payouts')
