"""initial schema

Revision ID: m0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete schema:
- categories, products, bundle_offers: catalog with tier pricing
- addresses: customer delivery addresses
- orders, order_lines: order aggregate with line price/cost snapshots
- returns, return_lines: customer returns with pro-rated refunds
- stock_movements: append-only inventory ledger
- expenses: operating expenses
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'm0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # catalog
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('subcategories', sa.JSON(), nullable=True),
        sa.UniqueConstraint('slug'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('sku'),
        sa.CheckConstraint(
            'discount_percent IS NULL OR (discount_percent >= 0 AND discount_percent <= 100)',
            name='ck_products_discount_percent',
        ),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_category_active', 'products', ['category_id', 'is_active'])

    op.create_table(
        'bundle_offers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.UniqueConstraint('product_id', 'quantity', name='uq_bundle_offers_product_qty'),
        sa.CheckConstraint('quantity > 0', name='ck_bundle_offers_quantity_positive'),
        sa.CheckConstraint('price_cents >= 0', name='ck_bundle_offers_price_nonnegative'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_bundle_offers_product_id', 'bundle_offers', ['product_id'])

    # ============================================================================
    # addresses + orders
    # ============================================================================
    op.create_table(
        'addresses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('street', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=128), nullable=False),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column('lat', sa.Float(), nullable=True),
        sa.Column('lng', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('channel', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('fulfillment_status', sa.String(length=32), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('delivery_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('service_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_code', sa.String(length=64), nullable=True),
        sa.Column('discount_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('delivery_address_id', sa.Integer(), sa.ForeignKey('addresses.id'), nullable=True),
        sa.Column('delivery_address_text', sa.String(length=512), nullable=True),
        sa.Column('delivery_notes', sa.String(length=512), nullable=True),
        sa.Column('dispatcher_id', sa.String(length=64), nullable=True),
        sa.Column('rider_id', sa.String(length=64), nullable=True),
        sa.Column('source_sale_uid', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('source_sale_uid'),
        sa.CheckConstraint('total_cents >= 0', name='ck_orders_total_nonnegative'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_orders_channel', 'orders', ['channel'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_dispatcher_id', 'orders', ['dispatcher_id'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_fulfillment_rider', 'orders', ['fulfillment_status', 'rider_id'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('bundle_offers', sa.JSON(), nullable=True),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('missing_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])
    op.create_index('ix_order_lines_product_id', 'order_lines', ['product_id'])

    # ============================================================================
    # returns
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('restocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('channel', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_returns_order_id', 'returns', ['order_id'])

    op.create_table(
        'return_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('return_id', sa.Integer(), sa.ForeignKey('returns.id'), nullable=False),
        sa.Column('order_line_id', sa.Integer(), sa.ForeignKey('order_lines.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('refund_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_return_lines_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_lines_return_id', 'return_lines', ['return_id'])
    op.create_index('ix_return_lines_order_line_id', 'return_lines', ['order_line_id'])

    # ============================================================================
    # stock_movements: append-only inventory ledger
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('return_id', sa.Integer(), sa.ForeignKey('returns.id'), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('quantity_delta <> 0', name='ck_stock_movements_nonzero'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])
    op.create_index('ix_stock_movements_occurred_at', 'stock_movements', ['occurred_at'])
    op.create_index('ix_stock_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'])

    # ============================================================================
    # expenses
    # ============================================================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('amount_cents > 0', name='ck_expenses_amount_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_expenses_category', 'expenses', ['category'])
    op.create_index('ix_expenses_occurred_at', 'expenses', ['occurred_at'])


def downgrade():
    op.drop_table('expenses')
    op.drop_table('stock_movements')
    op.drop_table('return_lines')
    op.drop_table('returns')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('addresses')
    op.drop_table('bundle_offers')
    op.drop_table('products')
    op.drop_table('categories')
