"""Initial ledger schema: tenancy, catalog, stock ledger, sales, returns

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. Business and Store (tenancy)
2. Product and ProductVariant (catalog references)
3. StoreInventory, InventoryLog, StockAlert (stock ledger)
4. Sale and SaleItem
5. ReturnPolicy, Return, Refund, Exchange, StoreCredit (return settlement)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('businesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'code', name='uq_stores_business_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stores_business_id'), ['business_id'], unique=False)

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_products_store_name', ['store_id', 'name'], unique=False)

    op.create_table('product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('price_cents >= 0', name='ck_product_variants_price_nonneg'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'sku', name='uq_product_variants_store_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_variants', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_product_variants_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_product_variants_store_id'), ['store_id'], unique=False)

    # ==========================================================================
    # 3. STOCK LEDGER
    # ==========================================================================
    op.create_table('store_inventory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_store_inventory_quantity_nonneg'),
        sa.CheckConstraint('reserved >= 0', name='ck_store_inventory_reserved_nonneg'),
        sa.CheckConstraint('low_stock_threshold >= 0', name='ck_store_inventory_threshold_nonneg'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'variant_id', name='uq_store_inventory_store_variant'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('store_inventory', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_store_inventory_business_id'), ['business_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_store_inventory_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_store_inventory_variant_id'), ['variant_id'], unique=False)

    op.create_table('inventory_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=200), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('change', sa.Integer(), nullable=False),
        sa.Column('type', _enum('adjustmenttype', 'restock', 'deduct', 'return_restock', 'exchange_adjust'), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('alert_created', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['inventory_id'], ['store_inventory.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_inventory_logs_idempotency_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_logs', schema=None) as batch_op:
        batch_op.create_index('ix_inventory_logs_inventory_created', ['inventory_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_logs_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_logs_variant_id'), ['variant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_logs_type'), ['type'], unique=False)

    op.create_table('stock_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('threshold', sa.Integer(), nullable=False),
        sa.Column('quantity_at_trigger', sa.Integer(), nullable=False),
        sa.Column('status', _enum('alertstatus', 'open', 'acknowledged', 'resolved'), nullable=False),
        sa.Column('triggered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('acknowledged_by', sa.Integer(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['inventory_id'], ['store_inventory.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_alerts', schema=None) as batch_op:
        batch_op.create_index('ix_stock_alerts_inventory_status', ['inventory_id', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_alerts_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_alerts_status'), ['status'], unique=False)

    # ==========================================================================
    # 4. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('sale_code', sa.String(length=64), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=False),
        sa.Column('request_fingerprint', sa.String(length=64), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('total_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', _enum('paymentmethod', 'cash', 'card', 'transfer', 'store_credit'), nullable=False),
        sa.Column('payment_status', _enum('paymentstatus', 'paid', 'pending'), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('receipt_url', sa.String(length=512), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_sales_idempotency_key'),
        sa.UniqueConstraint('sale_code', name='uq_sales_sale_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_store_created', ['store_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_business_id'), ['business_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_payment_status'), ['payment_status'], unique=False)

    op.create_table('sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('returned_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', _enum('saleitemstatus', 'sold', 'partially_returned', 'returned'), nullable=False),
        sa.Column('inventory_log_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_sale_items_quantity_pos'),
        sa.CheckConstraint('returned_quantity >= 0 AND returned_quantity <= quantity', name='ck_sale_items_returned_range'),
        sa.ForeignKeyConstraint(['inventory_log_id'], ['inventory_logs.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_no', name='uq_sale_items_sale_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_items_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_items_store_id'), ['store_id'], unique=False)

    # ==========================================================================
    # 5. RETURNS
    # ==========================================================================
    op.create_table('return_policies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('days_allowed', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('allow_refund', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('allow_exchange', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('allow_store_credit', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('restocking_fee_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('days_allowed >= 0', name='ck_return_policies_days_nonneg'),
        sa.CheckConstraint('restocking_fee_bps >= 0 AND restocking_fee_bps <= 10000', name='ck_return_policies_fee_range'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', name='uq_return_policies_store'),
        sqlite_autoincrement=True
    )

    op.create_table('returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('sale_item_id', sa.Integer(), nullable=False),
        sa.Column('return_code', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('resolution', _enum('returnresolution', 'refund', 'exchange', 'store_credit'), nullable=False),
        sa.Column('is_defective', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('status', _enum('returnstatus', 'pending', 'approved', 'rejected', 'refunded', 'exchanged', 'credited'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=True),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('inspection_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity > 0', name='ck_returns_quantity_pos'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['sale_item_id'], ['sale_items.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_code', name='uq_returns_return_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('returns', schema=None) as batch_op:
        batch_op.create_index('ix_returns_store_status_created', ['store_id', 'status', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_sale_item_id'), ['sale_item_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_status'), ['status'], unique=False)

    op.create_table('refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('restocking_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('status', _enum('refundstatus', 'pending', 'initiated', 'completed', 'failed'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('refunds', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_refunds_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_status'), ['status'], unique=False)

    op.create_table('exchanges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('new_variant_id', sa.Integer(), nullable=False),
        sa.Column('price_difference_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', _enum('exchangestatus', 'pending', 'completed', 'cancelled'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['new_variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('exchanges', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_exchanges_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_exchanges_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_exchanges_status'), ['status'], unique=False)

    op.create_table('store_credits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('used_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', _enum('storecreditstatus', 'pending', 'active', 'partially_used', 'redeemed', 'expired'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('used_amount_cents >= 0 AND used_amount_cents <= amount_cents', name='ck_store_credits_used_range'),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('store_credits', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_store_credits_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_store_credits_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_store_credits_status'), ['status'], unique=False)


def downgrade():
    op.drop_table('store_credits')
    op.drop_table('exchanges')
    op.drop_table('refunds')
    op.drop_table('returns')
    op.drop_table('return_policies')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('stock_alerts')
    op.drop_table('inventory_logs')
    op.drop_table('store_inventory')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('stores')
    op.drop_table('businesses')
