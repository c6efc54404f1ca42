"""Settlement schema: catalog, orders, delivery runs, rider variances, cashier shifts

Revision ID: 20261019_settlement
Revises:
Create Date: 2026-10-19

This migration creates:
1. Catalog: products (two stock pools), customers, customer item prices, pricing rules
2. Orders with frozen lines, immutable payments and the receipt counter
3. Delivery runs, run receipts (rider cash truth) and their lines
4. Rider run variances, rider charges and charge payments
5. Cashier shifts, drawer transactions, A/R payments, shift variances and charges
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_settlement'
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text('(CURRENT_TIMESTAMP)')


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('brand_id', sa.Integer(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('retail_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('pack_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('allow_pack_sale', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('stock', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('retail_stock', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('retail_stock >= 0', name='ck_products_retail_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_category_id'), ['category_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_brand_id'), ['brand_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_is_active'), ['is_active'], unique=False)

    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=128), nullable=False),
        sa.Column('last_name', sa.String(length=128), nullable=True),
        sa.Column('alias', sa.String(length=128), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('customer_item_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_kind', sa.String(length=16), nullable=False),
        sa.Column('mode', sa.String(length=32), nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_item_prices', schema=None) as batch_op:
        batch_op.create_index('ix_customer_item_prices_key', ['customer_id', 'product_id', 'unit_kind'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_item_prices_created_at'), ['created_at'], unique=False)

    op.create_table('pricing_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('scope', sa.String(length=16), nullable=False, server_default='ITEM'),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('stackable', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('percent', sa.Numeric(6, 2), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('override_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('buy_qty', sa.Integer(), nullable=True),
        sa.Column('get_qty', sa.Integer(), nullable=True),
        sa.Column('get_product_id', sa.Integer(), nullable=True),
        sa.Column('get_unit_kind', sa.String(length=16), nullable=True),
        sa.Column('get_percent', sa.Numeric(6, 2), nullable=True),
        sa.Column('max_applications', sa.Integer(), nullable=True),
        sa.Column('once_per_order', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('selector', sa.JSON(), nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('days_of_week', sa.JSON(), nullable=True),
        sa.Column('min_subtotal', sa.Numeric(12, 2), nullable=True),
        sa.Column('customer_ids', sa.JSON(), nullable=True),
        sa.Column('any_tags', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['get_product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('pricing_rules', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pricing_rules_enabled'), ['enabled'], unique=False)

    # ==========================================================================
    # 2. CASHIER SHIFTS (payments point here)
    # ==========================================================================
    op.create_table('cashier_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=True),
        sa.Column('opened_by_manager_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING_ACCEPT'),
        sa.Column('opening_float', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('opening_counted', sa.Numeric(12, 2), nullable=True),
        sa.Column('opening_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('opening_verified_by_id', sa.Integer(), nullable=True),
        sa.Column('opening_dispute_note', sa.Text(), nullable=True),
        sa.Column('closing_total', sa.Numeric(12, 2), nullable=True),
        sa.Column('closing_denoms', sa.JSON(), nullable=True),
        sa.Column('cashier_submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('final_closing_total', sa.Numeric(12, 2), nullable=True),
        sa.Column('final_closed_by_id', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cashier_shifts', schema=None) as batch_op:
        batch_op.create_index('ix_cashier_shifts_cashier_status', ['cashier_id', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_cashier_shifts_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_cashier_shifts_opened_at'), ['opened_at'], unique=False)

    # ==========================================================================
    # 3. DELIVERY RUNS
    # ==========================================================================
    op.create_table('delivery_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_code', sa.String(length=32), nullable=True),
        sa.Column('rider_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DISPATCHED'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('delivery_runs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_delivery_runs_rider_id'), ['rider_id'], unique=False)

    # ==========================================================================
    # 4. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_code', sa.String(length=32), nullable=True),
        sa.Column('channel', sa.String(length=16), nullable=False, server_default='COUNTER'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=True),
        sa.Column('total_before_discount', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_on_credit', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('locked_by', sa.String(length=64), nullable=True),
        sa.Column('lock_note', sa.String(length=255), nullable=True),
        sa.Column('release_with_balance', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('release_approved_by', sa.String(length=64), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_deducted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receipt_no', sa.String(length=32), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rider_id', sa.Integer(), nullable=True),
        sa.Column('delivery_run_id', sa.Integer(), nullable=True),
        sa.Column('origin_run_receipt_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['delivery_run_id'], ['delivery_runs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_code'),
        sa.UniqueConstraint('receipt_no'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_status_locked', ['status', 'locked_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_rider_id'), ['rider_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_delivery_run_id'), ['delivery_run_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_origin_run_receipt_id'), ['origin_run_receipt_id'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit_kind', sa.String(length=16), nullable=True),
        sa.Column('qty', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=True),
        sa.Column('base_unit_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_free_item', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('allowed_unit_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('price_policy', sa.String(length=16), nullable=True),
        sa.Column('discount_approved_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_items_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_items_product_id'), ['product_id'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('tendered', sa.Numeric(12, 2), nullable=True),
        sa.Column('change', sa.Numeric(12, 2), nullable=True),
        sa.Column('ref_no', sa.String(length=64), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_ref_no'), ['ref_no'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_shift_id'), ['shift_id'], unique=False)
    # One rider-shortage bridge per run receipt
    op.create_index(
        'uq_payments_shortage_ref', 'payments', ['ref_no'], unique=True,
        sqlite_where=sa.text("ref_no LIKE 'RIDER-SHORTAGE:%'"),
        postgresql_where=sa.text("ref_no LIKE 'RIDER-SHORTAGE:%'"),
    )

    op.create_table('receipt_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('last_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('pack_delta', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('retail_delta', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_order_id'), ['order_id'], unique=False)

    # ==========================================================================
    # 5. RUN RECEIPTS
    # ==========================================================================
    op.create_table('run_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('receipt_key', sa.String(length=64), nullable=False),
        sa.Column('parent_order_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cash_collected', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['run_id'], ['delivery_runs.id'], ),
        sa.ForeignKeyConstraint(['parent_order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'receipt_key', name='uq_run_receipts_run_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('run_receipts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_run_receipts_run_id'), ['run_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_run_receipts_parent_order_id'), ['parent_order_id'], unique=False)

    op.create_table('run_receipt_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('qty', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=True),
        sa.Column('base_unit_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.ForeignKeyConstraint(['receipt_id'], ['run_receipts.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('run_receipt_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_run_receipt_lines_receipt_id'), ['receipt_id'], unique=False)

    # ==========================================================================
    # 6. RIDER VARIANCES AND CHARGES
    # ==========================================================================
    op.create_table('rider_run_variances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('rider_id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('expected', sa.Numeric(12, 2), nullable=False),
        sa.Column('actual', sa.Numeric(12, 2), nullable=False),
        sa.Column('variance', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='OPEN'),
        sa.Column('resolution', sa.String(length=32), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('manager_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manager_approved_by_id', sa.Integer(), nullable=True),
        sa.Column('rider_accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rider_accepted_by_id', sa.Integer(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['run_id'], ['delivery_runs.id'], ),
        sa.ForeignKeyConstraint(['receipt_id'], ['run_receipts.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_id', name='uq_rider_run_variances_receipt'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rider_run_variances', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rider_run_variances_run_id'), ['run_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rider_run_variances_rider_id'), ['rider_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rider_run_variances_status'), ['status'], unique=False)

    op.create_table('rider_charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variance_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('rider_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='OPEN'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['variance_id'], ['rider_run_variances.id'], ),
        sa.ForeignKeyConstraint(['run_id'], ['delivery_runs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variance_id', name='uq_rider_charges_variance'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rider_charges', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rider_charges_rider_id'), ['rider_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rider_charges_status'), ['status'], unique=False)

    op.create_table('rider_charge_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('charge_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('ref_no', sa.String(length=64), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['charge_id'], ['rider_charges.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rider_charge_payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rider_charge_payments_charge_id'), ['charge_id'], unique=False)

    # ==========================================================================
    # 7. DRAWER ROWS AND SHIFT VARIANCES
    # ==========================================================================
    op.create_table('cash_drawer_txns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_drawer_txns', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_drawer_txns_shift_id'), ['shift_id'], unique=False)

    op.create_table('customer_ar_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_ar_payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customer_ar_payments_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_ar_payments_shift_id'), ['shift_id'], unique=False)

    op.create_table('cashier_shift_variances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('expected', sa.Numeric(12, 2), nullable=False),
        sa.Column('counted', sa.Numeric(12, 2), nullable=False),
        sa.Column('variance', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='OPEN'),
        sa.Column('resolution', sa.String(length=32), nullable=True),
        sa.Column('paper_ref_no', sa.String(length=64), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('manager_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manager_approved_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shift_id', name='uq_cashier_shift_variances_shift'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cashier_shift_variances', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cashier_shift_variances_cashier_id'), ['cashier_id'], unique=False)

    op.create_table('cashier_charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variance_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='OPEN'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['variance_id'], ['cashier_shift_variances.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variance_id', name='uq_cashier_charges_variance'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cashier_charges', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cashier_charges_cashier_id'), ['cashier_id'], unique=False)


def downgrade():
    for table in (
        'cashier_charges',
        'cashier_shift_variances',
        'customer_ar_payments',
        'cash_drawer_txns',
        'rider_charge_payments',
        'rider_charges',
        'rider_run_variances',
        'run_receipt_lines',
        'run_receipts',
        'stock_movements',
        'receipt_counters',
        'payments',
        'order_items',
        'orders',
        'delivery_runs',
        'cashier_shifts',
        'pricing_rules',
        'customer_item_prices',
        'customers',
        'products',
    ):
        op.drop_table(table)
