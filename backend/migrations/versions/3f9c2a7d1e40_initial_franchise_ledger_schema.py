"""initial franchise ledger schema

Revision ID: 3f9c2a7d1e40
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the franchise inventory ledger from scratch:
- franchises: tenants; every scoped row points at one
- products: per-franchise catalog rows carrying the owned stock counter
- product_allocations: stock of a product held by a non-owning franchise
- stock_movements: append-only ledger of every stock change
- sales / sale_items: invoices and their lines with cost and price snapshots
- transfers / transfer_history: inter-franchise moves and their status trail
- import_audit_logs: one row per bulk reconciliation batch
- document_sequences: per-franchise invoice, transfer and SKU counters
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9c2a7d1e40'
down_revision = None
branch_labels = None
depends_on = None


MOVEMENT_KINDS = ('PURCHASE', 'SALE', 'ADJUSTMENT', 'RETURN', 'TRANSFER_IN', 'TRANSFER_OUT')
TRANSFER_STATUSES = ('PENDING', 'APPROVED', 'IN_TRANSIT', 'COMPLETED', 'REJECTED', 'CANCELLED')


def upgrade():
    """
    Create all tables.

    WHY: Stock counters carry CHECK constraints so a negative balance is
    rejected by the database even if a conditional update is bypassed.
    """

    # ============================================================================
    # franchises: tenant boundary
    # ============================================================================
    op.create_table(
        'franchises',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('status', sa.Enum('ACTIVE', 'INACTIVE', 'MAINTENANCE', name='franchise_status'), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('manager_name', sa.String(length=120), nullable=True),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_franchises_code', 'franchises', ['code'], unique=True)

    # ============================================================================
    # document_sequences: per-franchise numbering
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('franchise_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('franchise_id', 'document_type', name='uq_document_sequences_franchise_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_franchise_id', 'document_sequences', ['franchise_id'])

    # ============================================================================
    # import_audit_logs: one row per batch, immutable once finalized
    # ============================================================================
    op.create_table(
        'import_audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.Enum('PRODUCTS', 'SALES', 'STOCK_IN', 'STOCK_OUT', name='import_kind'), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'PARTIAL', 'FAILED',
                                    name='import_status'), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('franchise_id', sa.Integer(), nullable=True),
        sa.Column('imported_by', sa.String(length=64), nullable=True),
        sa.Column('total_rows', sa.Integer(), nullable=False),
        sa.Column('succeeded_rows', sa.Integer(), nullable=False),
        sa.Column('failed_rows', sa.Integer(), nullable=False),
        sa.Column('skipped_rows', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('warnings', sa.JSON(), nullable=False),
        sa.Column('error_count', sa.Integer(), nullable=False),
        sa.Column('warning_count', sa.Integer(), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_import_audit_logs_kind', 'import_audit_logs', ['kind'])
    op.create_index('ix_import_audit_logs_status', 'import_audit_logs', ['status'])
    op.create_index('ix_import_audit_logs_franchise_kind', 'import_audit_logs', ['franchise_id', 'kind'])

    # ============================================================================
    # products: catalog rows with the owning franchise's stock counter
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('franchise_id', sa.Integer(), nullable=False),
        sa.Column('original_franchise_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.Enum('ELECTRONICS', 'CLOTHING', 'BOOKS', 'HOME_KITCHEN', 'SPORTS', 'OTHER',
                                      name='product_category'), nullable=False),
        sa.Column('brand', sa.String(length=120), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('buying_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('selling_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False),
        sa.Column('minimum_stock', sa.Integer(), nullable=False),
        sa.Column('is_global', sa.Boolean(), nullable=False),
        sa.Column('transferable', sa.Boolean(), nullable=False),
        sa.Column('status', sa.Enum('ACTIVE', 'INACTIVE', 'DISCONTINUED', name='product_status'), nullable=False),
        sa.Column('total_sold', sa.Integer(), nullable=False),
        sa.Column('total_revenue', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total_profit', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('last_sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id']),
        sa.ForeignKeyConstraint(['original_franchise_id'], ['franchises.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('franchise_id', 'sku', name='uq_products_franchise_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_franchise_id', 'products', ['franchise_id'])
    op.create_index('ix_products_sku', 'products', ['sku'])
    op.create_index('ix_products_franchise_status', 'products', ['franchise_id', 'status'])

    # ============================================================================
    # product_allocations: stock held by franchises that do not own the product
    # ============================================================================
    op.create_table(
        'product_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('franchise_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_product_allocations_quantity_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'franchise_id', name='uq_product_allocations_product_franchise'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_allocations_product_id', 'product_allocations', ['product_id'])
    op.create_index('ix_product_allocations_franchise_id', 'product_allocations', ['franchise_id'])

    # ============================================================================
    # sales / sale_items
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('franchise_id', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.Enum('CASH', 'CARD', 'UPI', 'BANK_TRANSFER', 'CREDIT',
                                            name='payment_method'), nullable=False),
        sa.Column('sale_type', sa.Enum('ONLINE', 'OFFLINE', name='sale_type'), nullable=False),
        sa.Column('status', sa.Enum('COMPLETED', 'PENDING', 'REFUNDED', 'CANCELLED', name='sale_status'),
                  nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total_discount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total_tax', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('grand_total', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total_profit', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('refunded_amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_restored', sa.Boolean(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('import_log_id', sa.Integer(), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id']),
        sa.ForeignKeyConstraint(['import_log_id'], ['import_audit_logs.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_invoice_number', 'sales', ['invoice_number'], unique=True)
    op.create_index('ix_sales_franchise_id', 'sales', ['franchise_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_import_log_id', 'sales', ['import_log_id'])
    op.create_index('ix_sales_sold_at', 'sales', ['sold_at'])
    op.create_index('ix_sales_franchise_status_sold', 'sales', ['franchise_id', 'status', 'sold_at'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('discount_pct', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('tax_pct', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('line_total', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('profit', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_sale_items_quantity_positive'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'])

    # ============================================================================
    # transfers / transfer_history
    # ============================================================================
    op.create_table(
        'transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_number', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('from_franchise_id', sa.Integer(), nullable=False),
        sa.Column('to_franchise_id', sa.Integer(), nullable=False),
        sa.Column('destination_product_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total_value', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('mode', sa.Enum('SHARED', 'EXCLUSIVE', name='transfer_mode'), nullable=False),
        sa.Column('status', sa.Enum(*TRANSFER_STATUSES, name='transfer_status'), nullable=False),
        sa.Column('is_direct', sa.Boolean(), nullable=False),
        sa.Column('initiated_by', sa.String(length=64), nullable=True),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('shipped_by', sa.String(length=64), nullable=True),
        sa.Column('completed_by', sa.String(length=64), nullable=True),
        sa.Column('rejected_by', sa.String(length=64), nullable=True),
        sa.Column('cancelled_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expected_delivery_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_delivery_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('carrier', sa.String(length=120), nullable=True),
        sa.Column('tracking_number', sa.String(length=120), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_transfers_quantity_positive'),
        sa.CheckConstraint('from_franchise_id <> to_franchise_id', name='ck_transfers_distinct_franchises'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['destination_product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['from_franchise_id'], ['franchises.id']),
        sa.ForeignKeyConstraint(['to_franchise_id'], ['franchises.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transfers_transfer_number', 'transfers', ['transfer_number'], unique=True)
    op.create_index('ix_transfers_product_id', 'transfers', ['product_id'])
    op.create_index('ix_transfers_created_at', 'transfers', ['created_at'])
    op.create_index('ix_transfers_from_status', 'transfers', ['from_franchise_id', 'status'])
    op.create_index('ix_transfers_to_status', 'transfers', ['to_franchise_id', 'status'])

    op.create_table(
        'transfer_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum(*TRANSFER_STATUSES, name='transfer_status'),
                  nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('actor_user_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transfer_history_transfer_id', 'transfer_history', ['transfer_id'])

    # ============================================================================
    # stock_movements: append-only ledger
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('franchise_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.Enum(*MOVEMENT_KINDS, name='movement_kind'), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('sale_item_id', sa.Integer(), nullable=True),
        sa.Column('transfer_id', sa.Integer(), nullable=True),
        sa.Column('import_log_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['sale_item_id'], ['sale_items.id']),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.ForeignKeyConstraint(['import_log_id'], ['import_audit_logs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_item_id', 'kind', name='uq_stock_movements_sale_item_kind'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_kind', 'stock_movements', ['kind'])
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_transfer_id', 'stock_movements', ['transfer_id'])
    op.create_index('ix_stock_movements_import_log_id', 'stock_movements', ['import_log_id'])
    op.create_index('ix_stock_movements_franchise_occurred', 'stock_movements', ['franchise_id', 'occurred_at'])
    op.create_index('ix_stock_movements_product_franchise', 'stock_movements', ['product_id', 'franchise_id'])


def downgrade():
    """Drop all tables in reverse dependency order."""
    op.drop_table('stock_movements')
    op.drop_table('transfer_history')
    op.drop_table('transfers')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('product_allocations')
    op.drop_table('products')
    op.drop_table('import_audit_logs')
    op.drop_table('document_sequences')
    op.drop_table('franchises')
