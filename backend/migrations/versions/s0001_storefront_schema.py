"""storefront schema

Revision ID: s0001_storefront
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the storefront schema:
- users, session_tokens, security_events: customer/admin accounts and throttling
- products, product_variants, carts, cart_items: catalog data read by orders and carts
- orders, order_items, order_timeline: order workflow with its append-only audit log
- order_returns: return requests (one open return per order and user)
- abandoned_carts: recovery snapshots (one unrecovered cart per email)
- inventory_alerts: low-stock thresholds (one per product/variant)
- settings: typed store settings, one row per domain
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 's0001_storefront'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    # ============================================================================
    # users / session_tokens / security_events
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        _timestamp('last_login_at', nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        _timestamp('last_used_at'),
        _timestamp('expires_at'),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        _timestamp('revoked_at', nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_user_revoked', 'session_tokens', ['user_id', 'is_revoked'])

    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('identifier', sa.String(length=255), nullable=True),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        _timestamp('occurred_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_type_identifier', 'security_events',
                    ['event_type', 'identifier', 'occurred_at'])
    op.create_index('ix_security_events_type_ip', 'security_events',
                    ['event_type', 'ip_address', 'occurred_at'])

    # ============================================================================
    # catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('base_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('sale_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('color', sa.String(length=32), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])
    op.create_index('ix_product_variants_sku', 'product_variants', ['sku'], unique=True)

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_carts_user_id', 'carts', ['user_id'], unique=True)

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id', 'product_id', 'variant_id', name='uq_cart_items_line'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'])

    # ============================================================================
    # orders / order_items / order_timeline
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('guest_email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('coupon_code', sa.String(length=64), nullable=True),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('billing_address', sa.JSON(), nullable=True),
        sa.Column('razorpay_order_id', sa.String(length=64), nullable=True),
        sa.Column('razorpay_payment_id', sa.String(length=64), nullable=True),
        sa.Column('tracking_number', sa.String(length=128), nullable=True),
        sa.Column('tracking_url', sa.String(length=512), nullable=True),
        _timestamp('shipped_at', nullable=True),
        _timestamp('delivered_at', nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('user_id IS NOT NULL OR guest_email IS NOT NULL', name='ck_orders_owner'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_razorpay_order_id', 'orders', ['razorpay_order_id'])
    op.create_index('ix_orders_razorpay_payment_id', 'orders', ['razorpay_payment_id'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_guest_lookup', 'orders', ['order_number', 'guest_email'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('color', sa.String(length=32), nullable=True),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_timeline',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_timeline_order_id', 'order_timeline', ['order_id'])
    op.create_index('ix_order_timeline_order_created', 'order_timeline', ['order_id', 'created_at'])

    # ============================================================================
    # order_returns
    # ============================================================================
    op.create_table(
        'order_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_number', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('reason_details', sa.Text(), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('refund_method', sa.String(length=32), nullable=True),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        _timestamp('approved_at', nullable=True),
        _timestamp('completed_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_number', name='uq_order_returns_return_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_returns_order_id', 'order_returns', ['order_id'])
    op.create_index('ix_order_returns_user_id', 'order_returns', ['user_id'])
    op.create_index('ix_order_returns_status_created', 'order_returns', ['status', 'created_at'])
    op.create_index(
        'uq_order_returns_open_per_order_user', 'order_returns', ['order_id', 'user_id'],
        unique=True,
        sqlite_where=sa.text("status <> 'completed'"),
        postgresql_where=sa.text("status <> 'completed'"),
    )

    # ============================================================================
    # abandoned_carts
    # ============================================================================
    op.create_table(
        'abandoned_carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('cart_data', sa.JSON(), nullable=False),
        sa.Column('total_value', sa.Numeric(10, 2), nullable=False),
        sa.Column('recovery_token', sa.String(length=64), nullable=False),
        sa.Column('recovery_email_sent', sa.Boolean(), nullable=False),
        _timestamp('recovery_email_sent_at', nullable=True),
        sa.Column('recovered', sa.Boolean(), nullable=False),
        _timestamp('recovered_at', nullable=True),
        _timestamp('expires_at'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('recovery_token', name='uq_abandoned_carts_recovery_token'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_abandoned_carts_user_id', 'abandoned_carts', ['user_id'])
    op.create_index('ix_abandoned_carts_pending', 'abandoned_carts',
                    ['recovered', 'recovery_email_sent', 'created_at'])
    op.create_index('ix_abandoned_carts_expires', 'abandoned_carts', ['expires_at'])
    op.create_index(
        'uq_abandoned_carts_live_email', 'abandoned_carts', ['email'],
        unique=True,
        sqlite_where=sa.text('recovered = 0'),
        postgresql_where=sa.text('recovered = false'),
    )

    # ============================================================================
    # inventory_alerts
    # ============================================================================
    op.create_table(
        'inventory_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('threshold', sa.Integer(), nullable=False),
        sa.Column('alert_sent', sa.Boolean(), nullable=False),
        _timestamp('alert_sent_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'variant_id', name='uq_inventory_alerts_product_variant'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_alerts_product_id', 'inventory_alerts', ['product_id'])
    op.create_index(
        'uq_inventory_alerts_product_only', 'inventory_alerts', ['product_id'],
        unique=True,
        sqlite_where=sa.text('variant_id IS NULL'),
        postgresql_where=sa.text('variant_id IS NULL'),
    )

    # ============================================================================
    # settings
    # ============================================================================
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_settings_key'),
        sqlite_autoincrement=True
    )


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('settings')
    op.drop_table('inventory_alerts')
    op.drop_table('abandoned_carts')
    op.drop_table('order_returns')
    op.drop_table('order_timeline')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('security_events')
    op.drop_table('session_tokens')
    op.drop_table('users')
