"""Create kitchen workflow schema

Revision ID: 001_kitchen_schema
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision = '001_kitchen_schema'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=True)


def upgrade():
    """Create staff, menu, inventory, order, comanda and station tables"""

    # ====================
    # EMPLOYEES
    # ====================
    op.create_table(
        'employees',
        _id(),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('role', sa.String(20), server_default='waiter', nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )

    # ====================
    # INVENTORY
    # ====================
    op.create_table(
        'inventory_items',
        _id(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('unit', sa.String(20), server_default='g', nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index('ix_inventory_items_name', 'inventory_items', ['name'])

    op.create_table(
        'batches',
        _id(),
        sa.Column('inventory_item_id', UUID(as_uuid=True), sa.ForeignKey('inventory_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), server_default='0', nullable=False),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('quantity >= 0', name='ck_batch_quantity_non_negative'),
    )
    op.create_index('ix_batches_inventory_item_id', 'batches', ['inventory_item_id'])
    op.create_index('ix_batch_item_expiry', 'batches', ['inventory_item_id', 'expiry_date'])

    # ====================
    # MENU
    # ====================
    op.create_table(
        'dish_categories',
        _id(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )

    op.create_table(
        'dishes',
        _id(),
        sa.Column('category_id', UUID(as_uuid=True), sa.ForeignKey('dish_categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('price', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )
    op.create_index('ix_dishes_category_id', 'dishes', ['category_id'])

    op.create_table(
        'dish_variants',
        _id(),
        sa.Column('dish_id', UUID(as_uuid=True), sa.ForeignKey('dishes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('price_adjustment', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )
    op.create_index('ix_dish_variants_dish_id', 'dish_variants', ['dish_id'])

    op.create_table(
        'recipes',
        _id(),
        sa.Column('dish_id', UUID(as_uuid=True), sa.ForeignKey('dishes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), sa.ForeignKey('dish_variants.id', ondelete='CASCADE'), nullable=True),
        sa.Column('inventory_item_id', UUID(as_uuid=True), sa.ForeignKey('inventory_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity_per_unit', sa.Numeric(14, 3), nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )
    op.create_index('ix_recipe_dish_variant', 'recipes', ['dish_id', 'variant_id'])
    op.create_index('ix_recipes_inventory_item_id', 'recipes', ['inventory_item_id'])

    # ====================
    # ORDERS
    # ====================
    op.create_table(
        'orders',
        _id(),
        sa.Column('employee_id', UUID(as_uuid=True), sa.ForeignKey('employees.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('table_ref', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('total', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_order_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_order_employee_created', 'orders', ['employee_id', 'created_at'])

    op.create_table(
        'order_items',
        _id(),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dish_id', UUID(as_uuid=True), sa.ForeignKey('dishes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), sa.ForeignKey('dish_variants.id', ondelete='SET NULL'), nullable=True),
        sa.Column('display_name', sa.String(200), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        _created_at(),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'stock_consumptions',
        _id(),
        sa.Column('order_item_id', UUID(as_uuid=True), sa.ForeignKey('order_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('batch_id', UUID(as_uuid=True), sa.ForeignKey('batches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        _created_at(),
    )
    op.create_index('ix_stock_consumptions_order_item_id', 'stock_consumptions', ['order_item_id'])
    op.create_index('ix_stock_consumptions_batch_id', 'stock_consumptions', ['batch_id'])

    # ====================
    # COMANDAS (KITCHEN TICKETS)
    # ====================
    op.create_table(
        'comandas',
        _id(),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('table_ref', sa.String(50), nullable=False),
        sa.Column('employee_id', UUID(as_uuid=True), nullable=False),
        sa.Column('employee_name', sa.String(150), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('item_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        _created_at(),
        _updated_at(),
        sa.Column('served_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('order_id', name='uq_comanda_order'),
    )
    op.create_index('ix_comandas_employee_id', 'comandas', ['employee_id'])
    op.create_index('ix_comanda_status_created', 'comandas', ['status', 'created_at'])

    op.create_table(
        'comanda_items',
        _id(),
        sa.Column('comanda_id', UUID(as_uuid=True), sa.ForeignKey('comandas.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_item_id', UUID(as_uuid=True), sa.ForeignKey('order_items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('dish_id', UUID(as_uuid=True), nullable=False),
        sa.Column('dish_name', sa.String(200), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('kitchen_notes', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('prepared_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('served_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index('ix_comanda_items_comanda_id', 'comanda_items', ['comanda_id'])
    op.create_index('ix_comanda_items_order_item_id', 'comanda_items', ['order_item_id'])
    op.create_index('ix_comanda_items_dish_id', 'comanda_items', ['dish_id'])

    # ====================
    # KITCHEN SCREENS
    # ====================
    op.create_table(
        'kitchen_screens',
        _id(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        'screen_dish_assignments',
        _id(),
        sa.Column('screen_id', UUID(as_uuid=True), sa.ForeignKey('kitchen_screens.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dish_id', UUID(as_uuid=True), sa.ForeignKey('dishes.id', ondelete='CASCADE'), nullable=False),
        _created_at(),
        sa.UniqueConstraint('screen_id', 'dish_id', name='uq_screen_dish'),
    )
    op.create_index('ix_screen_dish_assignments_screen_id', 'screen_dish_assignments', ['screen_id'])
    op.create_index('ix_screen_dish_assignments_dish_id', 'screen_dish_assignments', ['dish_id'])


def downgrade():
    """Drop all kitchen workflow tables"""
    op.drop_table('screen_dish_assignments')
    op.drop_table('kitchen_screens')
    op.drop_table('comanda_items')
    op.drop_table('comandas')
    op.drop_table('stock_consumptions')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('recipes')
    op.drop_table('dish_variants')
    op.drop_table('dishes')
    op.drop_table('dish_categories')
    op.drop_table('batches')
    op.drop_table('inventory_items')
    op.drop_table('employees')
