"""Initial production tracking schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('inventory_items',
    sa.Column('id', sa.String(length=40), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=True),
    sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
    sa.Column('unit', sa.String(length=20), nullable=False, server_default='pcs'),
    sa.Column('threshold', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('is_moulded', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('is_finished', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('is_assembled', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('source_batch_code', sa.String(length=50), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_inventory_items_name'), 'inventory_items', ['name'], unique=False)
    op.create_index(op.f('ix_inventory_items_sku'), 'inventory_items', ['sku'], unique=False)

    op.create_table('products',
    sa.Column('id', sa.String(length=40), nullable=False),
    sa.Column('product_code', sa.String(length=50), nullable=True),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=True),
    sa.Column('price', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('gst_rate', sa.Numeric(precision=5, scale=2), nullable=True),
    sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
    sa.Column('threshold', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('unit', sa.String(length=20), nullable=False, server_default='pcs'),
    sa.Column('manufacturing_stages', sa.JSON(), nullable=False),
    sa.Column('moulded_material_id', sa.String(length=40), nullable=True),
    sa.Column('machined_material_id', sa.String(length=40), nullable=True),
    sa.Column('assembled_material_id', sa.String(length=40), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.ForeignKeyConstraint(['moulded_material_id'], ['inventory_items.id'], ),
    sa.ForeignKeyConstraint(['machined_material_id'], ['inventory_items.id'], ),
    sa.ForeignKeyConstraint(['assembled_material_id'], ['inventory_items.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_products_product_code'), 'products', ['product_code'], unique=True)
    op.create_index(op.f('ix_products_name'), 'products', ['name'], unique=False)

    op.create_table('product_bom_rows',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('product_id', sa.String(length=40), nullable=False),
    sa.Column('material_id', sa.String(length=40), nullable=False),
    sa.Column('stage', sa.String(length=20), nullable=False),
    sa.Column('qty_per_piece', sa.Numeric(precision=18, scale=4), nullable=False),
    sa.Column('unit', sa.String(length=20), nullable=True),
    sa.Column('source', sa.String(length=10), nullable=False, server_default='raw'),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_product_bom_rows_id'), 'product_bom_rows', ['id'], unique=False)
    op.create_index(op.f('ix_product_bom_rows_product_id'), 'product_bom_rows', ['product_id'], unique=False)

    op.create_table('final_stock_lots',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('product_id', sa.String(length=40), nullable=False),
    sa.Column('batch_code', sa.String(length=50), nullable=False),
    sa.Column('source_batch_code', sa.String(length=50), nullable=True),
    sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_final_stock_lots_id'), 'final_stock_lots', ['id'], unique=False)
    op.create_index(op.f('ix_final_stock_lots_product_id'), 'final_stock_lots', ['product_id'], unique=False)
    op.create_index(op.f('ix_final_stock_lots_created_at'), 'final_stock_lots', ['created_at'], unique=False)

    op.create_table('batches',
    sa.Column('id', sa.String(length=40), nullable=False),
    sa.Column('batch_code', sa.String(length=50), nullable=False),
    sa.Column('product_id', sa.String(length=40), nullable=False),
    sa.Column('product_name', sa.String(length=255), nullable=False),
    sa.Column('quantity_to_build', sa.Integer(), nullable=False),
    sa.Column('total_material_quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
    sa.Column('selected_processes', sa.JSON(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False, server_default='Planned'),
    sa.Column('on_hold', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('auto_created_from_testing_rejected', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('parent_batch_id', sa.String(length=40), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
    sa.ForeignKeyConstraint(['parent_batch_id'], ['batches.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_batches_batch_code'), 'batches', ['batch_code'], unique=True)
    op.create_index(op.f('ix_batches_product_id'), 'batches', ['product_id'], unique=False)
    op.create_index(op.f('ix_batches_status'), 'batches', ['status'], unique=False)
    op.create_index(op.f('ix_batches_created_at'), 'batches', ['created_at'], unique=False)

    op.create_table('batch_materials',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('batch_id', sa.String(length=40), nullable=False),
    sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('material_id', sa.String(length=40), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=True),
    sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False),
    sa.Column('unit', sa.String(length=20), nullable=True),
    sa.Column('stage', sa.String(length=20), nullable=False),
    sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_batch_materials_id'), 'batch_materials', ['id'], unique=False)
    op.create_index(op.f('ix_batch_materials_batch_id'), 'batch_materials', ['batch_id'], unique=False)

    op.create_table('batch_stage_records',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('batch_id', sa.String(length=40), nullable=False),
    sa.Column('stage', sa.String(length=20), nullable=False),
    sa.Column('accepted', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('rejected', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('actual_consumption', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
    sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('started_at', sa.DateTime(), nullable=True),
    sa.Column('finished_at', sa.DateTime(), nullable=True),
    sa.Column('material_consumptions', sa.JSON(), nullable=True),
    sa.Column('good_material_ids', sa.JSON(), nullable=True),
    sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('batch_id', 'stage', name='uq_batch_stage')
    )
    op.create_index(op.f('ix_batch_stage_records_id'), 'batch_stage_records', ['id'], unique=False)
    op.create_index(op.f('ix_batch_stage_records_batch_id'), 'batch_stage_records', ['batch_id'], unique=False)

    op.create_table('activity_logs',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('record_id', sa.String(length=40), nullable=False),
    sa.Column('record_type', sa.String(length=20), nullable=False),
    sa.Column('action', sa.String(length=40), nullable=False),
    sa.Column('details', sa.Text(), nullable=True),
    sa.Column('user', sa.String(length=100), nullable=False, server_default='System'),
    sa.Column('batch_code', sa.String(length=50), nullable=True),
    sa.Column('stage', sa.String(length=20), nullable=True),
    sa.Column('related_batch_code', sa.String(length=50), nullable=True),
    sa.Column('old_quantity', sa.Numeric(precision=18, scale=4), nullable=True),
    sa.Column('new_quantity', sa.Numeric(precision=18, scale=4), nullable=True),
    sa.Column('quantity_delta', sa.Numeric(precision=18, scale=4), nullable=True),
    sa.Column('timestamp', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_activity_logs_id'), 'activity_logs', ['id'], unique=False)
    op.create_index(op.f('ix_activity_logs_record_id'), 'activity_logs', ['record_id'], unique=False)
    op.create_index(op.f('ix_activity_logs_record_type'), 'activity_logs', ['record_type'], unique=False)
    op.create_index(op.f('ix_activity_logs_action'), 'activity_logs', ['action'], unique=False)
    op.create_index(op.f('ix_activity_logs_batch_code'), 'activity_logs', ['batch_code'], unique=False)
    op.create_index(op.f('ix_activity_logs_timestamp'), 'activity_logs', ['timestamp'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('activity_logs')
    op.drop_table('batch_stage_records')
    op.drop_table('batch_materials')
    op.drop_table('batches')
    op.drop_table('final_stock_lots')
    op.drop_table('product_bom_rows')
    op.drop_table('products')
    op.drop_table('inventory_items')
