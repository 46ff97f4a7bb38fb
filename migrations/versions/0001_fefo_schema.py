"""product, batch and sale tables for FEFO stock

Revision ID: 0001_fefo_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_fefo_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'product',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('internal_code', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('is_perishable', sa.Boolean(), nullable=False),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('generic_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('threshold_value', sa.Integer(), nullable=False),
        sa.Column('last_restocked', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('total_quantity >= 0', name='check_product_total_quantity_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode'),
        sa.UniqueConstraint('internal_code'),
    )
    op.create_index('ix_product_category_name', 'product', ['category', 'name'])

    op.create_table(
        'batch',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('manufactured_date', sa.Date(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='check_batch_quantity_non_negative'),
        sa.CheckConstraint('original_quantity >= 0', name='check_batch_original_quantity_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['product.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'batch_number', name='uq_batch_product_batch_number'),
    )
    op.create_index('ix_batch_product_id', 'batch', ['product_id'])
    op.create_index('ix_batch_product_expiry', 'batch', ['product_id', 'expiry_date'])

    op.create_table(
        'sale_record',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_code', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False),
        sa.Column('sale_date', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_code'),
    )
    op.create_index('ix_sale_record_sale_date', 'sale_record', ['sale_date'])

    op.create_table(
        'sale_line',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=128), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('requested_quantity', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('requested_quantity > 0', name='check_sale_line_quantity_positive'),
        sa.ForeignKeyConstraint(['product_id'], ['product.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_record.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sale_line_sale_id', 'sale_line', ['sale_id'])
    op.create_index('ix_sale_line_product_id', 'sale_line', ['product_id'])

    op.create_table(
        'sale_line_batch',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_line_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='check_sale_line_batch_quantity_positive'),
        sa.ForeignKeyConstraint(['batch_id'], ['batch.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_line.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sale_line_batch_sale_line_id', 'sale_line_batch', ['sale_line_id'])
    op.create_index('ix_sale_line_batch_batch_id', 'sale_line_batch', ['batch_id'])


def downgrade():
    op.drop_index('ix_sale_line_batch_batch_id', table_name='sale_line_batch')
    op.drop_index('ix_sale_line_batch_sale_line_id', table_name='sale_line_batch')
    op.drop_table('sale_line_batch')
    op.drop_index('ix_sale_line_product_id', table_name='sale_line')
    op.drop_index('ix_sale_line_sale_id', table_name='sale_line')
    op.drop_table('sale_line')
    op.drop_index('ix_sale_record_sale_date', table_name='sale_record')
    op.drop_table('sale_record')
    op.drop_index('ix_batch_product_expiry', table_name='batch')
    op.drop_index('ix_batch_product_id', table_name='batch')
    op.drop_table('batch')
    op.drop_index('ix_product_category_name', table_name='product')
    op.drop_table('product')
