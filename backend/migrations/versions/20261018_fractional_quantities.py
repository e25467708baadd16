"""Fractional quantities

Revision ID: 20261018_fractional_qty
Revises: 20261018_pos_initial
Create Date: 2026-10-18

Quantities become NUMERIC(14, 3) so goods sold by weight or length
(1.5 kg, 2.25 m) can be stocked, sold and returned:
- stock_levels.quantity_on_hand, stock_levels.quantity_reserved
- inventory_batches.quantity_received, inventory_batches.quantity_remaining
- inventory_transactions.quantity
- customer_invoice_lines.quantity
- pos_sale_items.quantity

ROLLBACK WARNING: downgrade truncates fractional quantities to integers.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_fractional_qty'
down_revision = '20261018_pos_initial'
branch_labels = None
depends_on = None


QUANTITY_COLUMNS = (
    ('stock_levels', 'quantity_on_hand'),
    ('stock_levels', 'quantity_reserved'),
    ('inventory_batches', 'quantity_received'),
    ('inventory_batches', 'quantity_remaining'),
    ('inventory_transactions', 'quantity'),
    ('customer_invoice_lines', 'quantity'),
    ('pos_sale_items', 'quantity'),
)


def _alter(from_type, to_type):
    tables = {}
    for table, column in QUANTITY_COLUMNS:
        tables.setdefault(table, []).append(column)

    for table, columns in tables.items():
        with op.batch_alter_table(table, schema=None) as batch_op:
            for column in columns:
                batch_op.alter_column(column, existing_type=from_type, type_=to_type, existing_nullable=False)


def upgrade():
    _alter(sa.Integer(), sa.Numeric(precision=14, scale=3))


def downgrade():
    _alter(sa.Numeric(precision=14, scale=3), sa.Integer())
