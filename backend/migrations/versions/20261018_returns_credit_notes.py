"""Returns and credit notes

Revision ID: 20261018_returns
Revises: 20261018_fractional_qty
Create Date: 2026-10-18

This migration creates:
1. sales_returns (unique return number and terminal transaction id)
2. sales_return_lines
3. credit_notes (unique number and terminal transaction id, applied <= amount)
4. credit_note_applications
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_returns'
down_revision = '20261018_fractional_qty'
branch_labels = None
depends_on = None


def _now():
    return sa.text('(CURRENT_TIMESTAMP)')


def upgrade():
    # ==========================================================================
    # 1. RETURNS
    # ==========================================================================
    op.create_table('sales_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_number', sa.String(length=32), nullable=False),
        sa.Column('pos_terminal_id', sa.String(length=50), nullable=False),
        sa.Column('pos_transaction_id', sa.String(length=100), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('return_date', sa.Date(), nullable=False),
        sa.Column('return_reason', sa.String(length=255), nullable=False),
        sa.Column('refund_method', sa.String(length=32), nullable=False),
        sa.Column('refund_cents', sa.Integer(), nullable=False),
        sa.Column('restock_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bank_account_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['customer_invoices.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['bank_account_id'], ['bank_accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_number', name='uq_sales_returns_number'),
        sa.UniqueConstraint('pos_transaction_id', name='uq_sales_returns_transaction'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales_returns', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_returns_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_returns_customer_id'), ['customer_id'], unique=False)

    op.create_table('sales_return_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=50), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('condition', sa.String(length=16), nullable=False, server_default='good'),
        sa.Column('disposition', sa.String(length=16), nullable=False),
        sa.ForeignKeyConstraint(['return_id'], ['sales_returns.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_id', 'line_number', name='uq_sales_return_lines_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales_return_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_return_lines_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_return_lines_product_id'), ['product_id'], unique=False)

    # ==========================================================================
    # 2. CREDIT NOTES
    # ==========================================================================
    op.create_table('credit_notes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credit_note_number', sa.String(length=32), nullable=False),
        sa.Column('pos_terminal_id', sa.String(length=50), nullable=True),
        sa.Column('pos_transaction_id', sa.String(length=100), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('sales_return_id', sa.Integer(), nullable=True),
        sa.Column('credit_date', sa.Date(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('amount_applied_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.CheckConstraint('amount_applied_cents <= amount_cents', name='ck_credit_notes_applied_le_amount'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['customer_invoices.id'], ),
        sa.ForeignKeyConstraint(['sales_return_id'], ['sales_returns.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('credit_note_number', name='uq_credit_notes_number'),
        sa.UniqueConstraint('pos_transaction_id', name='uq_credit_notes_transaction'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('credit_notes', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_credit_notes_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_credit_notes_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_credit_notes_sales_return_id'), ['sales_return_id'], unique=False)

    op.create_table('credit_note_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credit_note_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(['credit_note_id'], ['credit_notes.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['customer_invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('credit_note_applications', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_credit_note_applications_credit_note_id'), ['credit_note_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_credit_note_applications_invoice_id'), ['invoice_id'], unique=False)


def downgrade():
    op.drop_table('credit_note_applications')
    op.drop_table('credit_notes')
    op.drop_table('sales_return_lines')
    op.drop_table('sales_returns')
