"""
Initial envelope budget schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(18, 4)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
    ]


def _money(name: str) -> sa.Column:
    return sa.Column(name, MONEY, nullable=False, server_default='0')


def upgrade() -> None:
    account_type = sa.Enum(
        'CHECKING', 'SAVINGS', 'CREDIT_CARD', 'CASH', 'INVESTMENT', 'LOAN', 'OTHER',
        name='account_type',
    )
    category_kind = sa.Enum('EXPENSE', 'INCOME', 'INCOME_PLUS_ONE', 'INITIAL', 'TRANSFER', name='category_kind')
    transaction_status = sa.Enum('NONE', 'POINTED', 'RECONCILED', name='transaction_status')
    transaction_type = sa.Enum('NONE', 'INITIAL', 'TRANSFER', name='transaction_type')

    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=320), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
    )
    op.create_table(
        'userprofile',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False, unique=True),
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('base_currency', sa.String(length=3), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'account',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('type', account_type, nullable=False, server_default='CHECKING'),
        sa.Column('institution', sa.String(length=120), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        _money('initial_balance'),
        _money('current_balance'),
        _money('pointed_balance'),
        _money('reconciled_balance'),
        *_timestamps(),
    )
    op.create_index('ix_account_user_id', 'account', ['user_id'])

    op.create_table(
        'category',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('kind', category_kind, nullable=False, server_default='EXPENSE'),
        sa.Column('parent_category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='CASCADE'), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('linked_account_id', sa.Integer(), sa.ForeignKey('account.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'parent_category_id IS NULL OR parent_category_id != id',
            name='ck_category_parent_not_self',
        ),
    )
    op.create_index('ix_category_user_id', 'category', ['user_id'])

    op.create_table(
        'transaction',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('account.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('label', sa.String(length=180), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('status', transaction_status, nullable=False, server_default='NONE'),
        sa.Column('transaction_type', transaction_type, nullable=False, server_default='NONE'),
        sa.Column(
            'linked_transaction_id',
            sa.Integer(),
            sa.ForeignKey('transaction.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index('ix_transaction_account_date', 'transaction', ['account_id', 'date'])
    # At most one INITIAL transaction per account
    op.create_index(
        'uq_transaction_initial_per_account',
        'transaction',
        ['account_id'],
        unique=True,
        sqlite_where=sa.text("transaction_type = 'INITIAL'"),
        postgresql_where=sa.text("transaction_type = 'INITIAL'"),
    )

    op.create_table(
        'budgetmonth',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('month', sa.Date(), nullable=False),
        _money('income'),
        _money('available_carryover'),
        _money('assigned'),
        _money('activity'),
        _money('available'),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'month', name='uq_budget_month_user_month'),
    )
    op.create_table(
        'budgetcategorygroup',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('month_id', sa.Integer(), sa.ForeignKey('budgetmonth.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='CASCADE'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('month_id', 'category_id', name='uq_budget_group_month_category'),
    )
    op.create_table(
        'budgetcategory',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'group_id',
            sa.Integer(),
            sa.ForeignKey('budgetcategorygroup.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='CASCADE'), nullable=False),
        _money('assigned'),
        _money('activity'),
        _money('available'),
        *_timestamps(),
        sa.UniqueConstraint('group_id', 'category_id', name='uq_budget_category_group_category'),
    )


def downgrade() -> None:
    op.drop_table('budgetcategory')
    op.drop_table('budgetcategorygroup')
    op.drop_table('budgetmonth')
    op.drop_index('uq_transaction_initial_per_account', table_name='transaction')
    op.drop_index('ix_transaction_account_date', table_name='transaction')
    op.drop_table('transaction')
    op.drop_index('ix_category_user_id', table_name='category')
    op.drop_table('category')
    op.drop_index('ix_account_user_id', table_name='account')
    op.drop_table('account')
    op.drop_table('userprofile')
    op.drop_table('user')
