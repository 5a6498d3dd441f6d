# alembic/versions/001_initial_schema.py

"""Initial schema: portfolios, ledger, fund units, snapshots, execution tracking

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(precision=20, scale=4)
QUANTITY = sa.Numeric(precision=24, scale=6)
RATE = sa.Numeric(precision=20, scale=6)
PERCENT = sa.Numeric(precision=10, scale=4)

cash_flow_type = postgresql.ENUM(
    'DEPOSIT', 'WITHDRAWAL', 'DIVIDEND', 'INTEREST', 'BUY_TRADE', 'SELL_TRADE',
    'FEE', 'TAX', 'DEPOSIT_SETTLEMENT', 'SUBSCRIBE', 'REDEEM',
    name='cashflowtype', create_type=False,
)
fund_transaction_type = postgresql.ENUM('SUBSCRIBE', 'REDEEM', name='fundtransactiontype', create_type=False)
trade_side = postgresql.ENUM('BUY', 'SELL', name='tradeside', create_type=False)
granularity = postgresql.ENUM('DAILY', 'WEEKLY', 'MONTHLY', name='granularity', create_type=False)
execution_status = postgresql.ENUM(
    'STARTED', 'IN_PROGRESS', 'COMPLETED', 'FAILED', 'CANCELLED', name='executionstatus', create_type=False
)
execution_type = postgresql.ENUM('AUTOMATED', 'MANUAL', 'TEST', name='executiontype', create_type=False)

ENUM_TYPES = (
    cash_flow_type, fund_transaction_type, trade_side, granularity, execution_status, execution_type,
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def _performance_columns():
    return [
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('granularity', granularity, nullable=False),
        sa.Column('current_value', MONEY, nullable=False),
        sa.Column('cost_basis', MONEY, nullable=False),
        sa.Column('realized_pl', MONEY, nullable=False),
        sa.Column('unrealized_pl', MONEY, nullable=False),
        sa.Column('total_pl', MONEY, nullable=False),
        sa.Column('return_percentage', RATE, nullable=False),
        sa.Column('daily_return', RATE, nullable=False),
        sa.Column('cumulative_return', RATE, nullable=False),
        sa.Column('previous_value', MONEY, nullable=True),
        sa.Column('previous_cumulative_return', RATE, nullable=True),
        sa.Column('twr_1d', RATE, nullable=True),
        sa.Column('twr_1w', RATE, nullable=True),
        sa.Column('twr_1m', RATE, nullable=True),
        sa.Column('twr_3m', RATE, nullable=True),
        sa.Column('twr_6m', RATE, nullable=True),
        sa.Column('twr_1y', RATE, nullable=True),
        sa.Column('twr_ytd', RATE, nullable=True),
        sa.Column('volatility_1m', RATE, nullable=True),
        sa.Column('volatility_1y', RATE, nullable=True),
        sa.Column('max_drawdown_1m', RATE, nullable=True),
        sa.Column('max_drawdown_1y', RATE, nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    # Portfolios
    op.create_table('portfolios',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_fund', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_outstanding_units', QUANTITY, nullable=False, server_default='0'),
        sa.Column('nav_per_unit', RATE, nullable=False, server_default='0'),
        sa.Column('cash_balance', MONEY, nullable=False, server_default='0'),
        sa.Column('last_nav_date', sa.DateTime(), nullable=True),
        sa.Column('number_of_investors', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )

    # Investor holdings
    op.create_table('investor_holdings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('investor', sa.String(length=200), nullable=False),
        sa.Column('units_held', QUANTITY, nullable=False, server_default='0'),
        sa.Column('avg_cost_per_unit', RATE, nullable=False, server_default='0'),
        sa.Column('total_investment', MONEY, nullable=False, server_default='0'),
        sa.Column('realized_pl', MONEY, nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('portfolio_id', 'investor', name='uq_investor_holding', create_type=False)
    )

    # Fund unit transactions (audit)
    op.create_table('fund_unit_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('holding_id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', fund_transaction_type, nullable=False),
        sa.Column('units_delta', QUANTITY, nullable=False),
        sa.Column('nav_per_unit', RATE, nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('cash_flow_id', sa.Integer(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['holding_id'], ['investor_holdings.id']),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_fund_unit_transactions_holding_id', 'fund_unit_transactions', ['holding_id'])
    op.create_index('ix_fund_unit_transactions_portfolio_id', 'fund_unit_transactions', ['portfolio_id'])

    # Cash flow ledger
    op.create_table('cash_flows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('flow_type', cash_flow_type, nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('flow_date', sa.DateTime(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('fund_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.ForeignKeyConstraint(['fund_transaction_id'], ['fund_unit_transactions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cash_flows_portfolio_date', 'cash_flows', ['portfolio_id', 'flow_date'])
    op.create_index('ix_cash_flows_fund_transaction_id', 'cash_flows', ['fund_transaction_id'])

    # Assets & trades
    op.create_table('assets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('symbol', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('asset_group', sa.String(length=50), nullable=False, server_default='UNGROUPED'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_assets_symbol', 'assets', ['symbol'], unique=True)

    op.create_table('trades',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('asset_id', sa.Integer(), nullable=False),
        sa.Column('side', trade_side, nullable=False),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('price', RATE, nullable=False),
        sa.Column('fee', MONEY, nullable=False, server_default='0'),
        sa.Column('tax', MONEY, nullable=False, server_default='0'),
        sa.Column('trade_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.ForeignKeyConstraint(['asset_id'], ['assets.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_trades_portfolio_date', 'trades', ['portfolio_id', 'trade_date'])

    # Allocation snapshots
    op.create_table('asset_allocation_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('asset_id', sa.Integer(), nullable=False),
        sa.Column('asset_symbol', sa.String(length=30), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('granularity', granularity, nullable=False),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('current_price', RATE, nullable=False),
        sa.Column('current_value', MONEY, nullable=False),
        sa.Column('cost_basis', MONEY, nullable=False),
        sa.Column('avg_cost', RATE, nullable=False),
        sa.Column('realized_pl', MONEY, nullable=False),
        sa.Column('unrealized_pl', MONEY, nullable=False),
        sa.Column('total_pl', MONEY, nullable=False),
        sa.Column('allocation_percentage', PERCENT, nullable=False),
        sa.Column('portfolio_total_value', MONEY, nullable=False),
        sa.Column('return_percentage', RATE, nullable=False),
        sa.Column('daily_return', RATE, nullable=False),
        sa.Column('cumulative_return', RATE, nullable=False),
        sa.Column('previous_value', MONEY, nullable=True),
        sa.Column('previous_cumulative_return', RATE, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(length=100), nullable=False, server_default='system'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.ForeignKeyConstraint(['asset_id'], ['assets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'portfolio_id', 'asset_id', 'snapshot_date', 'granularity',
            name='uq_asset_allocation_snapshot_key'
        )
    )
    op.create_index(
        'ix_asset_allocation_portfolio_date', 'asset_allocation_snapshots', ['portfolio_id', 'snapshot_date']
    )

    # Performance snapshots
    op.create_table('asset_performance_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('asset_id', sa.Integer(), nullable=False),
        sa.Column('asset_symbol', sa.String(length=30), nullable=False),
        *_performance_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.ForeignKeyConstraint(['asset_id'], ['assets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'portfolio_id', 'asset_id', 'snapshot_date', 'granularity',
            name='uq_asset_performance_snapshot_key'
        )
    )

    op.create_table('asset_group_performance_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('asset_group', sa.String(length=50), nullable=False),
        sa.Column('asset_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active_asset_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allocation_percentage', PERCENT, nullable=False, server_default='0'),
        *_performance_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'portfolio_id', 'asset_group', 'snapshot_date', 'granularity',
            name='uq_asset_group_performance_snapshot_key'
        )
    )

    op.create_table('portfolio_performance_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('portfolio_total_value', MONEY, nullable=False),
        sa.Column('cash_balance', MONEY, nullable=False, server_default='0'),
        sa.Column('total_cash_inflows', MONEY, nullable=False, server_default='0'),
        sa.Column('total_cash_outflows', MONEY, nullable=False, server_default='0'),
        sa.Column('net_cash_flow', MONEY, nullable=False, server_default='0'),
        sa.Column('asset_count', sa.Integer(), nullable=False, server_default='0'),
        *_performance_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'portfolio_id', 'snapshot_date', 'granularity',
            name='uq_portfolio_performance_snapshot_key'
        )
    )

    # Execution tracking
    op.create_table('snapshot_execution_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('execution_id', sa.String(length=64), nullable=False),
        sa.Column('parent_execution_id', sa.String(length=64), nullable=True),
        sa.Column('portfolio_id', sa.Integer(), nullable=True),
        sa.Column('portfolio_name', sa.String(length=200), nullable=True),
        sa.Column('status', execution_status, nullable=False),
        sa.Column('execution_type', execution_type, nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=True),
        sa.Column('granularity', granularity, nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('total_snapshots', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_snapshots', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_snapshots', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=False, server_default='system'),
        sa.Column('cron_expression', sa.String(length=100), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_snapshot_execution_records_execution_id', 'snapshot_execution_records', ['execution_id'], unique=True
    )
    op.create_index(
        'ix_snapshot_execution_records_parent_execution_id', 'snapshot_execution_records', ['parent_execution_id']
    )
    op.create_index(
        'ix_snapshot_execution_records_portfolio_id', 'snapshot_execution_records', ['portfolio_id']
    )
    op.create_index(
        'ix_snapshot_execution_status_type_created', 'snapshot_execution_records',
        ['status', 'execution_type', 'created_at']
    )


def downgrade():
    op.drop_table('snapshot_execution_records')
    op.drop_table('portfolio_performance_snapshots')
    op.drop_table('asset_group_performance_snapshots')
    op.drop_table('asset_performance_snapshots')
    op.drop_table('asset_allocation_snapshots')
    op.drop_table('trades')
    op.drop_table('assets')
    op.drop_table('cash_flows')
    op.drop_table('fund_unit_transactions')
    op.drop_table('investor_holdings')
    op.drop_table('portfolios')

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
