"""
Ordered deletion of a portfolio's fund activity.

Cash flows generated by fund transactions go first, then the transactions,
then the holdings. The order is explicit so no backend cascade rules are
needed.
"""

from dataclasses import dataclass
from typing import Dict, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.dml import Delete

from portfolio_engine.infrastructure.db.repositories.cash_flow_repository import CashFlowRepository
from portfolio_engine.infrastructure.db.repositories.fund_repository import FundRepository


@dataclass(frozen=True)
class DeletionStep:
    name: str
    statement: Delete


class FundResetPlan:
    def __init__(self):
        self.steps: List[DeletionStep] = []

    def then_delete(self, name: str, statement: Delete) -> "FundResetPlan":
        self.steps.append(DeletionStep(name, statement))
        return self

    async def execute(self, session: AsyncSession) -> Dict[str, int]:
        """Run the steps in order; returns rows deleted per step"""
        counts: Dict[str, int] = {}
        for step in self.steps:
            result = await session.execute(
                step.statement.execution_options(synchronize_session="fetch")
            )
            counts[step.name] = result.rowcount or 0
        await session.flush()
        return counts

    @classmethod
    async def for_portfolio(cls, session: AsyncSession, portfolio_id: int) -> "FundResetPlan":
        funds = FundRepository(session)
        cash_flows = CashFlowRepository(session)

        holding_ids = await funds.holding_ids(portfolio_id)
        links = await funds.transaction_links(holding_ids)
        transaction_ids = [transaction_id for transaction_id, _ in links]
        linked_flow_ids = [flow_id for _, flow_id in links if flow_id is not None]

        return (
            cls()
            .then_delete("cash_flows", cash_flows.delete_fund_linked_statement(transaction_ids, linked_flow_ids))
            .then_delete("transactions", funds.delete_transactions_statement(transaction_ids))
            .then_delete("holdings", funds.delete_holdings_statement(holding_ids))
        )
