"""
Credit Service

Authorizes and records credit usage for insight generation and scheduled
jobs. Balances live in credit_accounts; every movement is written to
credit_transactions.
"""
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from app.models.base import SessionLocal
from app.models.credit import CreditAccount, CreditTransaction
from app.models.insight import InsightModel, InsightType
from app.services.exceptions import InsufficientCredits, PersistenceFailure
from app.utils.logger import log


# Base cost per insight category
INSIGHT_TYPE_BASE_COST = {
    InsightType.PERFORMANCE: 5,
    InsightType.COMPETITIVE: 8,
    InsightType.OPPORTUNITY: 6,
    InsightType.RISK: 6,
}

# Heavier models cost more; unknown identifiers are charged at the base rate
MODEL_COST_MULTIPLIER = {
    InsightModel.DEEPSEEK_LITE: 1,
    InsightModel.DEEPSEEK_PRO: 2,
    InsightModel.GEMINI_PRO: 2,
    InsightModel.CLAUDE: 3,
}

RAG_SURCHARGE = 2
SCHEDULED_INSIGHT_JOB_CREATION_COST = 10


def calculate_insight_credit_cost(
    insight_type: Union[str, InsightType],
    model: Union[str, InsightModel, None],
    use_rag: bool = False
) -> int:
    """Credits charged for one insight generation"""
    base = INSIGHT_TYPE_BASE_COST[InsightType(insight_type)]
    try:
        multiplier = MODEL_COST_MULTIPLIER.get(InsightModel(model), 1)
    except ValueError:
        multiplier = 1
    return base * multiplier + (RAG_SURCHARGE if use_rag else 0)


class CreditService:
    """Credit gate backed by the credit ledger tables"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    async def get_balance(self, organization_id: str) -> int:
        with self.session_factory() as db:
            account = db.get(CreditAccount, organization_id)
            return account.balance if account else 0

    async def has_available_credits(self, organization_id: str, cost: int) -> bool:
        balance = await self.get_balance(organization_id)
        return balance >= cost

    async def use_credits(
        self,
        organization_id: str,
        cost: int,
        description: str,
        reference_id: Optional[str] = None
    ) -> int:
        """
        Deduct credits and record the usage.

        Returns:
            Remaining balance

        Raises:
            InsufficientCredits: balance no longer covers the cost
        """
        with self.session_factory() as db:
            try:
                account = db.get(CreditAccount, organization_id)
                if account is None or account.balance < cost:
                    raise InsufficientCredits(organization_id, cost)

                account.balance -= cost
                db.add(CreditTransaction(
                    organization_id=organization_id,
                    amount=-cost,
                    description=description,
                    reference_id=reference_id,
                ))
                db.commit()
                remaining = account.balance
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceFailure(f"Failed to record credit usage: {str(e)}") from e

        log.info(f"Used {cost} credits for {organization_id} ({description}); {remaining} remaining")
        return remaining

    async def add_credits(self, organization_id: str, amount: int, description: str = "Credit top-up") -> int:
        with self.session_factory() as db:
            try:
                account = db.get(CreditAccount, organization_id)
                if account is None:
                    account = CreditAccount(organization_id=organization_id, balance=0)
                    db.add(account)
                account.balance += amount
                db.add(CreditTransaction(
                    organization_id=organization_id,
                    amount=amount,
                    description=description,
                ))
                db.commit()
                balance = account.balance
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceFailure(f"Failed to add credits: {str(e)}") from e

        log.info(f"Added {amount} credits for {organization_id}; balance {balance}")
        return balance
