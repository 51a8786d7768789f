"""
Credit ledger models
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime

from app.models.base import Base


class CreditAccount(Base):
    """Current credit balance per organization"""
    __tablename__ = "credit_accounts"

    organization_id = Column(String(64), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CreditTransaction(Base):
    """Single credit movement; usage is stored as a negative amount"""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(64), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)
    reference_id = Column(String(64), index=True, nullable=True)  # insight or job id
    created_at = Column(DateTime, default=datetime.utcnow)
