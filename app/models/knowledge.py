"""
Knowledge base documents used for retrieval-augmented prompts
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text

from app.models.base import Base


class KnowledgeDocument(Base):
    __tablename__ = "knowledge_documents"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
