"""
SQLAlchemy ORM Models

- HistoryRecord: one completed analysis (database history backend)
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, TIMESTAMP, Column, Index, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryRecord(Base):
    """Append-only history row; the full report is stored as JSON."""
    __tablename__ = "analysis_history"
    __table_args__ = (
        Index("idx_analysis_history_created_at", "created_at"),
    )

    record_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    original_code = Column(Text, nullable=False)
    language = Column(String(32), nullable=False)
    fixed_code = Column(Text, nullable=False)
    explanation = Column(Text, nullable=False, default="")
    report = Column(JSON, nullable=False)
    model_name = Column(String(100), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<HistoryRecord(record_id={self.record_id}, language='{self.language}', model='{self.model_name}')>"
