"""Database models for the bounce record store."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class BounceRecordRow(Base):
    __tablename__ = "bounce_records"
    __table_args__ = (UniqueConstraint("email_key", "timestamp", "feedback_id", name="uq_bounce_records_identity"),)

    id = Column(Integer, primary_key=True)
    email = Column(String(320), nullable=False)
    email_key = Column(String(320), nullable=False, index=True)
    timestamp = Column(String(64), nullable=False)
    # Parsed form of ``timestamp`` as naive UTC; NULL when unparseable.
    occurred_at = Column(DateTime(), nullable=True, index=True)
    source_email = Column(String(320), nullable=False)
    source_ip = Column(String(64), nullable=False)
    bounce_type = Column(String(255), nullable=False)
    bounce_sub_type = Column(String(255), nullable=False)
    diagnostic_code = Column(Text, nullable=False)
    reporting_agent = Column(String(255), nullable=False)
    feedback_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
