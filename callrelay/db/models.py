"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Call(Base):
    """Outbound call record."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    correlation_token = Column(String, index=True, nullable=False)
    destination_number = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(String, default="dialing", nullable=False)  # dialing, completed, failed
    end_reason = Column(String, nullable=True)  # end-call, live-agent-handoff, unresponsive, disconnected
    transcript = Column(Text, nullable=True)
