"""SQLAlchemy database models for stored workflows."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    status = Column(String, nullable=False, default="draft")
    user_id = Column(String, index=True)
    last_edited_by = Column(String)
    last_edited_on = Column(DateTime(timezone=True))
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    created_on = Column(DateTime(timezone=True), default=_utcnow)

    executions = relationship(
        "ExecutionModel",
        back_populates="workflow",
        order_by="ExecutionModel.sequence",
        cascade="all, delete-orphan"
    )


class ExecutionModel(Base):
    """Database model for sealed executions, appended in run completion order."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)  # success, failed
    logs = Column(JSON, nullable=False, default=list)

    workflow = relationship("WorkflowModel", back_populates="executions")
