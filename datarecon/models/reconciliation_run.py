"""
ReconciliationRun Model
One reconciliation attempt for one dataset
"""

from datetime import datetime, timezone
import enum

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datarecon.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunState(str, enum.Enum):
    """In-memory lifecycle of a run while it is being reconciled."""
    CREATED = "created"
    STREAMING = "streaming"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    ERRORED = "errored"


class ReconciliationRun(Base):
    """
    Lifecycle metadata for a dataset reconciliation.

    Persisted as soon as the run starts so incomplete or failed runs remain
    auditable; completed_time stays NULL until the run finishes.
    """
    __tablename__ = "reconciliation_run"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    dataset_id = Column(String(255), nullable=False, index=True)

    # Timestamps
    created_time = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_time = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_time = Column(DateTime(timezone=True), nullable=True)

    records = relationship(
        "ReconciliationRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # Transient, never persisted
    results = None
    state = None

    def __repr__(self):
        return f"<ReconciliationRun(id={self.id}, dataset_id='{self.dataset_id}', completed_time={self.completed_time})>"
