"""
ReconciliationRecord Model
Per-key source/target digest pair within a run
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey
from sqlalchemy.orm import relationship
from datarecon.database import Base


class ReconciliationRecord(Base):
    """
    Outcome for one migration key within a run.

    Either digest may be NULL until (or unless) that side reports the key.
    Exactly one row exists per (reconciliation_run_id, migration_key).
    """
    __tablename__ = "reconciliation_record"

    # Composite Primary Key
    reconciliation_run_id = Column(
        Integer,
        ForeignKey("reconciliation_run.id", ondelete="CASCADE"),
        primary_key=True,
    )
    migration_key = Column(Text, primary_key=True)

    # Row digests (lower-case hex SHA-256)
    source_data = Column(String(64), nullable=True)
    target_data = Column(String(64), nullable=True)

    run = relationship("ReconciliationRun", back_populates="records")

    def __repr__(self):
        return (
            f"<ReconciliationRecord(run_id={self.reconciliation_run_id}, key='{self.migration_key}', "
            f"source={self.source_data}, target={self.target_data})>"
        )
