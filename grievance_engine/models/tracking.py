"""
tracking.py - Append-only tracking ledger storage.

GUARANTEES:
1. Entries are immutable once written (ORM hooks + database trigger)
2. (grievance_id, sequence_number) is unique: two racing appends on the
   same ledger head cannot both commit
3. sequence_number is the ordering authority; created_at is strictly
   increasing along it
"""

from sqlalchemy import (
    DDL,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from grievance_engine.database import Base
from grievance_engine.timeutil import utcnow


class LedgerMutationError(RuntimeError):
    """Raised when code tries to edit or delete a tracking entry."""


class TrackingEntry(Base):
    __tablename__ = "tracking_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    grievance_id = Column(Integer, ForeignKey("grievances.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)

    from_status = Column(String(20), nullable=True)  # Null for the initial entry
    to_status = Column(String(20), nullable=False, index=True)

    actor_id = Column(String(50), nullable=False, index=True)
    actor_role = Column(String(20), nullable=True)  # Null for SYSTEM
    note = Column(Text, nullable=False, default="")

    redirect_target = Column(String(50), nullable=True)
    is_redirect = Column(Boolean, nullable=False, default=False)
    is_override = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    grievance = relationship("Grievance", back_populates="tracking_entries")

    __table_args__ = (
        UniqueConstraint("grievance_id", "sequence_number", name="uq_tracking_grievance_sequence"),
    )

    def __repr__(self):
        return (
            f"<TrackingEntry g={self.grievance_id} #{self.sequence_number} "
            f"{self.from_status}->{self.to_status}>"
        )


def _reject_mutation(mapper, connection, target):
    raise LedgerMutationError(
        f"Tracking entries are append-only; refusing to modify entry {target.id}"
    )


event.listen(TrackingEntry, "before_update", _reject_mutation)
event.listen(TrackingEntry, "before_delete", _reject_mutation)


# Database-level enforcement for writes that bypass the ORM.
_pg_function = DDL("""
    CREATE OR REPLACE FUNCTION reject_tracking_mutation()
    RETURNS TRIGGER AS $$
    BEGIN
        RAISE EXCEPTION 'Tracking entries are append-only. Operation % is forbidden.', TG_OP;
    END;
    $$ LANGUAGE plpgsql;
""")

_pg_trigger = DDL("""
    CREATE TRIGGER prevent_tracking_mutation
    BEFORE UPDATE OR DELETE ON tracking_entries
    FOR EACH ROW EXECUTE FUNCTION reject_tracking_mutation();
""")

_sqlite_update_trigger = DDL("""
    CREATE TRIGGER IF NOT EXISTS prevent_tracking_update
    BEFORE UPDATE ON tracking_entries
    BEGIN
        SELECT RAISE(ABORT, 'Tracking entries are append-only');
    END;
""")

_sqlite_delete_trigger = DDL("""
    CREATE TRIGGER IF NOT EXISTS prevent_tracking_delete
    BEFORE DELETE ON tracking_entries
    BEGIN
        SELECT RAISE(ABORT, 'Tracking entries are append-only');
    END;
""")

event.listen(TrackingEntry.__table__, "after_create", _pg_function.execute_if(dialect="postgresql"))
event.listen(TrackingEntry.__table__, "after_create", _pg_trigger.execute_if(dialect="postgresql"))
event.listen(TrackingEntry.__table__, "after_create", _sqlite_update_trigger.execute_if(dialect="sqlite"))
event.listen(TrackingEntry.__table__, "after_create", _sqlite_delete_trigger.execute_if(dialect="sqlite"))
