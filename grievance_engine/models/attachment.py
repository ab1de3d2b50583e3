from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, LargeBinary, String
from sqlalchemy.orm import relationship

from grievance_engine.database import Base
from grievance_engine.timeutil import utcnow


class Attachment(Base):
    """
    Metadata of one uploaded binary object.

    grievance_id IS NULL means unclaimed. Claiming sets it exactly once via
    a conditional UPDATE keyed on that NULL; the orphan sweep deletes with
    the same condition, so the two can never both win.
    """
    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    grievance_id = Column(Integer, ForeignKey("grievances.id"), nullable=True, index=True)

    original_filename = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False)

    # Exactly one of these is set, depending on the storage mode.
    storage_handle = Column(String(255), nullable=True, index=True)
    content = Column(LargeBinary, nullable=True)

    uploaded_by = Column(String(50), nullable=False, index=True)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)
    claimed_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    grievance = relationship("Grievance", back_populates="attachments")

    __table_args__ = (
        Index("ix_attachments_unclaimed_age", "grievance_id", "uploaded_at"),
    )

    @property
    def is_claimed(self) -> bool:
        return self.grievance_id is not None

    def __repr__(self):
        return f"<Attachment {self.id} grievance={self.grievance_id}>"
