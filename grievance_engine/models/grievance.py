from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from grievance_engine.database import Base
from grievance_engine.timeutil import utcnow

from .enums import GrievanceStatus


class Grievance(Base):
    """
    One student complaint.

    ``status`` is a denormalized read-cache of the latest tracking entry's
    ``to_status``. It is written in the same transaction as the ledger
    append; readers that need the truth project it from the ledger.
    """
    __tablename__ = "grievances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_code = Column(String(50), nullable=False, unique=True, index=True)

    submitter_id = Column(String(50), nullable=False, index=True)
    campus_id = Column(Integer, nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)
    subject = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    has_attachments = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default=GrievanceStatus.SUBMITTED.value, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    tracking_entries = relationship(
        "TrackingEntry",
        back_populates="grievance",
        order_by="TrackingEntry.sequence_number",
    )
    attachments = relationship("Attachment", back_populates="grievance")

    def __repr__(self):
        return f"<Grievance {self.ticket_code} status={self.status}>"
