"""
ledger.py - Tracking Ledger

Append-only log of status transitions. A grievance's status is the
to_status of its latest entry; the grievances.status column is only a
cache refreshed in the same transaction as every append.

INVARIANTS:
1. append() rejects a from_status that differs from the current head, and
   a head sequence number other than the one the caller decided on
2. sequence numbers are contiguous per grievance, starting at 1
3. created_at is strictly increasing along the sequence
4. the first entry has from_status = None
5. history() never mutates
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .catalog import home_department_for
from .database import SessionLocal, unit_of_work
from .errors import grievance_not_found, stale_ledger
from .models import Department, Grievance, GrievanceStatus, TrackingEntry
from .timeutil import TICK, utcnow

logger = logging.getLogger(__name__)


def _status_or_none(value: Optional[str]) -> Optional[GrievanceStatus]:
    return GrievanceStatus(value) if value is not None else None


@dataclass(frozen=True)
class LedgerEntry:
    """Detached, immutable copy of one tracking_entries row."""
    id: int
    grievance_id: int
    sequence_number: int
    from_status: Optional[GrievanceStatus]
    to_status: GrievanceStatus
    actor_id: str
    actor_role: Optional[str]
    note: str
    redirect_target: Optional[str]
    is_redirect: bool
    is_override: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row: TrackingEntry) -> "LedgerEntry":
        return cls(
            id=row.id,
            grievance_id=row.grievance_id,
            sequence_number=row.sequence_number,
            from_status=_status_or_none(row.from_status),
            to_status=GrievanceStatus(row.to_status),
            actor_id=row.actor_id,
            actor_role=row.actor_role,
            note=row.note or "",
            redirect_target=row.redirect_target,
            is_redirect=bool(row.is_redirect),
            is_override=bool(row.is_override),
            created_at=row.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "note": self.note,
            "redirect_target": self.redirect_target,
            "is_redirect": self.is_redirect,
            "is_override": self.is_override,
            "created_at": self.created_at.isoformat(),
        }


def queue_from_history(entries: Iterable[LedgerEntry], category: str) -> Department:
    """Target of the latest redirect, else the category's home department."""
    queue = home_department_for(category)
    for entry in entries:
        if entry.is_redirect and entry.redirect_target:
            queue = Department(entry.redirect_target)
    return queue


class TrackingLedger:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def append(
        self,
        grievance_id: int,
        from_status: Optional[GrievanceStatus],
        to_status: GrievanceStatus,
        actor_id: str,
        note: str,
        redirect_target: Optional[Department] = None,
        actor_role: Optional[str] = None,
        is_override: bool = False,
        expected_sequence: Optional[int] = None,
        db: Optional[Session] = None,
    ) -> LedgerEntry:
        """
        Append one transition after checking the ledger head.

        Raises:
            NotFoundError: grievance does not exist
            ConflictError: head is not ``from_status``, head is not entry
                ``expected_sequence``, or a concurrent append took the next
                sequence number first
        """
        with unit_of_work(self.session_factory, db) as session:
            grievance = (
                session.query(Grievance)
                .filter(Grievance.id == grievance_id)
                .with_for_update()
                .first()
            )
            if grievance is None:
                raise grievance_not_found(grievance_id)

            head = self._head_row(session, grievance_id)
            head_status = _status_or_none(head.to_status) if head else None
            if head_status != from_status:
                raise stale_ledger(
                    grievance_id,
                    from_status.value if from_status else None,
                    head_status.value if head_status else None,
                )

            head_sequence = head.sequence_number if head else 0
            if expected_sequence is not None and head_sequence != expected_sequence:
                raise stale_ledger(
                    grievance_id,
                    f"{from_status.value if from_status else None} at seq {expected_sequence}",
                    f"{head_status.value if head_status else None} at seq {head_sequence}",
                )

            now = utcnow()
            if head is not None and now <= head.created_at:
                now = head.created_at + TICK

            target = Department(redirect_target).value if redirect_target else None
            row = TrackingEntry(
                grievance_id=grievance_id,
                sequence_number=(head.sequence_number + 1) if head else 1,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                actor_id=actor_id,
                actor_role=actor_role,
                note=note or "",
                redirect_target=target,
                is_redirect=to_status == GrievanceStatus.REDIRECTED,
                is_override=is_override,
                created_at=now,
            )
            session.add(row)

            # Cache refresh rides on the same transaction as the append.
            grievance.status = to_status.value
            grievance.updated_at = now

            try:
                session.flush()
            except IntegrityError as e:
                raise stale_ledger(
                    grievance_id,
                    from_status.value if from_status else None,
                    "changed concurrently",
                ) from e

            entry = LedgerEntry.from_row(row)

        logger.info(
            "Ledger append: grievance=%s seq=%d %s -> %s by %s",
            grievance_id,
            entry.sequence_number,
            entry.from_status.value if entry.from_status else None,
            entry.to_status.value,
            actor_id,
        )
        return entry

    def history(self, grievance_id: int, db: Optional[Session] = None) -> List[LedgerEntry]:
        with unit_of_work(self.session_factory, db) as session:
            rows = (
                session.query(TrackingEntry)
                .filter(TrackingEntry.grievance_id == grievance_id)
                .order_by(TrackingEntry.sequence_number)
                .all()
            )
            return [LedgerEntry.from_row(r) for r in rows]

    def histories(self, grievance_ids: Iterable[int], db: Optional[Session] = None) -> Dict[int, List[LedgerEntry]]:
        """History of several grievances in one query, keyed by grievance id."""
        ids = list(grievance_ids)
        if not ids:
            return {}
        result: Dict[int, List[LedgerEntry]] = {i: [] for i in ids}
        with unit_of_work(self.session_factory, db) as session:
            rows = (
                session.query(TrackingEntry)
                .filter(TrackingEntry.grievance_id.in_(ids))
                .order_by(TrackingEntry.grievance_id, TrackingEntry.sequence_number)
                .all()
            )
            for row in rows:
                result[row.grievance_id].append(LedgerEntry.from_row(row))
        return result

    def head(self, grievance_id: int, db: Optional[Session] = None) -> Optional[LedgerEntry]:
        with unit_of_work(self.session_factory, db) as session:
            row = self._head_row(session, grievance_id)
            return LedgerEntry.from_row(row) if row else None

    def current_status(self, grievance_id: int, db: Optional[Session] = None) -> Optional[GrievanceStatus]:
        entry = self.head(grievance_id, db=db)
        return entry.to_status if entry else None

    def current_queue(self, grievance_id: int, category: str, db: Optional[Session] = None) -> Department:
        return queue_from_history(self.history(grievance_id, db=db), category)

    @staticmethod
    def _head_row(session: Session, grievance_id: int) -> Optional[TrackingEntry]:
        return (
            session.query(TrackingEntry)
            .filter(TrackingEntry.grievance_id == grievance_id)
            .order_by(TrackingEntry.sequence_number.desc())
            .first()
        )
