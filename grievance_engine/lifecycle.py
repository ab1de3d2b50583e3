"""
lifecycle.py - Grievance Lifecycle (orchestrator)

Composes the tracking ledger, the redirection policy and the attachment
registry into the operations controllers call.

CREATION runs in two distinct phases:
1. ownership/availability check of every requested attachment; any
   failure rejects the whole creation and nothing is written
2. best-effort claim after the grievance is committed; failures are
   reported per attachment (PARTIAL_ACCEPT), never raised

TRANSITIONS read the current status from the ledger tail, never from the
cached column, and append only if that tail is still the entry the policy
decision was made on.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session, sessionmaker

from . import policy
from .attachments import (
    AttachmentClaimReport,
    AttachmentMetadata,
    AttachmentRecord,
    AttachmentRegistry,
    ClaimFailure,
    ClaimFailureReason,
    dedupe_ids,
)
from .catalog import IssueCatalog
from .config import settings
from .database import SessionLocal, unit_of_work
from .errors import (
    GrievanceEngineError,
    ResultClassification,
    access_denied,
    attachment_not_found,
    grievance_not_found,
    invalid_attachments,
    invalid_field,
    missing_fields,
    stale_ledger,
    transition_denied,
    unknown_category,
    write_conflict,
)
from .ledger import LedgerEntry, TrackingLedger, queue_from_history
from .models import SYSTEM_ACTOR, AdminRole, Department, Grievance, GrievanceStatus
from .policy import ActorScope
from .ticketing import MAX_TICKET_ATTEMPTS, generate_ticket_code, parse_grievance_ref
from .timeutil import utcnow

logger = logging.getLogger(__name__)

GrievanceRef = Union[int, str]

NOTE_REQUIRED = frozenset({
    GrievanceStatus.REDIRECTED,
    GrievanceStatus.RESOLVED,
    GrievanceStatus.REJECTED,
})
DEFAULT_NOTES = {
    GrievanceStatus.SUBMITTED: "Grievance submitted",
    GrievanceStatus.IN_PROGRESS: "Grievance is being reviewed",
}


@dataclass(frozen=True)
class Actor:
    """Identity asserted by the auth collaborator. role None is a student."""
    actor_id: str
    role: Optional[AdminRole] = None
    scope: ActorScope = field(default_factory=ActorScope)

    @property
    def is_admin(self) -> bool:
        return self.role is not None


@dataclass(frozen=True)
class GrievanceView:
    id: int
    ticket_code: str
    submitter_id: str
    campus_id: int
    category: str
    subject: str
    description: str
    has_attachments: bool
    status: GrievanceStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Grievance, status: Optional[GrievanceStatus] = None) -> "GrievanceView":
        return cls(
            id=row.id,
            ticket_code=row.ticket_code,
            submitter_id=row.submitter_id,
            campus_id=row.campus_id,
            category=row.category,
            subject=row.subject,
            description=row.description,
            has_attachments=bool(row.has_attachments),
            status=status or GrievanceStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_code": self.ticket_code,
            "submitter_id": self.submitter_id,
            "campus_id": self.campus_id,
            "category": self.category,
            "subject": self.subject,
            "description": self.description,
            "has_attachments": self.has_attachments,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class CreationResult:
    grievance: GrievanceView
    attachments: AttachmentClaimReport

    @property
    def classification(self) -> ResultClassification:
        return self.attachments.classification


@dataclass(frozen=True)
class GrievanceSummary:
    entry_count: int
    redirections: int
    involved_actors: Tuple[str, ...]
    current_queue: Department
    resolution_seconds: Optional[float] = None


@dataclass(frozen=True)
class GrievanceDetail:
    grievance: GrievanceView
    history: Tuple[LedgerEntry, ...]
    attachments: Tuple[AttachmentRecord, ...]
    summary: GrievanceSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grievance": self.grievance.to_dict(),
            "history": [e.to_dict() for e in self.history],
            "attachments": [a.to_dict() for a in self.attachments],
            "summary": {
                "entry_count": self.summary.entry_count,
                "redirections": self.summary.redirections,
                "involved_actors": list(self.summary.involved_actors),
                "current_queue": self.summary.current_queue.value,
                "resolution_seconds": self.summary.resolution_seconds,
            },
        }


def summarize(history: List[LedgerEntry], category: str) -> GrievanceSummary:
    involved: List[str] = []
    for entry in history:
        if entry.actor_id != SYSTEM_ACTOR and entry.actor_id not in involved:
            involved.append(entry.actor_id)

    resolution = None
    if history and history[-1].to_status.is_terminal:
        resolution = (history[-1].created_at - history[0].created_at).total_seconds()

    return GrievanceSummary(
        entry_count=len(history),
        redirections=sum(1 for e in history if e.is_redirect),
        involved_actors=tuple(involved),
        current_queue=queue_from_history(history, category),
        resolution_seconds=resolution,
    )


def _parse_status(value: Union[str, GrievanceStatus], field_name: str) -> GrievanceStatus:
    try:
        return GrievanceStatus(value)
    except ValueError:
        raise invalid_field(field_name, "unknown status", value) from None


def _parse_department(value: Optional[Union[str, Department]]) -> Optional[Department]:
    if value is None or value == "":
        return None
    try:
        return Department(str(value.value if isinstance(value, Department) else value).upper())
    except ValueError:
        raise invalid_field("redirect_target", "unknown department", value) from None


class GrievanceLifecycle:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        catalog: Optional[IssueCatalog] = None,
        ledger: Optional[TrackingLedger] = None,
        attachments: Optional[AttachmentRegistry] = None,
        ticket_style: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session_factory = session_factory
        self.catalog = catalog or IssueCatalog.load(settings.ISSUE_CATALOG_PATH)
        self.ledger = ledger or TrackingLedger(session_factory)
        self.attachments = attachments or AttachmentRegistry(session_factory)
        self.ticket_style = ticket_style or settings.TICKET_CODE_STYLE
        self.rng = rng

    # --- Creation ---

    def create(
        self,
        submitter_id: str,
        category: str,
        campus_id: int,
        subject: str,
        description: str,
        attachment_ids: Iterable[int] = (),
    ) -> CreationResult:
        fields = {
            "submitter_id": submitter_id,
            "category": category,
            "subject": subject,
            "description": description,
        }
        missing = [name for name, value in fields.items() if not (value or "").strip()]
        if campus_id is None:
            missing.append("campus_id")
        if missing:
            raise missing_fields(missing)

        if isinstance(campus_id, bool) or not isinstance(campus_id, int) or campus_id <= 0:
            raise invalid_field("campus_id", "must be a positive integer", campus_id)

        category = category.strip().upper()
        issue = self.catalog.get(category)
        if issue is None or not issue.active:
            raise unknown_category(category)

        ids = dedupe_ids(attachment_ids or ())
        bad_types = [i for i in ids if isinstance(i, bool) or not isinstance(i, int)]
        if bad_types:
            raise invalid_field("attachment_ids", "must be integers", bad_types)
        if issue.required_attachments and not ids:
            raise missing_fields(["attachment_ids"])

        # Phase one: all-or-nothing ownership check, before any write.
        invalid = self.attachments.precheck(ids, submitter_id)
        if invalid:
            raise invalid_attachments(invalid)

        with unit_of_work(self.session_factory) as session:
            now = utcnow()
            row = Grievance(
                ticket_code=self._allocate_ticket(session),
                submitter_id=submitter_id.strip(),
                campus_id=campus_id,
                category=category,
                subject=subject.strip(),
                description=description.strip(),
                has_attachments=False,
                status=GrievanceStatus.SUBMITTED.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self.ledger.append(
                row.id,
                None,
                GrievanceStatus.SUBMITTED,
                SYSTEM_ACTOR,
                DEFAULT_NOTES[GrievanceStatus.SUBMITTED],
                db=session,
            )
            grievance_id = row.id
            ticket_code = row.ticket_code

        logger.info(
            "Grievance created: %s (id=%d) by %s category=%s campus=%d",
            ticket_code,
            grievance_id,
            submitter_id,
            category,
            campus_id,
        )

        # Phase two: best-effort claim, reported per attachment.
        report = AttachmentClaimReport()
        if ids:
            try:
                report = self.attachments.claim_many(ids, grievance_id, submitter_id)
            except GrievanceEngineError:
                logger.exception("Attachment claim phase failed for %s", ticket_code)
                report = AttachmentClaimReport(
                    requested=tuple(ids),
                    failures=tuple(ClaimFailure(i, ClaimFailureReason.STORAGE_ERROR) for i in ids),
                )

        return CreationResult(grievance=self.get(grievance_id), attachments=report)

    def _allocate_ticket(self, session: Session) -> str:
        for _ in range(MAX_TICKET_ATTEMPTS):
            code = generate_ticket_code(self.ticket_style, rng=self.rng)
            taken = session.query(Grievance.id).filter(Grievance.ticket_code == code).first()
            if taken is None:
                return code
            logger.info("Ticket code %s already taken, retrying", code)
        raise write_conflict("could not allocate a unique ticket code")

    # --- Transitions ---

    def transition(
        self,
        grievance_ref: GrievanceRef,
        actor: Actor,
        requested_status: Union[str, GrievanceStatus],
        note: Optional[str] = None,
        redirect_target: Optional[Union[str, Department]] = None,
        expected_status: Optional[Union[str, GrievanceStatus]] = None,
    ) -> GrievanceView:
        """
        Move a grievance to ``requested_status`` on behalf of ``actor``.

        Raises:
            ValidationError: unknown status/target, or a required note missing
            NotFoundError: no such grievance
            AuthorizationError: the redirection policy denied it
            ConflictError: ledger head differs from ``expected_status``, or
                another transition won the race
        """
        requested = _parse_status(requested_status, "status")
        expected = _parse_status(expected_status, "expected_status") if expected_status else None
        target = _parse_department(redirect_target)

        note = (note or "").strip()
        if not note:
            if requested in NOTE_REQUIRED:
                raise missing_fields(["note"])
            note = DEFAULT_NOTES.get(requested, "")

        with unit_of_work(self.session_factory) as session:
            row = self._load(session, grievance_ref)
            history = self.ledger.history(row.id, db=session)
            current = history[-1].to_status
            if expected is not None and expected != current:
                raise stale_ledger(row.id, expected.value, current.value)

            decision = policy.can_transition(
                actor.role,
                actor.scope,
                row.category,
                row.campus_id,
                current,
                requested,
                requested_target=target,
                current_queue=queue_from_history(history, row.category),
            )
            if not decision.allowed:
                logger.info(
                    "Transition denied: %s %s -> %s by %s (%s)",
                    row.ticket_code,
                    current.value,
                    requested.value,
                    actor.actor_id,
                    decision.reason,
                )
                raise transition_denied(
                    decision.reason,
                    grievance=row.ticket_code,
                    current_status=current.value,
                    requested_status=requested.value,
                )

            entry = self.ledger.append(
                row.id,
                current,
                requested,
                actor.actor_id,
                note,
                redirect_target=target,
                actor_role=actor.role.value,
                is_override=decision.override,
                expected_sequence=history[-1].sequence_number,
                db=session,
            )
            view = GrievanceView.from_row(row, status=entry.to_status)

        if decision.override:
            logger.warning(
                "SUPER_ADMIN override: %s %s -> %s by %s",
                view.ticket_code,
                current.value,
                requested.value,
                actor.actor_id,
            )
        else:
            logger.info(
                "Grievance %s: %s -> %s by %s%s",
                view.ticket_code,
                current.value,
                requested.value,
                actor.actor_id,
                f" (to {target.value})" if target else "",
            )
        return view

    # --- Attachments ---

    def upload_attachment(self, content: bytes, metadata: AttachmentMetadata, uploader_id: str) -> AttachmentRecord:
        return self.attachments.upload(content, metadata, uploader_id)

    def claim_attachments(
        self,
        grievance_ref: GrievanceRef,
        attachment_ids: Iterable[int],
        submitter_id: str,
    ) -> AttachmentClaimReport:
        """Link more uploads to an existing grievance, best-effort."""
        with unit_of_work(self.session_factory) as session:
            row = self._load(session, grievance_ref)
            if row.submitter_id != submitter_id:
                raise grievance_not_found(grievance_ref)
            status = self.ledger.current_status(row.id, db=session)
            if status is not None and status.is_terminal:
                raise access_denied(f"Grievance {row.ticket_code} is closed")
            grievance_id = row.id
        return self.attachments.claim_many(attachment_ids, grievance_id, submitter_id)

    def open_attachment(self, attachment_id: int, actor: Actor) -> Tuple[AttachmentRecord, bytes]:
        """Uploaders read their own files; admins read claimed files of grievances they can see."""
        record = self.attachments.get(attachment_id)
        if record.uploaded_by != actor.actor_id:
            if not (actor.is_admin and record.is_claimed):
                raise attachment_not_found(attachment_id)
            with unit_of_work(self.session_factory) as session:
                row = session.get(Grievance, record.grievance_id)
                if row is None or not self._visible_to(actor, row):
                    raise attachment_not_found(attachment_id)
        return self.attachments.retrieve(attachment_id)

    def remove_attachment(self, attachment_id: int, actor: Actor) -> None:
        """Hard-delete while unclaimed, soft-delete once linked."""
        record = self.attachments.get(attachment_id)
        if record.uploaded_by != actor.actor_id:
            raise attachment_not_found(attachment_id)
        if record.is_claimed:
            self.attachments.soft_delete(attachment_id, actor.actor_id)
        else:
            self.attachments.discard(attachment_id, actor.actor_id)

    def sweep_expired_attachments(self, retention_hours: Optional[float] = None) -> int:
        retention = None
        if retention_hours is not None:
            retention = timedelta(hours=retention_hours)
        return self.attachments.sweep_expired(retention)

    # --- Reads ---

    def get(self, grievance_ref: GrievanceRef, actor: Optional[Actor] = None) -> GrievanceView:
        return self.view(grievance_ref, actor=actor).grievance

    def view(self, grievance_ref: GrievanceRef, actor: Optional[Actor] = None) -> GrievanceDetail:
        """Grievance, ledger and live attachments; status projected from the ledger."""
        with unit_of_work(self.session_factory) as session:
            row = self._load(session, grievance_ref, actor)
            history = self.ledger.history(row.id, db=session)
            attachments = self.attachments.list_for_grievance(row.id, db=session)

            status = history[-1].to_status if history else GrievanceStatus(row.status)
            if status.value != row.status:
                logger.warning(
                    "Cached status diverges from ledger for %s: cached=%s ledger=%s",
                    row.ticket_code,
                    row.status,
                    status.value,
                )
            grievance = GrievanceView.from_row(row, status=status)

        return GrievanceDetail(
            grievance=grievance,
            history=tuple(history),
            attachments=tuple(attachments),
            summary=summarize(history, grievance.category),
        )

    def list_for(
        self,
        actor: Actor,
        status: Optional[Union[str, GrievanceStatus]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[GrievanceView]:
        """
        Grievances in the actor's working set, newest first.

        Students get their own. Department and campus admins get what
        currently sits in their queue, super admins get everything.
        ``status`` filters on the ledger-projected status.
        """
        wanted = _parse_status(status, "status") if status else None
        if limit <= 0:
            raise invalid_field("limit", "must be positive", limit)
        if offset < 0:
            raise invalid_field("offset", "must not be negative", offset)

        with unit_of_work(self.session_factory) as session:
            query = session.query(Grievance)
            if not actor.is_admin:
                query = query.filter(Grievance.submitter_id == actor.actor_id)
            elif actor.role != AdminRole.SUPER_ADMIN and actor.scope.campus_id is not None:
                query = query.filter(Grievance.campus_id == actor.scope.campus_id)
            rows = query.order_by(Grievance.id.desc()).all()
            histories = self.ledger.histories([r.id for r in rows], db=session)

            items = []
            for row in rows:
                history = histories[row.id]
                if not history:
                    continue
                if actor.is_admin and not policy.in_working_queue(
                    actor.role,
                    actor.scope,
                    row.category,
                    row.campus_id,
                    queue_from_history(history, row.category),
                ):
                    continue
                current = history[-1].to_status
                if wanted is not None and current != wanted:
                    continue
                items.append(GrievanceView.from_row(row, status=current))

        return items[offset:offset + limit]

    def history_of(self, grievance_ref: GrievanceRef, actor: Optional[Actor] = None) -> List[LedgerEntry]:
        with unit_of_work(self.session_factory) as session:
            row = self._load(session, grievance_ref, actor)
            return self.ledger.history(row.id, db=session)

    def reconcile_status(self, grievance_ref: GrievanceRef) -> bool:
        """Rewrite the cached status from the ledger tail. True if it was wrong."""
        with unit_of_work(self.session_factory) as session:
            row = self._load(session, grievance_ref)
            head = self.ledger.head(row.id, db=session)
            if head is None or head.to_status.value == row.status:
                return False
            logger.warning(
                "Reconciling %s: cached=%s ledger=%s",
                row.ticket_code,
                row.status,
                head.to_status.value,
            )
            row.status = head.to_status.value
            row.updated_at = utcnow()
        return True

    def _load(self, session: Session, grievance_ref: GrievanceRef, actor: Optional[Actor] = None) -> Grievance:
        try:
            ref = parse_grievance_ref(grievance_ref)
        except ValueError:
            raise grievance_not_found(grievance_ref) from None

        query = session.query(Grievance)
        if isinstance(ref, int):
            row = query.filter(Grievance.id == ref).first()
        else:
            row = query.filter(Grievance.ticket_code == ref).first()

        if row is None:
            raise grievance_not_found(grievance_ref)
        if actor is not None and not self._visible_to(actor, row):
            raise grievance_not_found(grievance_ref)
        return row

    @staticmethod
    def _visible_to(actor: Actor, row: Grievance) -> bool:
        if not actor.is_admin:
            return row.submitter_id == actor.actor_id
        return policy.can_view(actor.role, actor.scope, row.campus_id)
