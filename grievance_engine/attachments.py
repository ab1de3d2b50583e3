"""
attachments.py - Attachment Registry

Tracks uploaded binary objects. An attachment is unclaimed while
grievance_id IS NULL and becomes claimed, exactly once, when its uploader
links it to a grievance.

GUARANTEES:
1. claim() is one conditional UPDATE keyed on grievance_id IS NULL and the
   uploader; a lost race returns False, never an exception
2. sweep_expired() deletes with the same grievance_id IS NULL condition,
   so a claim and a sweep racing on one row cannot both win
3. claim_many() is best-effort: each claim commits on its own and failures
   are reported per item, never raised
4. a physical blob is removed only once no row references its handle
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from .blobstore import BlobNotFound, BlobStore, LocalBlobStore
from .config import settings
from .database import SessionLocal, unit_of_work
from .errors import (
    GrievanceEngineError,
    ResultClassification,
    attachment_claimed,
    attachment_not_found,
    attachment_rejected,
    grievance_not_found,
    missing_fields,
    storage_unavailable,
)
from .models import Attachment, Grievance
from .timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

STORAGE_FILESYSTEM = "filesystem"
STORAGE_INLINE = "inline"


class ClaimFailureReason(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_CLAIMED = "already_claimed"
    NOT_OWNER = "not_owner"
    DELETED = "deleted"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class AttachmentMetadata:
    filename: str
    mime_type: str


@dataclass(frozen=True)
class AttachmentRecord:
    id: int
    grievance_id: Optional[int]
    original_filename: str
    mime_type: str
    size_bytes: int
    storage_handle: Optional[str]
    uploaded_by: str
    uploaded_at: datetime
    claimed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Attachment) -> "AttachmentRecord":
        return cls(
            id=row.id,
            grievance_id=row.grievance_id,
            original_filename=row.original_filename,
            mime_type=row.mime_type,
            size_bytes=row.size_bytes,
            storage_handle=row.storage_handle,
            uploaded_by=row.uploaded_by,
            uploaded_at=row.uploaded_at,
            claimed_at=row.claimed_at,
            deleted_at=row.deleted_at,
        )

    @property
    def is_claimed(self) -> bool:
        return self.grievance_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "grievance_id": self.grievance_id,
            "filename": self.original_filename,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": self.uploaded_at.isoformat(),
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
        }


@dataclass(frozen=True)
class ClaimFailure:
    attachment_id: int
    reason: ClaimFailureReason


@dataclass(frozen=True)
class AttachmentClaimReport:
    """
    Outcome of a best-effort claim. PARTIAL_ACCEPT means some requested
    attachments were not linked; callers must surface ``failures``.
    """
    requested: Tuple[int, ...] = ()
    linked_ids: Tuple[int, ...] = ()
    failures: Tuple[ClaimFailure, ...] = field(default_factory=tuple)

    @property
    def linked_count(self) -> int:
        return len(self.linked_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def failed_ids(self) -> List[int]:
        return [f.attachment_id for f in self.failures]

    @property
    def classification(self) -> ResultClassification:
        if not self.failures:
            return ResultClassification.ACCEPT
        return ResultClassification.PARTIAL_ACCEPT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classification": self.classification.value,
            "requested": list(self.requested),
            "linked_count": self.linked_count,
            "failed_count": self.failed_count,
            "linked_ids": list(self.linked_ids),
            "failures": [
                {"attachment_id": f.attachment_id, "reason": f.reason.value}
                for f in self.failures
            ],
        }


def dedupe_ids(ids: Iterable[int]) -> List[int]:
    seen = set()
    result = []
    for attachment_id in ids:
        if attachment_id not in seen:
            seen.add(attachment_id)
            result.append(attachment_id)
    return result


class AttachmentRegistry:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        blob_store: Optional[BlobStore] = None,
        storage_mode: Optional[str] = None,
        max_bytes: Optional[int] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
        max_filename_length: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.storage_mode = storage_mode or settings.ATTACHMENT_STORAGE
        if self.storage_mode not in (STORAGE_FILESYSTEM, STORAGE_INLINE):
            raise ValueError(f"Unknown attachment storage mode: {self.storage_mode}")
        if blob_store is None and self.storage_mode == STORAGE_FILESYSTEM:
            blob_store = LocalBlobStore(settings.UPLOAD_DIR)
        self.blob_store = blob_store
        self.max_bytes = max_bytes or settings.MAX_ATTACHMENT_BYTES
        self.allowed_mime_types = frozenset(
            m.lower() for m in (allowed_mime_types or settings.ALLOWED_MIME_TYPES)
        )
        self.max_filename_length = max_filename_length or settings.MAX_FILENAME_LENGTH

    # --- Upload ---

    def validate_metadata(self, content: bytes, metadata: AttachmentMetadata) -> AttachmentMetadata:
        """Returns normalised metadata or raises ValidationError."""
        filename = os.path.basename((metadata.filename or "").replace("\\", "/")).strip()
        if not filename:
            raise missing_fields(["filename"])
        if len(filename) > self.max_filename_length:
            raise attachment_rejected(
                "filename too long",
                max_length=self.max_filename_length,
                length=len(filename),
            )

        mime_type = (metadata.mime_type or "").lower().strip()
        if mime_type not in self.allowed_mime_types:
            raise attachment_rejected(
                "file type not allowed",
                mime_type=mime_type,
                allowed=sorted(self.allowed_mime_types),
            )

        if not content:
            raise attachment_rejected("file is empty")
        if len(content) > self.max_bytes:
            raise attachment_rejected(
                "file too large",
                max_bytes=self.max_bytes,
                size_bytes=len(content),
            )
        return AttachmentMetadata(filename=filename, mime_type=mime_type)

    def upload(
        self,
        content: bytes,
        metadata: AttachmentMetadata,
        uploader_id: str,
    ) -> AttachmentRecord:
        """
        Persist a new unclaimed attachment.

        The physical write is content addressed, so retrying an upload of the
        same bytes reuses the stored file; every call still creates a new
        attachment id.
        """
        if not uploader_id:
            raise missing_fields(["uploader_id"])
        metadata = self.validate_metadata(content, metadata)

        handle = None
        if self.storage_mode == STORAGE_FILESYSTEM:
            handle = self.blob_store.store(content)

        try:
            with unit_of_work(self.session_factory) as session:
                row = Attachment(
                    original_filename=metadata.filename,
                    mime_type=metadata.mime_type,
                    size_bytes=len(content),
                    storage_handle=handle,
                    content=content if handle is None else None,
                    uploaded_by=uploader_id,
                    uploaded_at=utcnow(),
                )
                session.add(row)
                session.flush()
                record = AttachmentRecord.from_row(row)
        except GrievanceEngineError:
            if handle is not None:
                self._release_blob(handle)
            raise

        # A concurrent release of the same handle may have removed the file
        # before this row was visible; with the row committed it stays put.
        if handle is not None and not self.blob_store.exists(handle):
            logger.warning("Blob %s vanished during upload of attachment %d, rewriting", handle, record.id)
            self.blob_store.store(content)

        logger.info(
            "Attachment uploaded: id=%d by=%s type=%s size=%d",
            record.id,
            uploader_id,
            record.mime_type,
            record.size_bytes,
        )
        return record

    # --- Claiming ---

    def precheck(self, attachment_ids: Iterable[int], uploader_id: str, db: Optional[Session] = None) -> List[int]:
        """
        Read-only ownership and availability check. Returns the ids that are
        NOT currently unclaimed, live uploads of ``uploader_id``.
        """
        ids = dedupe_ids(attachment_ids)
        if not ids:
            return []
        with unit_of_work(self.session_factory, db) as session:
            valid = {
                row.id
                for row in session.query(Attachment.id)
                .filter(
                    Attachment.id.in_(ids),
                    Attachment.uploaded_by == uploader_id,
                    Attachment.grievance_id.is_(None),
                    Attachment.deleted_at.is_(None),
                )
                .all()
            }
        return [i for i in ids if i not in valid]

    def claim(self, attachment_id: int, grievance_id: int, uploader_id: str, db: Optional[Session] = None) -> bool:
        """Compare-and-set the owning grievance. False if any precondition fails."""
        with unit_of_work(self.session_factory, db) as session:
            updated = (
                session.query(Attachment)
                .filter(
                    Attachment.id == attachment_id,
                    Attachment.grievance_id.is_(None),
                    Attachment.uploaded_by == uploader_id,
                    Attachment.deleted_at.is_(None),
                )
                .update(
                    {Attachment.grievance_id: grievance_id, Attachment.claimed_at: utcnow()},
                    synchronize_session=False,
                )
            )
        return updated == 1

    def claim_many(self, attachment_ids: Iterable[int], grievance_id: int, uploader_id: str) -> AttachmentClaimReport:
        requested = dedupe_ids(attachment_ids)
        linked: List[int] = []
        failures: List[ClaimFailure] = []

        for attachment_id in requested:
            try:
                with unit_of_work(self.session_factory) as session:
                    if self.claim(attachment_id, grievance_id, uploader_id, db=session):
                        linked.append(attachment_id)
                        continue
                    reason = self._failure_reason(session, attachment_id, uploader_id)
            except GrievanceEngineError:
                logger.exception("Claim of attachment %s failed", attachment_id)
                reason = ClaimFailureReason.STORAGE_ERROR
            failures.append(ClaimFailure(attachment_id, reason))

        if requested:
            self.refresh_flag(grievance_id)

        report = AttachmentClaimReport(
            requested=tuple(requested),
            linked_ids=tuple(linked),
            failures=tuple(failures),
        )
        if failures:
            logger.warning(
                "Partial attachment claim for grievance %s: linked=%d failed=%s",
                grievance_id,
                report.linked_count,
                [(f.attachment_id, f.reason.value) for f in failures],
            )
        elif linked:
            logger.info("Claimed %d attachments for grievance %s", len(linked), grievance_id)
        return report

    @staticmethod
    def _failure_reason(session: Session, attachment_id: int, uploader_id: str) -> ClaimFailureReason:
        row = session.get(Attachment, attachment_id)
        if row is None:
            return ClaimFailureReason.NOT_FOUND
        if row.deleted_at is not None:
            return ClaimFailureReason.DELETED
        if row.uploaded_by != uploader_id:
            return ClaimFailureReason.NOT_OWNER
        return ClaimFailureReason.ALREADY_CLAIMED

    def refresh_flag(self, grievance_id: int, db: Optional[Session] = None) -> bool:
        """Set grievances.has_attachments from the live linked rows."""
        with unit_of_work(self.session_factory, db) as session:
            has_any = (
                session.query(Attachment.id)
                .filter(
                    Attachment.grievance_id == grievance_id,
                    Attachment.deleted_at.is_(None),
                )
                .first()
                is not None
            )
            updated = (
                session.query(Grievance)
                .filter(Grievance.id == grievance_id)
                .update({Grievance.has_attachments: has_any}, synchronize_session=False)
            )
            if not updated:
                raise grievance_not_found(grievance_id)
        return has_any

    # --- Removal ---

    def discard(self, attachment_id: int, uploader_id: str) -> None:
        """Hard-delete the uploader's own attachment while it is still unclaimed."""
        with unit_of_work(self.session_factory) as session:
            row = session.get(Attachment, attachment_id)
            if row is None or row.uploaded_by != uploader_id:
                raise attachment_not_found(attachment_id)
            if row.grievance_id is not None:
                raise attachment_claimed(attachment_id)
            handle = row.storage_handle
            deleted = (
                session.query(Attachment)
                .filter(Attachment.id == attachment_id, Attachment.grievance_id.is_(None))
                .delete(synchronize_session=False)
            )
            if not deleted:
                raise attachment_claimed(attachment_id)

        logger.info("Attachment %d discarded by %s", attachment_id, uploader_id)
        if handle:
            self._release_blob(handle)

    def soft_delete(self, attachment_id: int, uploader_id: str) -> AttachmentRecord:
        with unit_of_work(self.session_factory) as session:
            updated = (
                session.query(Attachment)
                .filter(
                    Attachment.id == attachment_id,
                    Attachment.uploaded_by == uploader_id,
                    Attachment.deleted_at.is_(None),
                )
                .update({Attachment.deleted_at: utcnow()}, synchronize_session=False)
            )
            if not updated:
                raise attachment_not_found(attachment_id)
            row = session.get(Attachment, attachment_id)
            record = AttachmentRecord.from_row(row)
            if record.grievance_id is not None:
                self.refresh_flag(record.grievance_id, db=session)

        logger.info("Attachment %d soft-deleted by %s", attachment_id, uploader_id)
        return record

    # --- Reads ---

    def get(self, attachment_id: int, db: Optional[Session] = None) -> AttachmentRecord:
        with unit_of_work(self.session_factory, db) as session:
            row = session.get(Attachment, attachment_id)
            if row is None or row.deleted_at is not None:
                raise attachment_not_found(attachment_id)
            return AttachmentRecord.from_row(row)

    def retrieve(self, attachment_id: int) -> Tuple[AttachmentRecord, bytes]:
        with unit_of_work(self.session_factory) as session:
            row = session.get(Attachment, attachment_id)
            if row is None or row.deleted_at is not None:
                raise attachment_not_found(attachment_id)
            record = AttachmentRecord.from_row(row)
            inline = row.content

        if record.storage_handle is None:
            return record, inline or b""
        if self.blob_store is None:
            raise storage_unavailable("no blob store configured")
        try:
            return record, self.blob_store.retrieve(record.storage_handle)
        except BlobNotFound as e:
            logger.error("Attachment %d points at missing blob %s", attachment_id, record.storage_handle)
            raise storage_unavailable(f"blob {record.storage_handle} missing") from e

    def list_for_grievance(
        self,
        grievance_id: int,
        include_deleted: bool = False,
        db: Optional[Session] = None,
    ) -> List[AttachmentRecord]:
        with unit_of_work(self.session_factory, db) as session:
            query = session.query(Attachment).filter(Attachment.grievance_id == grievance_id)
            if not include_deleted:
                query = query.filter(Attachment.deleted_at.is_(None))
            return [AttachmentRecord.from_row(r) for r in query.order_by(Attachment.id).all()]

    # --- Garbage collection ---

    def sweep_expired(self, retention: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
        """
        Delete unclaimed attachments uploaded before ``now - retention``.

        Each row goes in its own conditional DELETE; a row claimed after the
        candidate scan is left alone. Blob delete failures are logged and the
        sweep carries on. Returns the number of rows deleted.
        """
        if retention is None:
            retention = timedelta(hours=settings.ATTACHMENT_RETENTION_HOURS)
        cutoff = to_naive_utc(now or utcnow()) - retention

        with unit_of_work(self.session_factory) as session:
            candidates = (
                session.query(Attachment.id, Attachment.storage_handle)
                .filter(
                    Attachment.grievance_id.is_(None),
                    Attachment.uploaded_at < cutoff,
                )
                .order_by(Attachment.id)
                .all()
            )
            candidates = [(c.id, c.storage_handle) for c in candidates]

        deleted = 0
        for attachment_id, handle in candidates:
            with unit_of_work(self.session_factory) as session:
                removed = (
                    session.query(Attachment)
                    .filter(
                        Attachment.id == attachment_id,
                        Attachment.grievance_id.is_(None),
                        Attachment.uploaded_at < cutoff,
                    )
                    .delete(synchronize_session=False)
                )
            if not removed:
                logger.info("Attachment %d claimed during sweep, kept", attachment_id)
                continue
            deleted += 1
            if handle:
                self._release_blob(handle)

        logger.info(
            "Attachment sweep: cutoff=%s candidates=%d deleted=%d",
            cutoff.isoformat(),
            len(candidates),
            deleted,
        )
        return deleted

    def _handle_in_use(self, handle: str) -> bool:
        with unit_of_work(self.session_factory) as session:
            return (
                session.query(Attachment.id)
                .filter(Attachment.storage_handle == handle)
                .first()
                is not None
            )

    def _release_blob(self, handle: str) -> None:
        if self.blob_store is None:
            return
        try:
            if not self._handle_in_use(handle):
                self.blob_store.delete(handle, in_use=lambda: self._handle_in_use(handle))
        except (OSError, GrievanceEngineError):
            logger.exception("Failed to delete blob %s", handle)
