"""
Tests for the attachment registry: upload validation, conditional claims,
best-effort claim reports and the orphan sweep.
"""

import threading
from datetime import timedelta

import pytest

from conftest import OTHER_STUDENT, PDF_BYTES, STUDENT
from grievance_engine.attachments import AttachmentMetadata, AttachmentRegistry, ClaimFailureReason
from grievance_engine.errors import (
    ConflictError,
    GrievanceErrorCode,
    NotFoundError,
    ResultClassification,
    ValidationError,
)
from grievance_engine.models import Grievance
from grievance_engine.timeutil import utcnow


@pytest.fixture
def grievance_id(make_grievance):
    return make_grievance().grievance.id


class TestUpload:
    def test_upload_is_unclaimed(self, make_upload):
        record = make_upload()
        assert record.grievance_id is None
        assert not record.is_claimed
        assert record.uploaded_by == STUDENT.actor_id
        assert record.storage_handle is not None

    def test_same_bytes_share_one_blob_but_get_new_ids(self, registry, blob_store):
        meta = AttachmentMetadata("scan.pdf", "application/pdf")
        first = registry.upload(PDF_BYTES, meta, STUDENT.actor_id)
        second = registry.upload(PDF_BYTES, meta, STUDENT.actor_id)

        assert first.id != second.id
        assert first.storage_handle == second.storage_handle
        assert blob_store.retrieve(first.storage_handle) == PDF_BYTES

    def test_filename_is_stripped_of_directories(self, make_upload):
        record = make_upload(filename="../../etc/report.pdf")
        assert record.original_filename == "report.pdf"

    @pytest.mark.parametrize("kwargs,reason", [
        ({"mime_type": "application/zip"}, "file type not allowed"),
        ({"content": b""}, "file is empty"),
        ({"filename": "x" * 101 + ".pdf"}, "filename too long"),
    ])
    def test_rejected_uploads(self, make_upload, kwargs, reason):
        with pytest.raises(ValidationError) as exc:
            make_upload(**kwargs)
        assert exc.value.code == GrievanceErrorCode.ATTACHMENT_REJECTED
        assert exc.value.error.details["reason"] == reason

    def test_too_large(self, session_factory, blob_store):
        registry = AttachmentRegistry(session_factory, blob_store=blob_store, max_bytes=10)
        with pytest.raises(ValidationError):
            registry.upload(b"x" * 11, AttachmentMetadata("a.png", "image/png"), STUDENT.actor_id)

    def test_inline_storage_keeps_bytes_in_row(self, session_factory):
        registry = AttachmentRegistry(session_factory, storage_mode="inline")
        record = registry.upload(PDF_BYTES, AttachmentMetadata("a.pdf", "application/pdf"), "u1")

        assert record.storage_handle is None
        _, content = registry.retrieve(record.id)
        assert content == PDF_BYTES


class TestClaim:
    def test_claim_once(self, registry, make_upload, grievance_id):
        record = make_upload()
        assert registry.claim(record.id, grievance_id, STUDENT.actor_id) is True
        assert registry.claim(record.id, grievance_id, STUDENT.actor_id) is False
        assert registry.get(record.id).grievance_id == grievance_id

    def test_only_uploader_may_claim(self, registry, make_upload, grievance_id):
        record = make_upload(owner=OTHER_STUDENT.actor_id)
        assert registry.claim(record.id, grievance_id, STUDENT.actor_id) is False
        assert registry.get(record.id).grievance_id is None

    def test_concurrent_claims_single_winner(self, registry, make_upload, grievance_id):
        record = make_upload()
        results = []
        barrier = threading.Barrier(6)

        def worker():
            barrier.wait()
            results.append(registry.claim(record.id, grievance_id, STUDENT.actor_id))

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 5

    def test_precheck_reports_invalid_ids(self, registry, make_upload, grievance_id):
        mine = make_upload()
        theirs = make_upload(owner=OTHER_STUDENT.actor_id)
        claimed = make_upload()
        registry.claim(claimed.id, grievance_id, STUDENT.actor_id)

        invalid = registry.precheck([mine.id, theirs.id, claimed.id, 404], STUDENT.actor_id)
        assert invalid == [theirs.id, claimed.id, 404]


class TestClaimMany:
    def test_partial_report(self, registry, make_upload, grievance_id, session_factory):
        ok = make_upload()
        theirs = make_upload(owner=OTHER_STUDENT.actor_id)
        gone = make_upload()
        registry.soft_delete(gone.id, STUDENT.actor_id)

        report = registry.claim_many([ok.id, theirs.id, gone.id, 777, ok.id], grievance_id, STUDENT.actor_id)

        assert report.requested == (ok.id, theirs.id, gone.id, 777)
        assert report.linked_ids == (ok.id,)
        assert report.linked_count == 1
        assert report.failed_count == 3
        assert report.classification == ResultClassification.PARTIAL_ACCEPT
        reasons = {f.attachment_id: f.reason for f in report.failures}
        assert reasons == {
            theirs.id: ClaimFailureReason.NOT_OWNER,
            gone.id: ClaimFailureReason.DELETED,
            777: ClaimFailureReason.NOT_FOUND,
        }
        with session_factory() as db:
            assert db.get(Grievance, grievance_id).has_attachments is True

    def test_already_claimed_reason(self, registry, make_upload, make_grievance):
        record = make_upload()
        first = make_grievance(attachment_ids=[record.id]).grievance
        other = make_grievance().grievance

        report = registry.claim_many([record.id], other.id, STUDENT.actor_id)
        assert report.failures[0].reason == ClaimFailureReason.ALREADY_CLAIMED
        assert registry.get(record.id).grievance_id == first.id

    def test_full_success_is_accept(self, registry, make_upload, grievance_id):
        ids = [make_upload().id, make_upload().id]
        report = registry.claim_many(ids, grievance_id, STUDENT.actor_id)
        assert report.classification == ResultClassification.ACCEPT
        assert report.to_dict()["linked_count"] == 2


class TestRemoval:
    def test_discard_unclaimed(self, registry, blob_store, make_upload):
        record = make_upload()
        registry.discard(record.id, STUDENT.actor_id)

        with pytest.raises(NotFoundError):
            registry.get(record.id)
        assert not blob_store.path_for(record.storage_handle).exists()

    def test_discard_keeps_shared_blob(self, registry, blob_store):
        meta = AttachmentMetadata("same.pdf", "application/pdf")
        first = registry.upload(PDF_BYTES, meta, STUDENT.actor_id)
        registry.upload(PDF_BYTES, meta, STUDENT.actor_id)

        registry.discard(first.id, STUDENT.actor_id)
        assert blob_store.retrieve(first.storage_handle) == PDF_BYTES

    def test_discard_racing_upload_of_same_bytes_keeps_blob(self, registry, blob_store, monkeypatch):
        meta = AttachmentMetadata("same.pdf", "application/pdf")
        older = registry.upload(PDF_BYTES, meta, STUDENT.actor_id)
        real_store = blob_store.store
        discarded = []

        def store_then_discard_older(data):
            handle = real_store(data)
            if not discarded:
                # The older row goes away after the write but before the new row exists.
                discarded.append(older.id)
                registry.discard(older.id, STUDENT.actor_id)
            return handle

        monkeypatch.setattr(blob_store, "store", store_then_discard_older)

        newer = registry.upload(PDF_BYTES, meta, STUDENT.actor_id)

        assert discarded == [older.id]
        record, content = registry.retrieve(newer.id)
        assert content == PDF_BYTES
        assert record.storage_handle == older.storage_handle

    def test_blob_kept_when_reference_appears_during_delete(self, blob_store):
        handle = blob_store.store(PDF_BYTES)

        assert blob_store.delete(handle, in_use=lambda: True) is False
        assert blob_store.retrieve(handle) == PDF_BYTES

        assert blob_store.delete(handle, in_use=lambda: False) is True
        assert not blob_store.exists(handle)
        assert list(blob_store.path_for(handle).parent.iterdir()) == []

    def test_discard_claimed_is_conflict(self, registry, make_upload, grievance_id):
        record = make_upload()
        registry.claim(record.id, grievance_id, STUDENT.actor_id)
        with pytest.raises(ConflictError):
            registry.discard(record.id, STUDENT.actor_id)

    def test_discard_by_stranger_is_not_found(self, registry, make_upload):
        record = make_upload()
        with pytest.raises(NotFoundError):
            registry.discard(record.id, OTHER_STUDENT.actor_id)

    def test_soft_delete_hides_and_clears_flag(self, registry, make_upload, grievance_id, session_factory):
        record = make_upload()
        registry.claim_many([record.id], grievance_id, STUDENT.actor_id)

        deleted = registry.soft_delete(record.id, STUDENT.actor_id)

        assert deleted.deleted_at is not None
        assert registry.list_for_grievance(grievance_id) == []
        assert len(registry.list_for_grievance(grievance_id, include_deleted=True)) == 1
        with session_factory() as db:
            assert db.get(Grievance, grievance_id).has_attachments is False


class TestSweep:
    def test_sweeps_only_expired_unclaimed(self, registry, blob_store, make_upload, grievance_id):
        orphan = make_upload()
        claimed = make_upload()
        registry.claim(claimed.id, grievance_id, STUDENT.actor_id)

        later = utcnow() + timedelta(hours=25)
        assert registry.sweep_expired(timedelta(hours=24), now=later) == 1

        with pytest.raises(NotFoundError):
            registry.get(orphan.id)
        assert registry.get(claimed.id).grievance_id == grievance_id
        assert not blob_store.path_for(orphan.storage_handle).exists()
        assert blob_store.path_for(claimed.storage_handle).exists()

    def test_recent_uploads_survive(self, registry, make_upload):
        make_upload()
        assert registry.sweep_expired(timedelta(hours=24)) == 0

    def test_second_sweep_deletes_nothing(self, registry, make_upload):
        make_upload()
        make_upload()
        later = utcnow() + timedelta(hours=25)
        assert registry.sweep_expired(timedelta(hours=24), now=later) == 2
        assert registry.sweep_expired(timedelta(hours=24), now=later) == 0

    def test_blob_delete_failure_does_not_abort(self, registry, blob_store, make_upload, monkeypatch, caplog):
        make_upload()
        make_upload()

        def broken_delete(handle, in_use=None):
            raise OSError("disk on fire")

        monkeypatch.setattr(blob_store, "delete", broken_delete)
        later = utcnow() + timedelta(hours=25)

        assert registry.sweep_expired(timedelta(hours=24), now=later) == 2
        assert "Failed to delete blob" in caplog.text

    def test_claim_between_scan_and_delete_wins(self, registry, make_upload, grievance_id, session_factory):
        record = make_upload()
        later = utcnow() + timedelta(hours=25)
        calls = {"n": 0}

        def racing_factory():
            calls["n"] += 1
            if calls["n"] == 2:
                # The sweep has scanned its candidates; claim before it deletes.
                assert registry.claim(record.id, grievance_id, STUDENT.actor_id)
            return session_factory()

        registry.session_factory = racing_factory

        assert registry.sweep_expired(timedelta(hours=24), now=later) == 0
        assert registry.get(record.id).grievance_id == grievance_id
