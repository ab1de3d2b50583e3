"""Test configuration and fixtures."""

import os
import random
import tempfile

import pytest

# Point the module-level settings somewhere harmless BEFORE grievance_engine
# is imported; every component under test gets its own engine anyway.
_scratch = tempfile.mkdtemp(prefix="grievance-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_scratch, 'default.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_scratch, "uploads")
os.environ["ISSUE_CATALOG_PATH"] = os.path.join(_scratch, "missing-issues.yaml")

from sqlalchemy.orm import sessionmaker

from grievance_engine.attachments import AttachmentMetadata, AttachmentRegistry
from grievance_engine.blobstore import LocalBlobStore
from grievance_engine.catalog import IssueCatalog
from grievance_engine.database import build_engine, init_db
from grievance_engine.ledger import TrackingLedger
from grievance_engine.lifecycle import Actor, GrievanceLifecycle
from grievance_engine.models import AdminRole, Department
from grievance_engine.policy import ActorScope

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n"

STUDENT = Actor("21CS001")
OTHER_STUDENT = Actor("21CS002")
CAMPUS_ADMIN = Actor("campus-admin-1", AdminRole.CAMPUS_ADMIN, ActorScope(campus_id=1))
OTHER_CAMPUS_ADMIN = Actor("campus-admin-2", AdminRole.CAMPUS_ADMIN, ActorScope(campus_id=2))
ACADEMIC_ADMIN = Actor(
    "academic-admin-1",
    AdminRole.DEPT_ADMIN,
    ActorScope(department=Department.ACADEMIC, campus_id=1),
)
EXAM_ADMIN = Actor(
    "exam-admin-1",
    AdminRole.DEPT_ADMIN,
    ActorScope(department=Department.EXAM, campus_id=1),
)
SUPER_ADMIN = Actor("super-admin-1", AdminRole.SUPER_ADMIN)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so that separate threads see one database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'grievances.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def registry(session_factory, blob_store):
    return AttachmentRegistry(session_factory, blob_store=blob_store, storage_mode="filesystem")


@pytest.fixture
def ledger(session_factory):
    return TrackingLedger(session_factory)


@pytest.fixture
def catalog():
    return IssueCatalog.load()


@pytest.fixture
def lifecycle(session_factory, catalog, ledger, registry):
    return GrievanceLifecycle(
        session_factory,
        catalog=catalog,
        ledger=ledger,
        attachments=registry,
        ticket_style="GRV",
        rng=random.Random(1234),
    )


@pytest.fixture
def make_upload(registry):
    """Upload a small PDF as ``owner`` and return its record."""
    counter = {"n": 0}

    def _upload(owner=STUDENT.actor_id, filename=None, content=None, mime_type="application/pdf"):
        counter["n"] += 1
        return registry.upload(
            content if content is not None else PDF_BYTES + str(counter["n"]).encode(),
            AttachmentMetadata(filename=filename or f"evidence-{counter['n']}.pdf", mime_type=mime_type),
            owner,
        )

    return _upload


@pytest.fixture
def make_grievance(lifecycle):
    def _create(category="FACILITY", submitter=STUDENT.actor_id, campus_id=1, attachment_ids=()):
        return lifecycle.create(
            submitter_id=submitter,
            category=category,
            campus_id=campus_id,
            subject=f"{category.title()} issue",
            description="Details of the problem",
            attachment_ids=attachment_ids,
        )

    return _create
