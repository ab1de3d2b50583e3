"""
Tests for the sweep worker and the administration CLI.
"""

import json
import threading

import pytest

from conftest import ACADEMIC_ADMIN
from grievance_engine import cli
from grievance_engine.models import Grievance, GrievanceStatus
from grievance_engine.worker import SweepWorker


class TestSweepWorker:
    def test_run_once_returns_count(self, lifecycle, make_upload):
        make_upload()
        worker = SweepWorker(lifecycle=lifecycle, interval_seconds=0, retention_hours=24)
        assert worker.run_once() == 0
        assert worker.passes == 1

    def test_failing_pass_is_logged_and_loop_continues(self, lifecycle, monkeypatch, caplog):
        calls = []

        def flaky(retention_hours=None):
            calls.append(retention_hours)
            if len(calls) == 1:
                raise RuntimeError("database went away")
            return 3

        monkeypatch.setattr(lifecycle, "sweep_expired_attachments", flaky)
        worker = SweepWorker(lifecycle=lifecycle, interval_seconds=0, retention_hours=1)

        worker.start(max_passes=2, install_signal_handlers=False)

        assert calls == [1, 1]
        assert "Attachment sweep pass failed" in caplog.text
        assert not worker.running

    def test_stop_interrupts_wait(self, lifecycle):
        worker = SweepWorker(lifecycle=lifecycle, interval_seconds=3600)
        thread = threading.Thread(target=worker.start, kwargs={"install_signal_handlers": False})
        thread.start()
        while worker.passes == 0:
            thread.join(0.01)
        worker.stop()
        thread.join(5)
        assert not thread.is_alive()
        assert worker.passes == 1


class TestCLI:
    @pytest.fixture
    def run(self, lifecycle):
        def _run(*argv):
            return cli.main(list(argv), lifecycle_factory=lambda: lifecycle)
        return _run

    def test_sweep(self, run, capsys):
        assert run("sweep", "--retention-hours", "24") == 0
        assert "Deleted 0 expired attachments" in capsys.readouterr().out

    def test_history_to_file(self, run, make_grievance, lifecycle, tmp_path):
        g = make_grievance(category="ACADEMIC").grievance
        lifecycle.transition(g.id, ACADEMIC_ADMIN, GrievanceStatus.IN_PROGRESS)
        out = tmp_path / "history.json"

        assert run("history", g.ticket_code, "--output", str(out)) == 0

        data = json.loads(out.read_text())
        assert data["grievance"]["ticket_code"] == g.ticket_code
        assert [h["to_status"] for h in data["history"]] == ["SUBMITTED", "IN_PROGRESS"]

    def test_history_unknown_ref_exits_1(self, run, capsys):
        assert run("history", "GRV-2026-000000") == 1
        assert "GRIEVANCE_NOT_FOUND" in capsys.readouterr().err

    def test_reconcile(self, run, make_grievance, session_factory, capsys):
        g = make_grievance().grievance
        with session_factory() as db:
            db.get(Grievance, g.id).status = GrievanceStatus.RESOLVED.value
            db.commit()

        assert run("reconcile", str(g.id)) == 0
        assert "Repaired" in capsys.readouterr().out
        with session_factory() as db:
            assert db.get(Grievance, g.id).status == GrievanceStatus.SUBMITTED.value

    def test_init_db(self, monkeypatch, capsys):
        created = []
        monkeypatch.setattr(cli, "init_db", lambda: created.append(True))
        assert cli.main(["init-db"]) == 0
        assert created == [True]

    def test_serve_runs_uvicorn(self, monkeypatch):
        calls = []
        monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
        assert cli.main(["serve", "--host", "127.0.0.1", "--port", "9000"]) == 0
        assert calls[0][0] == "grievance_engine.main:app"
        assert calls[0][1]["port"] == 9000
