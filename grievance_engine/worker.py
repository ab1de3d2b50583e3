"""
worker.py - Periodic orphan attachment sweep.

Deletes unclaimed uploads older than the retention window every
SWEEP_INTERVAL_SECONDS.

GUARANTEES:
- A failing pass is logged and the loop keeps going
- Graceful shutdown on SIGTERM/SIGINT: the current pass finishes first
- Safe next to live claims: every delete is conditional on the row still
  being unclaimed
"""

import logging
import signal
import threading
from typing import Any, Optional

from .config import settings
from .lifecycle import GrievanceLifecycle

logger = logging.getLogger(__name__)


class SweepWorker:
    def __init__(
        self,
        lifecycle: Optional[GrievanceLifecycle] = None,
        interval_seconds: Optional[float] = None,
        retention_hours: Optional[float] = None,
    ) -> None:
        self.lifecycle = lifecycle or GrievanceLifecycle()
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.SWEEP_INTERVAL_SECONDS
        )
        self.retention_hours = (
            retention_hours if retention_hours is not None else settings.ATTACHMENT_RETENTION_HOURS
        )
        self.running = False
        self.passes = 0
        self._wake = threading.Event()

    def run_once(self) -> Optional[int]:
        """One sweep pass. Returns the deletion count, or None if it failed."""
        try:
            deleted = self.lifecycle.sweep_expired_attachments(self.retention_hours)
        except Exception:
            logger.exception("Attachment sweep pass failed")
            return None
        finally:
            self.passes += 1
        return deleted

    def start(self, max_passes: Optional[int] = None, install_signal_handlers: bool = True) -> None:
        """Run until stopped, or until ``max_passes`` passes have completed."""
        self.running = True
        self._wake.clear()

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._shutdown_handler)
            signal.signal(signal.SIGINT, self._shutdown_handler)

        logger.info(
            "Sweep worker started: interval=%ss retention=%sh",
            self.interval_seconds,
            self.retention_hours,
        )

        while self.running:
            self.run_once()
            if max_passes is not None and self.passes >= max_passes:
                break
            self._wake.wait(self.interval_seconds)

        self.running = False
        logger.info("Sweep worker stopped after %d passes.", self.passes)

    def stop(self) -> None:
        self.running = False
        self._wake.set()

    def _shutdown_handler(self, signum: int, frame: Any) -> None:
        logger.info("Received signal %d. Finishing current pass and shutting down...", signum)
        self.stop()


def main() -> None:
    """Entry point for the worker process."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting grievance attachment sweep worker...")
    SweepWorker().start()


if __name__ == "__main__":
    main()
