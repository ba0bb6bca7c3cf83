"""
Periodic trigger for the recurrence processor.
"""

import asyncio
import logging
import threading
from contextlib import suppress
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from tally.config import settings
from tally.database import SessionLocal
from tally.services.processor_service import ProcessReport, run_due_processing

logger = logging.getLogger(__name__)


class RecurrenceScheduler:
    """Runs the processor every interval_minutes on a worker thread."""

    def __init__(
        self,
        session_factory: Callable[..., Session] = SessionLocal,
        interval_minutes: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.interval_seconds = (interval_minutes or settings.scheduler_interval_minutes) * 60
        self.cancel_event = threading.Event()
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> ProcessReport:
        today = datetime.now(timezone.utc).date()
        return await asyncio.to_thread(
            run_due_processing,
            self.session_factory,
            today,
            cancel_event=self.cancel_event,
        )

    async def _loop(self) -> None:
        while not self.cancel_event.is_set():
            try:
                report = await self.run_once()
                logger.info(
                    f"Scheduled recurrence run: {len(report.created)} created, {len(report.failed)} failed"
                )
            except Exception:
                logger.exception("Scheduled recurrence run failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None:
            logger.info(f"Recurrence scheduler started (every {self.interval_seconds // 60} min)")
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop after the definition currently being processed is committed."""
        self.cancel_event.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Recurrence scheduler stopped")
