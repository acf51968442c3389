from __future__ import annotations

import logging
import threading
import traceback
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Protocol

from .config import DEFAULT_POLL_INTERVAL_SECONDS
from .github.migrations import EXPORTED, FAILED
from .models import MigrationJob, RunState, Subject
from .storage import ArchiveStore, archive_filename

LOG = logging.getLogger(__name__)


class RunCancelled(Exception):
    """Raised when a stop was requested before every migration finished."""


class MigrationSource(Protocol):
    def get_migration(self, subject: Subject, migration_id: int) -> Dict[str, Any]:
        ...

    def download_archive(self, subject: Subject, migration_id: int) -> AbstractContextManager[Iterator[bytes]]:
        ...


class MigrationEngine:
    """Polls every pending migration until each one is downloaded or failed.

    Subjects are checked one after another within a pass; between passes the
    engine waits ``poll_interval`` seconds. A stop request is honoured between
    subjects and during the wait, never in the middle of a download.
    """

    def __init__(
        self,
        client: MigrationSource,
        store: ArchiveStore,
        *,
        extract: bool = False,
        keep_archives: bool = False,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stop_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._extract = extract
        self._keep_archives = keep_archives
        self._poll_interval = poll_interval
        self._stop_event = stop_event or threading.Event()
        self._sleep = sleep or self._stop_event.wait

    def run(self, state: RunState) -> RunState:
        self._store.ensure()
        passes = 0

        while not state.all_terminal():
            passes += 1
            for subject, job in state.pending():
                self._raise_if_stopped()
                self.check(subject, job)

            if state.all_terminal():
                break

            LOG.info(
                "Waiting for %d migration(s) to finish (pass %d)...",
                len(state.pending()),
                passes,
            )
            self._sleep(self._poll_interval)
            self._raise_if_stopped()

        return state

    def check(self, subject: Subject, job: MigrationJob) -> None:
        """Run one status check (and possibly the download) for ``job``."""
        # A job without an id is already failed.
        if job.terminal or job.id is None:
            return

        LOG.debug("Checking migration status for %s [#%s]", subject, job.id)
        try:
            status = self._client.get_migration(subject, job.id)
            filename = archive_filename(status["created_at"], subject, status["id"])

            if self._store.exists(filename):
                LOG.info("Archive already downloaded for %s [#%s].", subject, status["id"])
                self._finish(subject, job, self._store.archive_path(filename))
                return

            state = status.get("state")
            if state == FAILED:
                LOG.error("Migration for %s [#%s] failed.", subject, status["id"])
                job.mark_failed()
                return

            if state != EXPORTED:
                LOG.debug("Migration for %s [#%s] is %s", subject, status["id"], state)
                return

            LOG.info("Downloading archive for %s [#%s]...", subject, status["id"])
            with self._client.download_archive(subject, status["id"]) as chunks:
                archive_path = self._store.write(filename, chunks)
            LOG.info("Downloaded archive for %s [#%s] to %s.", subject, status["id"], archive_path)
        except Exception as exc:  # noqa: BLE001
            LOG.error("Failed to check migration status or download archive for %s: %s", subject, exc)
            LOG.debug("Traceback:\n%s", "".join(traceback.format_exc()))
            job.mark_failed()
            return

        self._finish(subject, job, archive_path)

    def _finish(self, subject: Subject, job: MigrationJob, archive_path: Path) -> None:
        if self._extract and not self._extract_archive(subject, archive_path):
            job.mark_failed()
            return
        job.mark_downloaded()

    def _extract_archive(self, subject: Subject, archive_path: Path) -> bool:
        LOG.info("Extracting archive for %s...", subject)
        ok = True
        try:
            self._store.extract(archive_path, self._store.extraction_dir(subject))
            LOG.info("Extracted archive for %s.", subject)
        except Exception as exc:  # noqa: BLE001
            LOG.error("Failed to extract archive for %s: %s", subject, exc)
            LOG.debug("Traceback:\n%s", "".join(traceback.format_exc()))
            ok = False

        if not self._keep_archives:
            try:
                self._store.remove(archive_path)
            except OSError as exc:
                LOG.error("Failed to delete archive %s after extraction: %s", archive_path, exc)
                ok = False
        return ok

    def _raise_if_stopped(self) -> None:
        if self._stop_event.is_set():
            raise RunCancelled("Stop requested before all migrations finished")
