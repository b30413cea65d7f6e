from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore
from ragchat.models.types import CleanupReport, SessionClearReport

logger = logging.getLogger(__name__)

ORPHAN_MAX_AGE_S = 60 * 60
ARTIFACT_SEPARATOR = "__"


def uploads_dir() -> Path:
    return Path(os.getenv("UPLOADS_DIR", "").strip() or Path.cwd() / "uploads")


def idle_minutes() -> float:
    try:
        return float(os.getenv("SESSION_IDLE_MINUTES", "10"))
    except ValueError:
        return 10.0


def artifact_prefix(session_id: str) -> str:
    return f"{session_id}{ARTIFACT_SEPARATOR}"


class LifecycleManager:
    """Reclaims idle sessions and their on-disk artifacts.

    A session idle for longer than the threshold loses its store entry, its
    activity entry and every file named ``<session_id>__*``. Independently,
    each sweep deletes any file older than one hour. File failures are
    recorded in the returned report and never stop the sweep.
    """

    def __init__(
        self,
        store: SessionDocumentStore,
        activity: SessionActivityTracker,
        directory: Optional[Path] = None,
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.activity = activity
        self.directory = Path(directory) if directory is not None else uploads_dir()
        self.idle_seconds = idle_seconds if idle_seconds is not None else idle_minutes() * 60
        self.clock = clock
        self._sweep_lock = asyncio.Lock()
        self.last_report: Optional[CleanupReport] = None

    def _list_files(self) -> List[Path]:
        self.directory.mkdir(parents=True, exist_ok=True)
        return [p for p in self.directory.iterdir() if p.is_file()]

    def _delete_session_files(
        self, session_id: str, failures: List[Dict[str, str]], until: Optional[float] = None
    ) -> int:
        # with ``until``, files written after that moment are left alone
        prefix = artifact_prefix(session_id)
        deleted = 0
        try:
            files = self._list_files()
        except OSError as e:
            logger.error("cleanup: cannot list %s: %s", self.directory, e)
            failures.append({"session": session_id, "error": str(e)})
            return 0
        for path in files:
            if not path.name.startswith(prefix):
                continue
            try:
                if until is not None and path.stat().st_mtime > until:
                    continue
                path.unlink()
                deleted += 1
                logger.debug("cleanup: deleted file %s", path.name)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("cleanup: could not delete %s: %s", path.name, e)
                failures.append({"file": path.name, "error": str(e)})
        return deleted

    def _delete_orphans(self, now: float, failures: List[Dict[str, str]]) -> int:
        cutoff = now - ORPHAN_MAX_AGE_S
        deleted = 0
        try:
            files = self._list_files()
        except OSError as e:
            logger.error("cleanup: orphan sweep cannot list %s: %s", self.directory, e)
            failures.append({"file": str(self.directory), "error": str(e)})
            return 0
        for path in files:
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    deleted += 1
                    logger.debug("cleanup: deleted orphaned file %s", path.name)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("cleanup: could not check/delete orphan %s: %s", path.name, e)
                failures.append({"file": path.name, "error": str(e)})
        return deleted

    def _forget(self, session_id: str) -> int:
        cleared = 1 if self.store.delete_session(session_id) else 0
        self.activity.remove(session_id)
        return cleared

    def _reclaim(self, idle_seconds: float) -> CleanupReport:
        now = self.clock()
        report = CleanupReport()
        for session_id in self.activity.idle_sessions(idle_seconds, now=now):
            # re-checked under the tracker lock; the store entry goes with it
            if not self.activity.remove_if_idle(session_id, idle_seconds, now=now,
                                                on_idle=self.store.delete_session):
                logger.info("cleanup: session=%s became active during sweep, kept", session_id)
                continue
            logger.info("cleanup: reclaimed idle session=%s", session_id)
            report.files_deleted += self._delete_session_files(session_id, report.failures, until=now)
            report.sessions_reclaimed += 1
        report.files_deleted += self._delete_orphans(now, report.failures)
        return report

    async def reclaim_idle_sessions(self, idle_seconds: Optional[float] = None) -> CleanupReport:
        threshold = self.idle_seconds if idle_seconds is None else idle_seconds
        async with self._sweep_lock:
            report = await asyncio.to_thread(self._reclaim, threshold)
        self.last_report = report
        logger.info("cleanup: sweep done sessions=%d files=%d failures=%d",
                    report.sessions_reclaimed, report.files_deleted, len(report.failures))
        return report

    async def clear_session(self, session_id: str) -> SessionClearReport:
        report = SessionClearReport(session_id=session_id)
        report.files_deleted = await asyncio.to_thread(self._delete_session_files, session_id, report.failures)
        report.cleared = self._forget(session_id)
        logger.info("cleanup: cleared session=%s files=%d", session_id, report.files_deleted)
        return report
