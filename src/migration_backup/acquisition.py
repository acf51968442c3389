from __future__ import annotations

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .config import BackupConfig
from .models import MigrationJob, Repository, RunState, Subject
from .resolver import SubjectSource, resolve_repositories

LOG = logging.getLogger(__name__)

REUSE_WINDOW = timedelta(hours=1)


class MigrationStarter(SubjectSource, Protocol):
    def list_migrations(self, subject: Subject) -> List[Dict[str, Any]]:
        ...

    def start_migration(self, subject: Subject, repositories: Sequence[Repository]) -> Dict[str, Any]:
        ...


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub timestamp (``2023-03-10T12:00:00Z`` or with offset)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def find_reusable_migration(
    migrations: Iterable[Dict[str, Any]],
    repositories: Sequence[Repository],
    now: datetime,
    window: timedelta = REUSE_WINDOW,
) -> Optional[Dict[str, Any]]:
    """Pick the newest migration from inside ``window`` covering every repository."""
    cutoff = now - window
    wanted = {repo.id for repo in repositories}
    best: Optional[Dict[str, Any]] = None
    best_created: Optional[datetime] = None

    for migration in migrations:
        created = parse_timestamp(migration["created_at"])
        if created <= cutoff:
            continue
        covered = {repo["id"] for repo in migration.get("repositories") or []}
        if not wanted.issubset(covered):
            continue
        if best_created is None or created > best_created:
            best, best_created = migration, created

    return best


def acquire_job(
    client: MigrationStarter,
    subject: Subject,
    config: BackupConfig,
    now: Optional[datetime] = None,
) -> MigrationJob:
    LOG.info("Starting migration for %s...", subject)
    try:
        repositories = resolve_repositories(client, subject, config.exclude_repo)

        if not config.force_new_migration:
            existing = find_reusable_migration(
                client.list_migrations(subject),
                repositories,
                now or datetime.now(timezone.utc),
                timedelta(minutes=config.reuse_window_minutes),
            )
            if existing:
                LOG.info(
                    "Found existing migration for %s [#%s, from: %s].",
                    subject,
                    existing["id"],
                    existing["created_at"],
                )
                return MigrationJob(id=existing["id"])

        migration = client.start_migration(subject, repositories)
        LOG.info("Started migration for %s [#%s] covering %d repositories.", subject, migration["id"], len(repositories))
        return MigrationJob(id=migration["id"])
    except Exception as exc:  # noqa: BLE001
        LOG.error("Failed to start migration for %s: %s", subject, exc)
        LOG.debug("Traceback:\n%s", "".join(traceback.format_exc()))
        return MigrationJob.unstarted()


def acquire_jobs(
    client: MigrationStarter,
    subjects: Sequence[Subject],
    config: BackupConfig,
    now: Optional[datetime] = None,
) -> RunState:
    state = RunState()
    for subject in subjects:
        state.set_job(subject, acquire_job(client, subject, config, now))
    return state
