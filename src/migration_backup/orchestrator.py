from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .acquisition import acquire_jobs
from .config import BackupConfig, ConfigurationError
from .github import GitHubAPI, MigrationClient
from .job_engine import MigrationEngine
from .models import RunState, Subject
from .resolver import resolve_subjects
from .storage import ArchiveStore

LOG = logging.getLogger(__name__)

ClientFactory = Callable[[BackupConfig], MigrationClient]


def create_client(config: BackupConfig) -> MigrationClient:
    token = config.auth.resolved_token()
    if not token:
        raise ConfigurationError(
            f"You need to provide a personal access token for your GitHub account in the "
            f"{config.auth.token_env} environment variable. The token needs the `repo` and `admin:org` scopes."
        )
    return MigrationClient(GitHubAPI(token, base_url=config.api_url))


@dataclass
class RunResult:
    login: str
    state: RunState
    started_at: datetime
    completed_at: datetime
    failed: List[Subject] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class BackupOrchestrator:
    """Resolves subjects, acquires one migration per subject and drives them to completion."""

    def __init__(
        self,
        config: BackupConfig,
        client_factory: ClientFactory = create_client,
        stop_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._stop_event = stop_event
        self._sleep = sleep

    def run(self) -> RunResult:
        started_at = datetime.now(timezone.utc)
        config = self._config
        client = self._client_factory(config)

        login, subjects = resolve_subjects(client, config.exclude)
        state = acquire_jobs(client, subjects, config)

        engine = MigrationEngine(
            client,
            ArchiveStore(config.out_dir),
            extract=config.extract,
            keep_archives=config.keep_archives,
            poll_interval=config.poll_interval_seconds,
            stop_event=self._stop_event,
            sleep=self._sleep,
        )
        engine.run(state)

        result = RunResult(
            login=login,
            state=state,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            failed=state.failed_subjects(),
        )
        for subject, job in state.items():
            LOG.info("%s: %s [#%s]", subject, job.state.value, job.id if job.id is not None else "-")
        return result
