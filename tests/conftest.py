"""
Shared pytest fixtures for migration backup tests.

Provides:
- An in-memory stand-in for the GitHub migrations API
- Helpers to build ``.tar.gz`` migration archives
- A baseline configuration pointing at ``tmp_path``
"""

from __future__ import annotations

import io
import tarfile
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pytest

from migration_backup.config import BackupConfig
from migration_backup.models import Repository, Subject

NOW = datetime(2024, 5, 14, 12, 0, tzinfo=timezone.utc)


def iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def make_archive(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeMigrationClient:
    """Records every call and answers from canned data.

    ``statuses`` maps ``(subject name, migration id)`` to a list of states
    returned one per status check; the last one repeats.
    """

    def __init__(self, login: str = "baltpeter", now: datetime = NOW) -> None:
        self.login = login
        self.now = now
        self.memberships: List[Tuple[str, str]] = []
        self.repos: Dict[str, List[Repository]] = {}
        self.migrations: Dict[str, List[Dict[str, Any]]] = {}
        self.statuses: Dict[Tuple[str, int], List[str]] = {}
        self.created_at: Dict[Tuple[str, int], str] = {}
        self.archives: Dict[Tuple[str, int], bytes] = {}
        self.errors: Dict[Tuple[str, str], Exception] = {}
        self.next_id = 1000

        self.started: List[Tuple[str, List[str]]] = []
        self.status_checks: List[Tuple[str, int]] = []
        self.downloads: List[Tuple[str, int]] = []
        self.repo_listings: List[str] = []

    def _maybe_raise(self, operation: str, subject: Subject) -> None:
        error = self.errors.get((operation, subject.name))
        if error is not None:
            raise error

    def authenticated_login(self) -> str:
        return self.login

    def admin_organizations(self) -> List[str]:
        return [org for org, role in self.memberships if role == "admin"]

    def list_repositories(self, subject: Subject) -> List[Repository]:
        self.repo_listings.append(subject.name)
        self._maybe_raise("repos", subject)
        return list(self.repos.get(subject.name, []))

    def list_migrations(self, subject: Subject) -> List[Dict[str, Any]]:
        self._maybe_raise("migrations", subject)
        return list(self.migrations.get(subject.name, []))

    def start_migration(self, subject: Subject, repositories: Sequence[Repository]) -> Dict[str, Any]:
        self._maybe_raise("start", subject)
        migration_id = self.next_id
        self.next_id += 1
        self.started.append((subject.name, [repo.full_name for repo in repositories]))
        self.created_at.setdefault((subject.name, migration_id), iso(self.now))
        self.statuses.setdefault((subject.name, migration_id), ["exported"])
        return {"id": migration_id, "created_at": self.created_at[(subject.name, migration_id)]}

    def get_migration(self, subject: Subject, migration_id: int) -> Dict[str, Any]:
        self.status_checks.append((subject.name, migration_id))
        self._maybe_raise("status", subject)
        states = self.statuses.get((subject.name, migration_id), ["pending"])
        state = states.pop(0) if len(states) > 1 else states[0]
        return {
            "id": migration_id,
            "state": state,
            "created_at": self.created_at.get((subject.name, migration_id), iso(self.now)),
        }

    @contextmanager
    def download_archive(self, subject: Subject, migration_id: int) -> Iterator[Iterator[bytes]]:
        self.downloads.append((subject.name, migration_id))
        self._maybe_raise("download", subject)
        payload = self.archives.get((subject.name, migration_id), make_archive({"repo/README": b"hi"}))
        yield iter([payload[: len(payload) // 2], payload[len(payload) // 2 :]])


@pytest.fixture
def fake_client() -> FakeMigrationClient:
    return FakeMigrationClient()


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    return tmp_path / "archives"


@pytest.fixture
def config(out_dir: Path) -> BackupConfig:
    return BackupConfig(out_dir=out_dir, poll_interval_seconds=0)


def repo(repo_id: int, full_name: str) -> Repository:
    return Repository(id=repo_id, full_name=full_name)


def migration(migration_id: int, created: datetime, repo_ids: Sequence[int]) -> Dict[str, Any]:
    return {
        "id": migration_id,
        "created_at": iso(created),
        "repositories": [{"id": repo_id} for repo_id in repo_ids],
    }


def minutes_ago(minutes: int, now: Optional[datetime] = None) -> datetime:
    return (now or NOW) - timedelta(minutes=minutes)
