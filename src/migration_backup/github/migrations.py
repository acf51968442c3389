from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Sequence

from migration_backup.models import Repository, Subject

from .api import GitHubAPI

EXPORTED = "exported"
FAILED = "failed"


class MigrationClient:
    """User/organization aware wrapper around the GitHub migrations API.

    The user and organization variants of each endpoint only differ in their
    path prefix, so every method takes the :class:`Subject` it acts on.
    """

    def __init__(self, api: GitHubAPI) -> None:
        self._api = api

    @staticmethod
    def _migrations_path(subject: Subject) -> str:
        if subject.is_user:
            return "/user/migrations"
        return f"/orgs/{subject.name}/migrations"

    # Identity ----------------------------------------------------------------
    def authenticated_login(self) -> str:
        return self._api.get("/user")["login"]

    def admin_organizations(self) -> List[str]:
        return [
            membership["organization"]["login"]
            for membership in self._api.iterate("/user/memberships/orgs")
            if membership.get("role") == "admin"
        ]

    # Repositories ------------------------------------------------------------
    def list_repositories(self, subject: Subject) -> List[Repository]:
        if subject.is_user:
            items = self._api.iterate("/user/repos", {"affiliation": "owner"})
        else:
            items = self._api.iterate(f"/orgs/{subject.name}/repos")
        return [Repository(id=item["id"], full_name=item["full_name"]) for item in items]

    # Migrations --------------------------------------------------------------
    def list_migrations(self, subject: Subject) -> List[Dict[str, Any]]:
        return list(self._api.iterate(self._migrations_path(subject)))

    def start_migration(self, subject: Subject, repositories: Sequence[Repository]) -> Dict[str, Any]:
        return self._api.post(
            self._migrations_path(subject),
            {"repositories": [repo.full_name for repo in repositories]},
        )

    def get_migration(self, subject: Subject, migration_id: int) -> Dict[str, Any]:
        return self._api.get(f"{self._migrations_path(subject)}/{migration_id}")

    @contextmanager
    def download_archive(self, subject: Subject, migration_id: int) -> Iterator[Iterator[bytes]]:
        with self._api.stream(f"{self._migrations_path(subject)}/{migration_id}/archive") as chunks:
            yield chunks
