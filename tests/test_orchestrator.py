"""End-to-end runs of the orchestrator against the in-memory platform."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import requests

from conftest import FakeMigrationClient, repo
from migration_backup.config import BackupConfig, ConfigurationError
from migration_backup.models import Subject
from migration_backup.orchestrator import BackupOrchestrator, create_client


def run(config: BackupConfig, client: FakeMigrationClient):
    return BackupOrchestrator(config, client_factory=lambda _cfg: client, sleep=lambda _s: None).run()


def test_single_user_scenario(out_dir: Path, config: BackupConfig) -> None:
    now = datetime.now(timezone.utc)
    client = FakeMigrationClient(now=now)
    client.repos["baltpeter"] = [repo(1, "baltpeter/backghup"), repo(2, "baltpeter/website")]

    result = run(config, client)

    assert result.success
    assert result.login == "baltpeter"
    job = result.state.job_for(Subject.user("baltpeter"))
    assert job is not None and job.downloaded
    assert client.started == [("baltpeter", ["baltpeter/backghup", "baltpeter/website"])]
    assert client.status_checks == [("baltpeter", 1000)]
    assert (out_dir / f"{now:%Y-%m-%d}_baltpeter_1000.tar.gz").exists()


def test_one_broken_subject_fails_the_run_after_the_rest_finish(config: BackupConfig) -> None:
    client = FakeMigrationClient()
    client.memberships = [("tweaselORG", "admin"), ("datenanfragen", "admin")]
    client.repos["baltpeter"] = [repo(1, "baltpeter/a")]
    client.repos["datenanfragen"] = [repo(3, "datenanfragen/website")]
    client.errors[("repos", "tweaselORG")] = requests.HTTPError("403")

    result = run(config, client)

    assert not result.success
    assert result.failed == [Subject.org("tweaselORG")]
    assert result.state.job_for(Subject.user("baltpeter")).downloaded
    assert result.state.job_for(Subject.org("datenanfragen")).downloaded


def test_excluded_user_is_not_backed_up(out_dir: Path) -> None:
    config = BackupConfig(out_dir=out_dir, exclude=["b.*"])
    client = FakeMigrationClient()
    client.memberships = [("tweaselORG", "admin")]
    client.repos["tweaselORG"] = [repo(10, "tweaselORG/app")]

    result = run(config, client)

    assert result.success
    assert result.state.user_job is None
    assert client.repo_listings == ["tweaselORG"]


def test_organization_listing_failure_is_fatal(config: BackupConfig) -> None:
    client = FakeMigrationClient()

    def boom():
        raise requests.ConnectionError("offline")

    client.admin_organizations = boom  # type: ignore[method-assign]

    with pytest.raises(requests.ConnectionError):
        run(config, client)
    assert client.started == []


def test_create_client_requires_token(monkeypatch: pytest.MonkeyPatch, config: BackupConfig) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    with pytest.raises(ConfigurationError, match="GITHUB_TOKEN"):
        create_client(config)
