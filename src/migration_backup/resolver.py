from __future__ import annotations

import logging
from typing import List, Protocol, Sequence, Tuple

from .filters import matches
from .models import Repository, RepositorySet, Subject

LOG = logging.getLogger(__name__)


class SubjectSource(Protocol):
    def authenticated_login(self) -> str:
        ...

    def admin_organizations(self) -> List[str]:
        ...

    def list_repositories(self, subject: Subject) -> List[Repository]:
        ...


def resolve_subjects(client: SubjectSource, exclude: Sequence[str]) -> Tuple[str, List[Subject]]:
    """Return the authenticated login and the subjects to back up.

    Errors propagate: without the identity or the organization list there is
    nothing to back up.
    """
    login = client.authenticated_login()
    subjects: List[Subject] = []

    if matches(exclude, login):
        LOG.info("Skipping user %s (excluded)", login)
    else:
        subjects.append(Subject.user(login))

    for org in client.admin_organizations():
        if matches(exclude, org):
            LOG.info("Skipping organization %s (excluded)", org)
            continue
        subjects.append(Subject.org(org))

    LOG.info("Backing up %d subject(s): %s", len(subjects), ", ".join(str(s) for s in subjects) or "-")
    return login, subjects


def resolve_repositories(
    client: SubjectSource,
    subject: Subject,
    exclude_repo: Sequence[str],
) -> RepositorySet:
    repositories = client.list_repositories(subject)
    kept = tuple(repo for repo in repositories if not matches(exclude_repo, repo.full_name))
    skipped = len(repositories) - len(kept)
    if skipped:
        LOG.info("Excluded %d repositories of %s", skipped, subject)
    return kept
