from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

USER = "user"
ORG = "org"


class JobStateError(Exception):
    """Raised when a terminal migration job is asked to transition again."""


@dataclass(frozen=True)
class Subject:
    """The authenticated user or one organization it administers."""

    kind: str
    name: str

    @classmethod
    def user(cls, login: str) -> "Subject":
        return cls(kind=USER, name=login)

    @classmethod
    def org(cls, login: str) -> "Subject":
        return cls(kind=ORG, name=login)

    @property
    def is_user(self) -> bool:
        return self.kind == USER

    def __str__(self) -> str:
        return f'{self.kind} "{self.name}"'


@dataclass(frozen=True)
class Repository:
    id: int
    full_name: str


RepositorySet = Tuple[Repository, ...]


class JobState(str, enum.Enum):
    PENDING = "pending"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


@dataclass
class MigrationJob:
    id: Optional[int] = None
    state: JobState = JobState.PENDING

    def __post_init__(self) -> None:
        if self.id is None:
            self.state = JobState.FAILED

    @classmethod
    def unstarted(cls) -> "MigrationJob":
        return cls(id=None, state=JobState.FAILED)

    @property
    def downloaded(self) -> bool:
        return self.state is JobState.DOWNLOADED

    @property
    def failed(self) -> bool:
        return self.state is JobState.FAILED

    @property
    def pending(self) -> bool:
        return self.state is JobState.PENDING

    @property
    def terminal(self) -> bool:
        return not self.pending

    def mark_downloaded(self) -> None:
        self._transition(JobState.DOWNLOADED)

    def mark_failed(self) -> None:
        self._transition(JobState.FAILED)

    def _transition(self, target: JobState) -> None:
        if self.terminal:
            raise JobStateError(f"Migration #{self.id} is already {self.state.value}; cannot mark {target.value}")
        self.state = target


@dataclass
class RunState:
    """Per-subject jobs for a single invocation, account first."""

    user_subject: Optional[Subject] = None
    user_job: Optional[MigrationJob] = None
    orgs: Dict[str, MigrationJob] = field(default_factory=dict)

    def set_job(self, subject: Subject, job: MigrationJob) -> None:
        if subject.is_user:
            self.user_subject = subject
            self.user_job = job
        else:
            self.orgs[subject.name] = job

    def job_for(self, subject: Subject) -> Optional[MigrationJob]:
        if subject.is_user:
            return self.user_job
        return self.orgs.get(subject.name)

    def items(self) -> Iterator[Tuple[Subject, MigrationJob]]:
        if self.user_subject is not None and self.user_job is not None:
            yield self.user_subject, self.user_job
        for org, job in self.orgs.items():
            yield Subject.org(org), job

    def pending(self) -> List[Tuple[Subject, MigrationJob]]:
        return [(subject, job) for subject, job in self.items() if job.pending]

    def all_terminal(self) -> bool:
        return all(job.terminal for _, job in self.items())

    def any_failed(self) -> bool:
        return any(job.failed for _, job in self.items())

    def failed_subjects(self) -> List[Subject]:
        return [subject for subject, job in self.items() if job.failed]
