from .api import GitHubAPI
from .migrations import EXPORTED, FAILED, MigrationClient

__all__ = [
    "GitHubAPI",
    "MigrationClient",
    "EXPORTED",
    "FAILED",
]
