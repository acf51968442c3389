"""Backs up GitHub users and organizations through the migration (export) API."""

from __future__ import annotations

from .config import BackupConfig, build_config, load_config  # noqa: F401
from .orchestrator import BackupOrchestrator  # noqa: F401

__version__ = "1.1.0"
