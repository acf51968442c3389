from __future__ import annotations

import logging
import os
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable

from .models import Subject

LOG = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
PART_SUFFIX = ".part"


class ArchiveExtractionError(Exception):
    """Raised when an archive cannot be safely unpacked."""


def archive_filename(created_at: str, subject: Subject, migration_id: int) -> str:
    """``<YYYY-MM-DD>_<subject>_<id>.tar.gz``, dated by the migration's creation day."""
    return f"{created_at[:10]}_{subject.name}_{migration_id}{ARCHIVE_SUFFIX}"


@dataclass
class ArchiveStore:
    """Migration archives and their extractions under a single output directory."""

    out_dir: Path

    def ensure(self) -> None:
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def archive_path(self, filename: str) -> Path:
        return self.out_dir / filename

    def extraction_dir(self, subject: Subject) -> Path:
        return self.out_dir / subject.name

    def exists(self, filename: str) -> bool:
        return self.archive_path(filename).exists()

    def write(self, filename: str, chunks: Iterable[bytes]) -> Path:
        """Write ``chunks`` under ``filename`` only once they are all on disk.

        Data goes to a ``.part`` sibling first; an interrupted write never
        leaves a file under the final name.
        """
        target = self.archive_path(filename)
        temp_path = target.with_name(target.name + PART_SUFFIX)
        try:
            with temp_path.open("wb") as fh:
                for chunk in chunks:
                    if chunk:
                        fh.write(chunk)
                fh.flush()
                os.fsync(fh.fileno())
            temp_path.replace(target)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        LOG.debug("Wrote archive %s", target)
        return target

    def extract(self, archive_path: Path, destination: Path) -> int:
        """Replace ``destination`` with the contents of ``archive_path``.

        Returns the number of regular files written.
        """
        if destination.exists():
            shutil.rmtree(destination)
        destination.mkdir(parents=True)
        dest_root = destination.resolve()

        try:
            with tarfile.open(archive_path, "r:*") as tar:
                members = tar.getmembers()
                for member in members:
                    _check_member(member, dest_root)
                tar.extractall(dest_root, members=members, **_extract_options())
        except tarfile.TarError as exc:
            raise ArchiveExtractionError(f"Cannot extract {archive_path}: {exc}") from exc

        files = sum(1 for member in members if member.isfile())
        LOG.info("Extracted %d file(s) from %s into %s", files, archive_path.name, destination)
        return files

    def remove(self, archive_path: Path) -> None:
        archive_path.unlink()
        LOG.debug("Removed archive %s", archive_path)


def _extract_options() -> Dict[str, Any]:
    # Extraction filters only exist from 3.10.12 / 3.11.4 on; older
    # interpreters rely on _check_member alone.
    if hasattr(tarfile, "data_filter"):
        return {"filter": "data"}
    return {}


def _is_inside(dest_root: Path, relative: str) -> bool:
    normalized = os.path.normpath(relative)
    if os.path.isabs(normalized) or normalized == ".." or normalized.startswith(".." + os.sep):
        return False
    try:
        (dest_root / normalized).resolve().relative_to(dest_root)
    except ValueError:
        return False
    return True


def _check_member(member: tarfile.TarInfo, dest_root: Path) -> None:
    if not (member.isfile() or member.isdir() or member.issym() or member.islnk()):
        raise ArchiveExtractionError(f"Unsupported archive member type: {member.name}")

    if not _is_inside(dest_root, member.name):
        raise ArchiveExtractionError(f"Unsafe path in archive: {member.name}")

    if member.issym():
        # Symlink targets are relative to the directory holding the link.
        target = os.path.join(os.path.dirname(member.name), member.linkname)
        if os.path.isabs(member.linkname) or not _is_inside(dest_root, target):
            raise ArchiveExtractionError(f"Symlink escapes destination: {member.name} -> {member.linkname}")
    elif member.islnk() and not _is_inside(dest_root, member.linkname):
        raise ArchiveExtractionError(f"Hardlink escapes destination: {member.name} -> {member.linkname}")
