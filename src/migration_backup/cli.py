from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence
from zoneinfo import ZoneInfo

from croniter import croniter

from .config import BackupConfig, ConfigurationError, SchedulerConfig, build_config
from .job_engine import RunCancelled
from .logger import configure_logging
from .orchestrator import BackupOrchestrator

CONFIG_ENV = "MIGRATION_BACKUP_CONFIG"

EXIT_OK = 0
EXIT_FAILED_SUBJECTS = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

# Upper bound for one idle wait of the scheduler.
MAX_IDLE_SECONDS = 60

EPILOG = """examples:
  migration-backup
      Back up all your repositories, including the ones in organizations you are an admin of.
  migration-backup --out-dir ~/gh-backups --extract
      Back up everything, extract the archives into a directory named after the
      user/organization and delete the archive files afterwards.
  migration-backup --exclude "b.*" --exclude-repo "baltpeter/.*-config"
      Skip users/organizations starting with a `b` and `-config` repositories of `baltpeter`.
"""


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Back up all your data on GitHub using the migration API.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=os.getenv(CONFIG_ENV),
        help=f"Optional configuration YAML file (default ${CONFIG_ENV}). Command-line flags take precedence.",
    )
    parser.add_argument(
        "--force-new-migration",
        action="store_true",
        default=None,
        help="Always create a new migration instead of reusing one created in the last hour.",
    )
    parser.add_argument(
        "--out-dir",
        default=None,
        help="Directory to store the archives in (default: archives).",
    )
    parser.add_argument(
        "--extract",
        action="store_true",
        default=None,
        help=(
            "Extract the archives into a directory named after the user/organization. "
            "Previous extractions are replaced and the archives are deleted afterwards."
        ),
    )
    parser.add_argument(
        "--keep-archives",
        action="store_true",
        default=None,
        help="With --extract, keep the archive files after extracting them.",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=None,
        help=(
            "Case-insensitive regex matched against the full user or organization name to skip it "
            "(can be specified multiple times)."
        ),
    )
    parser.add_argument(
        "--exclude-repo",
        action="append",
        default=None,
        help=(
            "Case-insensitive regex matched against the full repository name (owner/repo) to skip it "
            "(can be specified multiple times)."
        ),
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL"),
        help="Log level (default INFO, or the level from the configuration file).",
    )
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "force_new_migration": args.force_new_migration,
        "out_dir": args.out_dir,
        "extract": args.extract,
        "keep_archives": args.keep_archives,
        "exclude": args.exclude,
        "exclude_repo": args.exclude_repo,
    }


def load_configuration(args: argparse.Namespace) -> BackupConfig:
    path = Path(args.config).expanduser() if args.config else None
    return build_config(path, cli_overrides(args))


def run_backup(config: BackupConfig, stop_event: Optional[threading.Event] = None) -> int:
    orchestrator = BackupOrchestrator(config=config, stop_event=stop_event)
    try:
        result = orchestrator.run()
    except ConfigurationError as exc:
        logging.error("Configuration error: %s", exc)
        return EXIT_FATAL
    except RunCancelled:
        raise
    except Exception as exc:  # noqa: BLE001
        logging.error("Unable to determine what to back up: %s", exc)
        logging.debug("Traceback:\n%s", "".join(traceback.format_exc()))
        return EXIT_FATAL

    if result.success:
        logging.info(
            "Backup of %d subject(s) succeeded in %.2fs",
            len(list(result.state.items())),
            (result.completed_at - result.started_at).total_seconds(),
        )
        return EXIT_OK

    logging.error("Backup failed for: %s", ", ".join(str(subject) for subject in result.failed))
    return EXIT_FAILED_SUBJECTS


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "INFO")

    try:
        config = load_configuration(args)
    except ConfigurationError as exc:
        logging.error("Configuration error: %s", exc)
        return EXIT_FATAL

    if not args.log_level:
        configure_logging(config.logging.level)

    if config.scheduler:
        return run_with_scheduler(args, config)

    try:
        return run_backup(config)
    except KeyboardInterrupt:
        logging.warning("Interrupted; completed archives are kept, partial downloads were discarded")
        return EXIT_INTERRUPTED


def run_with_scheduler(args: argparse.Namespace, initial_config: BackupConfig) -> int:
    stop_event = threading.Event()

    def _handle_signal(signum: int, _frame: Optional[object]) -> None:
        logging.info("Received signal %s; stopping after the current subject", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    return ScheduledBackups(args, initial_config, stop_event).run()


class ScheduledBackups:
    """Repeats :func:`run_backup` on the configured cron schedule.

    The configuration file is re-read before every run; a file that no longer
    parses keeps the previous settings, and one without a ``scheduler`` block
    ends the loop. :meth:`run` returns the worst exit code of all runs, or
    ``EXIT_INTERRUPTED`` when a run was cancelled part-way.
    """

    def __init__(self, args: argparse.Namespace, config: BackupConfig, stop_event: threading.Event) -> None:
        if not config.scheduler:
            raise ValueError("Scheduler configuration is required")
        self.args = args
        self.config = config
        self.schedule: SchedulerConfig = config.scheduler
        self.stop_event = stop_event
        self.worst_exit_code = EXIT_OK

    def now(self) -> datetime:
        return datetime.now(ZoneInfo(self.schedule.timezone))

    def run(self) -> int:
        due = self.now() if self.schedule.run_on_startup else _next_run(self.schedule.cron, self.now())
        logging.info("First run at %s", due.isoformat())

        while not self.stop_event.is_set():
            remaining = (due - self.now()).total_seconds()
            if remaining > 0:
                self.stop_event.wait(min(remaining, MAX_IDLE_SECONDS))
                continue

            if not self.reload():
                logging.info("No scheduler in the reloaded configuration; stopping")
                break

            try:
                exit_code = run_backup(self.config, stop_event=self.stop_event)
            except RunCancelled:
                logging.warning("Run cancelled; unfinished migrations are picked up by the next run")
                self.worst_exit_code = EXIT_INTERRUPTED
                break

            if exit_code != EXIT_OK:
                logging.warning("Scheduled run finished with exit code %s", exit_code)
            self.worst_exit_code = max(self.worst_exit_code, exit_code)

            due = _next_run(self.schedule.cron, self.now())
            logging.info("Next run at %s", due.isoformat())

        logging.info("Scheduler stopped (exit code %s)", self.worst_exit_code)
        return self.worst_exit_code

    def reload(self) -> bool:
        """Re-read the configuration; ``False`` once the schedule was removed."""
        try:
            config = load_configuration(self.args)
        except ConfigurationError as exc:
            logging.error("Keeping the previous configuration; reload failed: %s", exc)
            return True

        if not config.scheduler:
            return False
        self.config = config
        self.schedule = config.scheduler
        return True


def _next_run(cron_expression: str, reference: datetime) -> datetime:
    return croniter(cron_expression, reference).get_next(datetime)


if __name__ == "__main__":
    sys.exit(main())
