"""
Retention policy enforcement for backups.

Deletes entries older than a configured number of days from the input
directory (by file creation time) and from the remote destination (by
remote last-modified time). A missing or negative threshold disables the
sweep entirely.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from backupsync.models import BackupConfiguration, SweepResult
from .transport import BaseTransport, TransportError

logger = logging.getLogger(__name__)


def retention_enabled(days: Optional[int]) -> bool:
    return days is not None and days >= 0


def is_expired(timestamp: datetime, now: datetime, days: int) -> bool:
    """
    Check whether an entry is strictly older than the retention period.

    An entry exactly `days` old is kept.
    """
    return now - timestamp > timedelta(days=days)


def get_creation_time(path: str) -> datetime:
    """
    Get a file's creation time as an aware UTC datetime.

    Uses st_birthtime where the platform provides it and falls back to
    st_ctime (creation time on Windows, metadata change time on Linux).
    """
    stat = os.stat(path)
    timestamp = getattr(stat, 'st_birthtime', None) or stat.st_ctime
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class RetentionSweeper:
    """
    Applies the age-based retention rule to one backup configuration.

    Deletion failures are recorded per entry and never stop the sweep.
    """

    def __init__(self, clock=None):
        """
        Initialize retention sweeper.

        Args:
            clock: Optional callable returning the current aware datetime
        """
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def sweep_local(self, configuration: BackupConfiguration) -> SweepResult:
        """
        Delete files in the input directory older than input_delete_older_than_days.

        Only the top level of the input directory is swept. An invalid input
        path yields no deletions and no errors.
        """
        result = SweepResult()
        days = configuration.input_delete_older_than_days

        if not retention_enabled(days) or not configuration.input_path:
            return result
        if not os.path.isdir(configuration.input_path):
            return result

        logger.info(f"Cleaning up local files older than: {days} day(s)...")
        now = self.clock()

        try:
            with os.scandir(configuration.input_path) as entries:
                files = sorted(entry.path for entry in entries if entry.is_file())
        except OSError as e:
            message = f"Failed to list local files of {configuration.input_path}: {e}"
            logger.error(message)
            result.errors.append(message)
            return result

        for path in files:
            try:
                if not is_expired(get_creation_time(path), now, days):
                    continue
                logger.info(f"Cleaning up: {path}")
                os.remove(path)
                result.deleted.append(path)
            except FileNotFoundError:
                # Already gone
                continue
            except OSError as e:
                message = f"Failed to clean up local file {path}: {e}"
                logger.error(message)
                result.errors.append(message)

        logger.info("Local file cleanup completed")
        return result

    def sweep_remote(self, configuration: BackupConfiguration, transport: BaseTransport) -> SweepResult:
        """
        Delete remote entries older than destination_delete_older_than_days.

        Args:
            configuration: Backup configuration
            transport: Transport scoped to the configuration's destination

        Returns:
            SweepResult with the fully qualified URIs of deleted entries
        """
        result = SweepResult()
        days = configuration.destination_delete_older_than_days

        if not retention_enabled(days):
            return result

        logger.info(f"Cleaning up remote files older than: {days} day(s)...")
        now = self.clock()
        location = transport.effective_location_uri()

        try:
            entries = transport.list_entries()
        except TransportError as e:
            message = f"Failed to obtain remote entries of {location}: {e}"
            logger.error(message)
            result.errors.append(message)
            return result

        for entry in entries:
            try:
                last_modified = transport.get_last_modified(entry)
            except TransportError as e:
                # Directories and entries without permissions end up here
                message = f"Failed to obtain '{entry}' last modified date: {e}"
                logger.warning(message)
                result.errors.append(message)
                continue

            if not is_expired(last_modified, now, days):
                continue

            uri = f"{location}/{entry}"
            logger.info(f"Cleaning up: {uri}")
            try:
                deleted = transport.delete(entry)
            except TransportError as e:
                message = f"Failed to clean remote file {uri}: {e}"
                logger.error(message)
                result.errors.append(message)
                continue

            if deleted:
                logger.info("File cleaned up")
                result.deleted.append(uri)
            else:
                message = f"Failed to clean remote file {uri}"
                logger.error(message)
                result.errors.append(message)

        logger.info("Remote file cleanup completed")
        return result
