"""
Backup processor - runs the complete pipeline for one backup configuration.

Workflow:
1. Validate the input directory
2. Ensure the destination directory exists remotely
3. Select upload candidates (raw files or a dated archive)
4. Upload and verify every candidate
5. Delete temporary files (archives, staged copies, verification copies)
6. Enforce retention locally and remotely

Any failure in steps 1-4 is recorded in the processing report and ends the
pipeline for this configuration only. Steps 5 and 6 always run.
"""

import logging
import os
from typing import List, Optional

from backupsync.models import BackupConfiguration, ProcessingReport, SweepResult, TransferStatus
from .retention import RetentionSweeper
from .selector import CandidateSelector
from .transport import BaseTransport, TransportError
from .verifier import TransferVerifier

logger = logging.getLogger(__name__)


class BackupConfigurationError(Exception):
    """Raised when a backup configuration cannot be processed."""
    pass


class BackupProcessor:
    """
    Processes a single backup configuration.
    """

    def __init__(
        self,
        configuration: BackupConfiguration,
        transport: BaseTransport,
        temp_dir: str,
        report: ProcessingReport,
        sweeper: Optional[RetentionSweeper] = None
    ):
        """
        Initialize backup processor.

        Args:
            configuration: Backup configuration to process
            transport: Transport bound to the remote store root
            temp_dir: Directory for archives and verification copies
            report: Run report to append results to
            sweeper: Retention sweeper (default: sweeper using the current time)
        """
        self.configuration = configuration
        self.transport = transport
        self.temp_dir = temp_dir
        self.report = report
        self.sweeper = sweeper or RetentionSweeper()
        self.scoped_transport = None
        self.temp_artifacts: List[str] = []

    def process(self):
        """Run the pipeline. Never raises."""
        logger.info(f"Processing backup for {self.configuration.input_path}...")

        try:
            self._execute_workflow()
        except Exception as e:
            logger.exception(f"[{self.configuration.input_path}] {e}")
            self._error(str(e), log=False)
        finally:
            self._cleanup_temp_artifacts()

        self._enforce_retention()
        logger.info("Backup processed")

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        self._validate_input()

        logger.info("Ensuring destination dir...")
        self._ensure_destination()
        logger.info("Destination dir OK")

        selector = CandidateSelector(self._get_scoped_transport(), self.temp_dir)
        selection = selector.select(self.configuration)
        self.temp_artifacts.extend(selection.temp_artifacts)
        self.report.files_skipped.extend(selection.skipped)
        for message in selection.errors:
            self._error(message, log=False)

        verifier = TransferVerifier(self._get_scoped_transport(), self.temp_dir)
        for candidate in selection.candidates:
            result = verifier.transfer(candidate)

            if result.verification_copy:
                self.temp_artifacts.append(result.verification_copy)

            if result.status == TransferStatus.UPLOADED:
                self.report.files_uploaded.append(candidate.local_path)
            elif result.status == TransferStatus.ALREADY_EXISTS:
                self.report.files_skipped.append(candidate.remote_name)
            else:
                self._error(result.message, log=False)

    def _validate_input(self):
        input_path = self.configuration.input_path

        if not input_path:
            raise BackupConfigurationError("Backup input dir empty")
        if not os.path.isdir(input_path):
            raise BackupConfigurationError(f"Backup input dir does not exist: {input_path}")

    def _ensure_destination(self):
        """
        Create the destination directory below the transport root if missing.

        Raises:
            BackupConfigurationError: If the directory cannot be created
            TransportError: If the remote store cannot be reached
        """
        destination = self.configuration.destination_path
        if not destination or not destination.strip():
            return

        if self.transport.directory_exists(destination):
            return

        logger.info(f"Creating destination dir: {destination}")
        if not self.transport.create_directory(destination):
            raise BackupConfigurationError(f"Failed to create destination dir: {destination}")

    def _get_scoped_transport(self) -> BaseTransport:
        if self.scoped_transport is None:
            self.scoped_transport = self.transport.clone_scoped_to(self.configuration.destination_path)
        return self.scoped_transport

    def _cleanup_temp_artifacts(self):
        """Delete temp files; a file that is already gone counts as deleted."""
        if not self.temp_artifacts:
            return

        logger.info("Cleaning up tmp files")
        for path in self.temp_artifacts:
            logger.debug(f"Deleting: {path}")
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                self._error(f"Failed to delete tmp file {path}: {e}")

        self.temp_artifacts = []
        logger.info("Tmp files cleaned up")

    def _enforce_retention(self):
        """Run the local then the remote sweep; a failing sweep is recorded, never raised."""
        try:
            self._merge_sweep(self.sweeper.sweep_local(self.configuration), remote=False)
        except Exception as e:
            logger.exception(f"[{self.configuration.input_path}] Local cleanup failed: {e}")
            self._error(f"Local cleanup failed: {e}", log=False)

        try:
            transport = self._get_scoped_transport()
        except (TransportError, ValueError) as e:
            self._error(f"Remote cleanup skipped: {e}")
            return

        try:
            self._merge_sweep(self.sweeper.sweep_remote(self.configuration, transport), remote=True)
        except Exception as e:
            logger.exception(f"[{self.configuration.input_path}] Remote cleanup failed: {e}")
            self._error(f"Remote cleanup failed: {e}", log=False)

    def _merge_sweep(self, result: SweepResult, remote: bool):
        if remote:
            self.report.files_cleaned_up_remotely.extend(result.deleted)
        else:
            self.report.files_cleaned_up_locally.extend(result.deleted)
        for message in result.errors:
            self._error(message, log=False)

    def _error(self, message: str, log: bool = True):
        """Record an error for this configuration in the run report."""
        message = f"[{self.configuration.input_path}] {message}"
        if log:
            logger.error(message)
        self.report.errors.append(message)
