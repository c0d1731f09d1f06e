"""
Run orchestrator - processes every backup configuration and reports.

A run processes the configurations strictly in settings order, collects a
single ProcessingReport and emails a summary of it. The self-test checks
connectivity and lists the remote root without uploading anything.
"""

import logging
from typing import Optional

from backupsync.models import ProcessingReport
from backupsync.notifier import EmailNotifier, compose_summary
from .processor import BackupConfigurationError, BackupProcessor
from .retention import RetentionSweeper
from .transport import BaseTransport, TransportError, create_transport

logger = logging.getLogger(__name__)

RULE = '-' * 100


class RunOrchestrator:
    """
    Runs the backup engine once.
    """

    def __init__(
        self,
        settings,
        notifier: Optional[EmailNotifier] = None,
        transport: Optional[BaseTransport] = None,
        sweeper: Optional[RetentionSweeper] = None,
        app_name: str = 'backupsync',
        version: str = ''
    ):
        """
        Initialize run orchestrator.

        Args:
            settings: Loaded backupsync.settings.Settings
            notifier: Email notifier (default: SMTP notifier)
            transport: Transport bound to the remote store root
                (default: built from settings.transport)
            sweeper: Retention sweeper shared by all configurations
            app_name: Name shown in the run banners
            version: Version shown in the run banners
        """
        self.settings = settings
        self.notifier = notifier or EmailNotifier()
        self.transport = transport
        self.sweeper = sweeper or RetentionSweeper()
        self.app_name = app_name
        self.version = version

    def _get_transport(self) -> BaseTransport:
        if self.transport is None:
            self.transport = create_transport(self.settings.transport)
        return self.transport

    def run(self) -> ProcessingReport:
        """
        Process all backup configurations and send the summary email.

        Notification failures are not caught here.

        Returns:
            ProcessingReport of the run
        """
        report = ProcessingReport()
        self._say_hello()

        try:
            logger.info("Getting backup configuration...")
            configurations = self.settings.backup
            if not configurations:
                raise BackupConfigurationError("No backup configuration found")

            logger.info(f"{len(configurations)} backup configurations found")
            transport = self._get_transport()

            for configuration in configurations:
                processor = BackupProcessor(
                    configuration,
                    transport,
                    self.settings.tmp_dir,
                    report,
                    sweeper=self.sweeper
                )
                processor.process()

        except Exception as e:
            logger.exception(str(e))
            report.errors.append(str(e))

        self.notify(report)
        self._say_goodbye()
        return report

    def notify(self, report: ProcessingReport):
        """Email the report summary to every configured recipient."""
        account = self.settings.email_sender
        recipients = self.settings.email_recipients

        if account is None or not recipients:
            logger.warning("Email sender or recipients not configured, skipping notification")
            return

        logger.info("Emailing notification...")
        message = compose_summary(report, self.settings.email_context)
        for recipient in recipients:
            self.notifier.send(account, message, recipient)
        logger.info("Email(s) sent")

    def self_test(self) -> ProcessingReport:
        """
        Connect to the remote store and list its root with last-modified times.

        Entries whose last-modified time cannot be read (directories, missing
        permissions) are reported as errors and the listing continues.

        Returns:
            ProcessingReport holding the errors met
        """
        report = ProcessingReport()
        self._say_hello()
        logger.info("SELF-TEST")

        try:
            transport = self._get_transport()
            logger.info("Trying to connect...")
            transport.can_connect()
            logger.info("Connection ok...")
        except (TransportError, ValueError) as e:
            self._record(report, f"Could not connect: {e}")
            self._say_goodbye()
            return report

        location = transport.effective_location_uri()
        logger.info(f"Listing contents of {location}...")
        try:
            entries = transport.list_entries()
        except TransportError as e:
            self._record(report, f"Failed to obtain remote entries: {e}")
            entries = []

        for entry in entries:
            try:
                last_modified = transport.get_last_modified(entry)
                logger.info(f"{entry}: {last_modified:%Y-%m-%d %H:%M:%S %Z}")
            except TransportError as e:
                self._record(report, f"Failed to obtain '{entry}' last modified date: {e}")

        logger.info("Listing complete")
        self._say_goodbye()
        return report

    @staticmethod
    def _record(report: ProcessingReport, message: str):
        logger.error(message)
        report.errors.append(message)

    def _say_hello(self):
        logger.info(f"{self.app_name} :: {self.version}\n{RULE}")

    def _say_goodbye(self):
        logger.info(f"DONE!\n{RULE}")
