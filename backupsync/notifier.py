"""
Email notification of run summaries.

The summary lists uploaded files, remote and local cleanups and errors, one
entry per line, with '---' for an empty section.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage as MIMEEmailMessage
from typing import Any, Dict, List

from backupsync.models import ProcessingReport

logger = logging.getLogger(__name__)

EMPTY_SECTION = '---'


class NotificationError(Exception):
    """Raised when an email cannot be sent."""
    pass


@dataclass(frozen=True)
class EmailAccount:
    """SMTP account used to send notifications."""
    host: str
    port: int = 587
    username: str = ''
    password: str = ''
    sender: str = ''
    use_ssl: bool = False
    use_starttls: bool = True
    timeout: int = 30

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmailAccount':
        known = {name for name in cls.__dataclass_fields__}
        values = {key: value for key, value in data.items() if key in known and value is not None}
        if 'port' in values:
            values['port'] = int(values['port'])
        if not values.get('host'):
            raise ValueError("Email account requires a host")
        return cls(**values)

    @property
    def from_address(self) -> str:
        return self.sender or self.username


@dataclass(frozen=True)
class EmailMessage:
    title: str
    body: str
    is_html: bool = False


def format_section(header: str, entries: List[str]) -> str:
    lines = '\n'.join(entries) if entries else EMPTY_SECTION
    return f"{header}\n{lines}"


def compose_summary(report: ProcessingReport, context: str) -> EmailMessage:
    """
    Build the run summary message.

    Args:
        report: Processing report of the finished run
        context: Label identifying the installation (e.g. host name)

    Returns:
        Plain text EmailMessage; the title is flagged when errors occurred
    """
    title = f"{context} :: PROCESSING LOG"
    if report.has_errors:
        title += " :: ERRORS OCCURRED"

    sections = [
        format_section("Files uploaded:", report.files_uploaded),
        format_section("Files cleaned up remotely:", report.files_cleaned_up_remotely),
        format_section("Files cleaned up locally:", report.files_cleaned_up_locally),
        format_section("Errors occurred during backup utility run:", report.errors),
    ]
    return EmailMessage(title=title, body='\n\n'.join(sections), is_html=False)


class EmailNotifier:
    """Sends messages through an SMTP account."""

    def send(self, account: EmailAccount, message: EmailMessage, recipient: str):
        """
        Send a message to one recipient.

        Raises:
            NotificationError: If the SMTP conversation fails
        """
        mime_message = MIMEEmailMessage()
        mime_message['Subject'] = message.title
        mime_message['From'] = account.from_address
        mime_message['To'] = recipient
        mime_message.set_content(message.body, subtype='html' if message.is_html else 'plain')

        try:
            if account.use_ssl:
                smtp = smtplib.SMTP_SSL(account.host, account.port, timeout=account.timeout)
            else:
                smtp = smtplib.SMTP(account.host, account.port, timeout=account.timeout)

            with smtp:
                if account.use_starttls and not account.use_ssl:
                    smtp.starttls()
                if account.username:
                    smtp.login(account.username, account.password)
                smtp.send_message(mime_message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email to {recipient}: {e}")

        logger.info(f"Email sent to {recipient}")
