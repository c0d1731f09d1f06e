"""
Shared pytest fixtures for backupsync tests.

This module provides fixtures for:
- Input directories and a local "remote" store under tmp_path
- Backup configurations and settings
- Crypto manager fixtures
- Mock fixtures for external services (S3, SSH, FTP, SMTP)
"""

from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from backupsync.backup.transport import LocalTransport, TransportSettings
from backupsync.models import BackupConfiguration
from backupsync.settings import Settings
from backupsync.utils.crypto import CryptoManager


@pytest.fixture
def input_dir(tmp_path):
    """
    Create an input directory with a few files.

    Creates:
    - a.txt
    - b.csv
    - c.TXT
    """
    directory = tmp_path / 'input'
    directory.mkdir()
    (directory / 'a.txt').write_text('alpha')
    (directory / 'b.csv').write_text('beta')
    (directory / 'c.TXT').write_text('gamma')
    return directory


@pytest.fixture
def nested_input_dir(tmp_path):
    """
    Create an input directory with nested files.

    Creates:
    - root.dat
    - sub/deep/file.dat
    - sub/other.log
    """
    directory = tmp_path / 'nested_input'
    (directory / 'sub' / 'deep').mkdir(parents=True)
    (directory / 'root.dat').write_text('root')
    (directory / 'sub' / 'deep' / 'file.dat').write_text('deep content')
    (directory / 'sub' / 'other.log').write_text('log content')
    return directory


@pytest.fixture
def remote_dir(tmp_path):
    """Directory acting as the remote store root."""
    directory = tmp_path / 'remote'
    directory.mkdir()
    return directory


@pytest.fixture
def temp_dir(tmp_path):
    """Temp directory for archives and verification copies."""
    directory = tmp_path / 'tmp'
    directory.mkdir()
    return directory


@pytest.fixture
def transport_settings(remote_dir):
    return TransportSettings(protocol='local', base_path=str(remote_dir))


@pytest.fixture
def local_transport(transport_settings):
    """LocalTransport bound to the remote store root."""
    return LocalTransport(transport_settings)


@pytest.fixture
def backup_configuration(input_dir):
    """Raw (uncompressed) backup configuration for input_dir."""
    return BackupConfiguration(input_path=str(input_dir), destination_path='daily')


@pytest.fixture
def settings(tmp_path, temp_dir, transport_settings, backup_configuration):
    """Settings with one configuration and no email account."""
    return Settings(
        backup=[backup_configuration],
        transport=transport_settings,
        email_context='test host',
        tmp_dir=str(temp_dir),
        logs_dir=str(tmp_path / 'logs'),
    )


@pytest.fixture(scope='function')
def crypto_manager_initialized():
    """
    Create and initialize a CryptoManager instance.

    Password: test_password_123
    """
    cm = CryptoManager()
    salt = cm.initialize('test_password_123')
    return cm, salt


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP testing.

    Returns the patched SSHClient class; its open_sftp() returns a MagicMock.
    """
    with patch('backupsync.backup.transport.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh


@pytest.fixture
def mock_ftp():
    """
    Mock ftplib.FTP for FTP testing.

    Returns the FTP instance every session receives.
    """
    with patch('backupsync.backup.transport.ftplib.FTP') as mock_ftp_class:
        yield mock_ftp_class.return_value


@pytest.fixture
def mock_smtp():
    """Mock smtplib.SMTP; returns the connection instance."""
    with patch('backupsync.notifier.smtplib.SMTP') as mock_smtp_class:
        instance = mock_smtp_class.return_value
        instance.__enter__.return_value = instance
        yield instance
