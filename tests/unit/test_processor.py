"""
Unit tests for backup processor (backupsync/backup/processor.py).

Tests the per-configuration pipeline end to end against a LocalTransport.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from backupsync.backup.processor import BackupProcessor
from backupsync.backup.retention import RetentionSweeper
from backupsync.backup.transport import TransportError
from backupsync.models import BackupConfiguration, ProcessingReport, SweepResult


def run_processor(configuration, transport, temp_dir, sweeper=None):
    report = ProcessingReport()
    BackupProcessor(configuration, transport, str(temp_dir), report, sweeper=sweeper).process()
    return report


class TestBackupProcessor:
    """Test BackupProcessor workflow."""

    def test_process_uploads_raw_files(self, input_dir, local_transport, remote_dir, temp_dir):
        """Test uploading filtered files into the destination directory."""
        configuration = BackupConfiguration(
            input_path=str(input_dir), destination_path='daily', file_extension_filter='txt'
        )

        report = run_processor(configuration, local_transport, temp_dir)

        assert report.errors == []
        assert report.files_uploaded == [str(input_dir / 'a.txt')]
        assert sorted(p.name for p in (remote_dir / 'daily').iterdir()) == ['a.txt']

    def test_process_is_idempotent(self, input_dir, local_transport, remote_dir, temp_dir):
        """Test that a second run uploads nothing and changes nothing."""
        configuration = BackupConfiguration(input_path=str(input_dir), destination_path='daily')

        first = run_processor(configuration, local_transport, temp_dir)
        remote_after_first = sorted(p.name for p in (remote_dir / 'daily').iterdir())
        second = run_processor(configuration, local_transport, temp_dir)

        assert len(first.files_uploaded) == 3
        assert second.files_uploaded == []
        assert sorted(second.files_skipped) == ['a.txt', 'b.csv', 'c.TXT']
        assert sorted(p.name for p in (remote_dir / 'daily').iterdir()) == remote_after_first
        assert second.errors == []

    def test_process_compressed_archive(self, input_dir, local_transport, remote_dir, temp_dir):
        """Test compressing, uploading and cleaning up the archive."""
        configuration = BackupConfiguration(input_path=str(input_dir), destination_path='zips', compress=True)

        report = run_processor(configuration, local_transport, temp_dir)

        assert report.errors == []
        assert len(report.files_uploaded) == 1
        archive_name = os.path.basename(report.files_uploaded[0])
        assert (remote_dir / 'zips' / archive_name).exists()
        # Archive and verification copy are gone
        assert not os.path.exists(report.files_uploaded[0])
        assert list((temp_dir / 'verification').iterdir()) == []

    def test_process_cleans_up_staged_files(self, nested_input_dir, local_transport, remote_dir, temp_dir):
        """Test that staged copies are removed from the input root."""
        configuration = BackupConfiguration(input_path=str(nested_input_dir), nested=True)

        report = run_processor(configuration, local_transport, temp_dir)

        assert report.errors == []
        assert sorted(p.name for p in remote_dir.iterdir()) == [
            'root.dat', 'sub__deep__file.dat', 'sub__other.log'
        ]
        assert sorted(p.name for p in nested_input_dir.iterdir()) == ['root.dat', 'sub']

    def test_process_cleans_up_after_failure(self, nested_input_dir, local_transport, temp_dir):
        """Test that staged copies are removed when the upload fails."""
        configuration = BackupConfiguration(input_path=str(nested_input_dir), nested=True)

        with patch.object(local_transport, 'clone_scoped_to') as mock_clone:
            scoped = MagicMock()
            scoped.exists.return_value = False
            scoped.upload.side_effect = TransportError('connection reset')
            scoped.list_entries.return_value = []
            mock_clone.return_value = scoped

            report = run_processor(configuration, local_transport, temp_dir)

        assert len(report.errors) == 3
        assert all(error.startswith(f"[{nested_input_dir}]") for error in report.errors)
        assert sorted(p.name for p in nested_input_dir.iterdir()) == ['root.dat', 'sub']

    def test_process_missing_input_still_sweeps_remote(self, tmp_path, local_transport, remote_dir, temp_dir):
        """Test that an invalid input path is reported and retention still runs."""
        destination = remote_dir / 'daily'
        destination.mkdir()
        old = destination / 'old.zip'
        old.write_text('old')
        timestamp = (datetime.now(timezone.utc) - timedelta(days=40)).timestamp()
        os.utime(old, (timestamp, timestamp))
        missing = tmp_path / 'missing'
        configuration = BackupConfiguration(
            input_path=str(missing), destination_path='daily', destination_delete_older_than_days=30
        )

        report = run_processor(configuration, local_transport, temp_dir)

        assert report.errors == [f"[{missing}] Backup input dir does not exist: {missing}"]
        assert not old.exists()
        assert len(report.files_cleaned_up_remotely) == 1
        assert report.files_cleaned_up_remotely[0].endswith('/daily/old.zip')

    def test_process_empty_input_path(self, local_transport, temp_dir):
        """Test that an empty input path is an error."""
        report = run_processor(BackupConfiguration(input_path=''), local_transport, temp_dir)

        assert report.errors == ["[] Backup input dir empty"]

    def test_process_creates_destination(self, input_dir, local_transport, remote_dir, temp_dir):
        """Test that a missing destination directory is created."""
        configuration = BackupConfiguration(input_path=str(input_dir), destination_path='a/b')

        run_processor(configuration, local_transport, temp_dir)

        assert (remote_dir / 'a' / 'b' / 'a.txt').exists()

    def test_process_destination_creation_failure(self, input_dir, temp_dir):
        """Test that a destination which cannot be created ends the pipeline."""
        transport = MagicMock()
        transport.directory_exists.return_value = False
        transport.create_directory.return_value = False
        configuration = BackupConfiguration(input_path=str(input_dir), destination_path='daily')

        report = run_processor(configuration, transport, temp_dir)

        assert len(report.errors) == 1
        assert 'Failed to create destination dir: daily' in report.errors[0]
        transport.clone_scoped_to.return_value.upload.assert_not_called()

    def test_process_checksum_mismatch(self, input_dir, local_transport, temp_dir):
        """Test that a mismatching file is an error and not reported as uploaded."""
        configuration = BackupConfiguration(input_path=str(input_dir), file_extension_filter='csv')
        scoped = local_transport.clone_scoped_to('')

        def corrupt_download(name, local_path):
            with open(local_path, 'wb') as f:
                f.write(b'corrupted')
            return True

        with patch.object(local_transport, 'clone_scoped_to', return_value=scoped), \
                patch.object(scoped, 'download', side_effect=corrupt_download):
            report = run_processor(configuration, local_transport, temp_dir)

        assert report.files_uploaded == []
        assert report.errors == [f"[{input_dir}] File sha MISMATCH: b.csv"]

    def test_process_local_retention(self, input_dir, local_transport, temp_dir):
        """Test that old input files are deleted after the upload."""
        configuration = BackupConfiguration(input_path=str(input_dir), input_delete_older_than_days=0)
        sweeper = RetentionSweeper(clock=lambda: datetime.now(timezone.utc) + timedelta(days=1))

        report = run_processor(configuration, local_transport, temp_dir, sweeper=sweeper)

        assert len(report.files_uploaded) == 3
        assert len(report.files_cleaned_up_locally) == 3
        assert list(input_dir.iterdir()) == []

    def test_process_never_raises(self, input_dir, temp_dir):
        """Test that unexpected exceptions are recorded."""
        transport = MagicMock()
        transport.directory_exists.side_effect = RuntimeError('unexpected')
        configuration = BackupConfiguration(input_path=str(input_dir), destination_path='daily')

        report = run_processor(configuration, transport, temp_dir)

        assert report.errors == [f"[{input_dir}] unexpected"]

    def test_process_reuses_leftover_staged_copy(self, nested_input_dir, local_transport, remote_dir, temp_dir):
        """Test that a staged copy left by an interrupted run causes no error on later runs."""
        (nested_input_dir / 'sub__other.log').write_text('log content')
        configuration = BackupConfiguration(input_path=str(nested_input_dir), nested=True)

        first = run_processor(configuration, local_transport, temp_dir)
        second = run_processor(configuration, local_transport, temp_dir)

        assert first.errors == []
        assert second.errors == []
        assert (remote_dir / 'sub__other.log').read_text() == 'log content'
        assert sorted(second.files_skipped) == ['root.dat', 'sub__deep__file.dat', 'sub__other.log']
        assert sorted(p.name for p in nested_input_dir.iterdir()) == ['root.dat', 'sub']


class TestBackupProcessorFailures:
    """Test that failing stages are recorded and leave no temp files behind."""

    def test_download_failure_removes_verification_copy(self, input_dir, local_transport, temp_dir):
        """Test that a partial verification download is deleted."""
        configuration = BackupConfiguration(input_path=str(input_dir), file_extension_filter='csv')
        scoped = local_transport.clone_scoped_to('')

        def interrupted_download(name, local_path):
            with open(local_path, 'wb') as f:
                f.write(b'par')
            raise TransportError('connection reset')

        with patch.object(local_transport, 'clone_scoped_to', return_value=scoped), \
                patch.object(scoped, 'download', side_effect=interrupted_download):
            report = run_processor(configuration, local_transport, temp_dir)

        assert report.files_uploaded == []
        assert report.errors == [f"[{input_dir}] Failed to download file: b.csv: connection reset"]
        assert list((temp_dir / 'verification').iterdir()) == []

    def test_checksum_mismatch_removes_verification_copy(self, input_dir, local_transport, temp_dir):
        """Test that a mismatching verification copy is deleted."""
        configuration = BackupConfiguration(input_path=str(input_dir), file_extension_filter='csv')
        scoped = local_transport.clone_scoped_to('')

        def corrupt_download(name, local_path):
            with open(local_path, 'wb') as f:
                f.write(b'corrupted')
            return True

        with patch.object(local_transport, 'clone_scoped_to', return_value=scoped), \
                patch.object(scoped, 'download', side_effect=corrupt_download):
            report = run_processor(configuration, local_transport, temp_dir)

        assert len(report.errors) == 1
        assert list((temp_dir / 'verification').iterdir()) == []

    def test_local_sweep_failure_is_recorded(self, input_dir, local_transport, remote_dir, temp_dir):
        """Test that an exception from the local sweep does not escape process()."""
        configuration = BackupConfiguration(input_path=str(input_dir), input_delete_older_than_days=7)
        sweeper = MagicMock()
        sweeper.sweep_local.side_effect = PermissionError('Permission denied')
        sweeper.sweep_remote.return_value = SweepResult()

        report = run_processor(configuration, local_transport, temp_dir, sweeper=sweeper)

        assert len(report.files_uploaded) == 3
        assert report.errors == [f"[{input_dir}] Local cleanup failed: Permission denied"]
        sweeper.sweep_remote.assert_called_once()

    def test_remote_sweep_failure_is_recorded(self, input_dir, local_transport, temp_dir):
        """Test that an exception from the remote sweep does not escape process()."""
        configuration = BackupConfiguration(input_path=str(input_dir))
        sweeper = MagicMock()
        sweeper.sweep_local.return_value = SweepResult()
        sweeper.sweep_remote.side_effect = RuntimeError('listing broke')

        report = run_processor(configuration, local_transport, temp_dir, sweeper=sweeper)

        assert report.errors == [f"[{input_dir}] Remote cleanup failed: listing broke"]
