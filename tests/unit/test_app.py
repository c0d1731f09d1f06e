"""
Unit tests for the orchestrator factory, logging setup and the run.py CLI.
"""

import json
import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import MagicMock, patch

import pytest

import run
from backupsync import configure_logging, create_orchestrator
from backupsync.backup.orchestrator import RunOrchestrator
from backupsync.config import DevelopmentConfig, ProductionConfig
from backupsync.models import ProcessingReport
from backupsync.notifier import NotificationError
from backupsync.settings import LoggingSettings, SettingsError


@pytest.fixture
def settings_file(tmp_path, input_dir, remote_dir):
    path = tmp_path / 'appsettings.json'
    path.write_text(json.dumps({
        'backup': [{'inputPath': str(input_dir), 'destinationPath': 'daily'}],
        'transport': {'protocol': 'local', 'basePath': str(remote_dir)},
        'tmp': 'work',
        'logs': 'log',
    }))
    return path


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger('backupsync')
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


class TestConfigureLogging:
    """Test configure_logging function."""

    def test_configure_logging_handlers(self, settings):
        """Test console and rotating file handlers with default levels."""
        logger = configure_logging(ProductionConfig, settings)

        console, file_handler = logger.handlers
        assert console.level == logging.INFO
        assert isinstance(file_handler, RotatingFileHandler)
        assert file_handler.level == logging.WARNING
        assert file_handler.maxBytes == ProductionConfig.LOG_MAX_BYTES
        assert file_handler.backupCount == 10
        assert file_handler.baseFilename.endswith('backupsync.log')

    def test_configure_logging_settings_levels(self, settings):
        """Test that sink levels from the settings file win."""
        settings.logging = LoggingSettings(console_level='ERROR', file_level='DEBUG')

        logger = configure_logging(DevelopmentConfig, settings)

        assert [h.level for h in logger.handlers] == [logging.ERROR, logging.DEBUG]

    def test_configure_logging_is_repeatable(self, settings):
        """Test that configuring twice does not duplicate handlers."""
        configure_logging(ProductionConfig, settings)
        logger = configure_logging(ProductionConfig, settings)

        assert len(logger.handlers) == 2


class TestCreateOrchestrator:
    """Test create_orchestrator factory."""

    def test_create_orchestrator(self, settings_file, tmp_path):
        """Test loading settings and preparing directories."""
        with patch.object(ProductionConfig, 'TEMP_DIR', None), patch.object(ProductionConfig, 'LOG_DIR', None):
            orchestrator = create_orchestrator('production', str(settings_file))

        assert isinstance(orchestrator, RunOrchestrator)
        assert orchestrator.settings.tmp_dir == str(tmp_path / 'work')
        assert (tmp_path / 'work').is_dir()
        assert (tmp_path / 'log' / 'backupsync.log').exists()
        assert orchestrator.version.startswith('v')

    def test_create_orchestrator_missing_settings(self, tmp_path):
        with pytest.raises(SettingsError):
            create_orchestrator('production', str(tmp_path / 'missing.json'))

    def test_create_orchestrator_runs(self, settings_file, remote_dir):
        """Test a complete run through the factory."""
        with patch.object(ProductionConfig, 'TEMP_DIR', None), patch.object(ProductionConfig, 'LOG_DIR', None):
            report = create_orchestrator('production', str(settings_file)).run()

        assert report.errors == []
        assert sorted(p.name for p in (remote_dir / 'daily').iterdir()) == ['a.txt', 'b.csv', 'c.TXT']


class TestCli:
    """Test run.py entry point."""

    @patch('run.create_orchestrator')
    def test_main_success(self, mock_factory):
        mock_factory.return_value.run.return_value = ProcessingReport()

        assert run.main(['--settings', 'appsettings.json']) == 0
        mock_factory.assert_called_once_with(None, 'appsettings.json')

    @patch('run.create_orchestrator')
    def test_main_errors_exit_non_zero(self, mock_factory):
        mock_factory.return_value.run.return_value = ProcessingReport(errors=['boom'])

        assert run.main([]) == 1

    @patch('run.create_orchestrator')
    def test_main_self_test(self, mock_factory):
        orchestrator = mock_factory.return_value
        orchestrator.self_test.return_value = ProcessingReport()

        assert run.main(['--self-test', '--env', 'development']) == 0
        orchestrator.run.assert_not_called()
        mock_factory.assert_called_once_with('development', None)

    @patch('run.create_orchestrator', side_effect=SettingsError('Settings file not found: x'))
    def test_main_settings_error(self, mock_factory, capsys):
        assert run.main([]) == 1
        assert 'Settings file not found' in capsys.readouterr().err

    @patch('run.create_orchestrator')
    def test_main_notification_error(self, mock_factory):
        mock_factory.return_value.run.side_effect = NotificationError('SMTP down')

        assert run.main([]) == 1

    def test_main_encrypt(self, capsys):
        """Test printing an encrypted value and its salt."""
        assert run.main(['--encrypt', 'secret', '--password', 'master']) == 0

        output = capsys.readouterr().out
        assert output.startswith('value: ')
        assert 'salt: ' in output

    def test_main_encrypt_requires_password(self, capsys):
        assert run.main(['--encrypt', 'secret']) == 2
