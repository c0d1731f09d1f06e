import os
import logging
from logging.handlers import RotatingFileHandler

__version__ = '1.0.0'


def configure_logging(app_config, settings):
    """Configure application logging"""

    logger = logging.getLogger('backupsync')
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console_level = settings.logging.console_level or app_config.CONSOLE_LOG_LEVEL
    file_level = settings.logging.file_level or app_config.FILE_LOG_LEVEL

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler
    os.makedirs(settings.logs_dir, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(settings.logs_dir, app_config.LOG_FILE_NAME),
        maxBytes=app_config.LOG_MAX_BYTES,
        backupCount=app_config.LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(file_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    logger.info(f"Logging configured (console: {console_level}, file: {file_level})")
    return logger


def create_orchestrator(config_name=None, settings_path=None):
    """
    Orchestrator factory.

    Loads the settings file, prepares the tmp and logs directories and
    configures logging.

    Args:
        config_name: 'development' or 'production' (default: BACKUPSYNC_ENV)
        settings_path: Settings file (default: the config's SETTINGS_FILE)

    Returns:
        RunOrchestrator ready to run

    Raises:
        SettingsError: If the settings file cannot be loaded
    """
    if config_name is None:
        config_name = os.environ.get('BACKUPSYNC_ENV', 'production')

    from backupsync.config import config
    app_config = config[config_name]

    from backupsync.settings import Settings
    from backupsync.utils.crypto import create_crypto_manager

    crypto = create_crypto_manager(app_config.MASTER_PASSWORD, app_config.MASTER_SALT)
    settings = Settings.from_file(
        settings_path or app_config.SETTINGS_FILE,
        crypto=crypto,
        tmp_dir=app_config.TEMP_DIR,
        logs_dir=app_config.LOG_DIR
    )
    settings.ensure_directories()

    configure_logging(app_config, settings)

    from backupsync.backup.orchestrator import RunOrchestrator
    return RunOrchestrator(settings, app_name=app_config.APP_NAME, version=f"v{__version__}")
