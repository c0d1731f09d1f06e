import os


class Config:
    """Base configuration"""

    APP_NAME = 'backupsync'

    # Settings file with backup configurations, transport and email
    SETTINGS_FILE = os.environ.get('BACKUPSYNC_SETTINGS') or 'appsettings.json'

    # Override the 'tmp' / 'logs' entries of the settings file
    TEMP_DIR = os.environ.get('TEMP_DIR')
    LOG_DIR = os.environ.get('LOG_DIR')

    # Master password and salt for '*_encrypted' settings values
    MASTER_PASSWORD = os.environ.get('BACKUPSYNC_MASTER_PASSWORD')
    MASTER_SALT = os.environ.get('BACKUPSYNC_MASTER_SALT')

    # Logging
    LOG_FILE_NAME = 'backupsync.log'
    LOG_MAX_BYTES = 10485760  # 10MB
    LOG_BACKUP_COUNT = 10
    CONSOLE_LOG_LEVEL = 'INFO'
    FILE_LOG_LEVEL = 'WARNING'

    DEBUG = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    CONSOLE_LOG_LEVEL = 'DEBUG'

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SETTINGS_FILE = os.environ.get('BACKUPSYNC_SETTINGS') or os.path.join(DATA_DIR, 'appsettings.dev.json')
    TEMP_DIR = os.environ.get('TEMP_DIR') or os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
