"""
Settings file loading.

The settings file is a JSON document:

    {
        "backup": [{"inputPath": "/srv/db-dumps", "destinationPath": "db",
                    "compress": true, "destinationDeleteOlderThanDays": 30}],
        "transport": {"protocol": "ftp", "host": "backup.example.com",
                      "username": "backup", "password_encrypted": "..."},
        "email_sender": {"host": "smtp.example.com", "username": "...", "password": "..."},
        "email_recipients": ["ops@example.com"],
        "email_context": "db server",
        "tmp": "tmp",
        "logs": "logs",
        "logging": {"sinks": {"console": "DEBUG", "file": "WARNING"}}
    }

Keys may also be written in camelCase or PascalCase. Relative paths are
resolved against the directory holding the settings file.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cryptography.fernet import InvalidToken

from backupsync.backup.transport import TransportSettings
from backupsync.models import BackupConfiguration
from backupsync.notifier import EmailAccount
from backupsync.utils.crypto import CryptoManager, ENCRYPTED_SUFFIX


class SettingsError(Exception):
    """Raised when the settings file cannot be loaded."""
    pass


# Serilog level names are accepted too
LEVEL_ALIASES = {
    'verbose': 'DEBUG',
    'debug': 'DEBUG',
    'information': 'INFO',
    'info': 'INFO',
    'warning': 'WARNING',
    'error': 'ERROR',
    'fatal': 'CRITICAL',
    'critical': 'CRITICAL',
}


def to_snake_case(key: str) -> str:
    """Convert camelCase / PascalCase keys to snake_case."""
    key = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', key)
    key = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', key)
    return key.replace('-', '_').lower()


def normalize_keys(data: Any) -> Any:
    """Recursively convert mapping keys to snake_case."""
    if isinstance(data, dict):
        return {to_snake_case(key): normalize_keys(value) for key, value in data.items()}
    if isinstance(data, list):
        return [normalize_keys(item) for item in data]
    return data


def parse_log_level(value: Optional[str]) -> Optional[str]:
    """
    Map a level name to a logging level name.

    Raises:
        SettingsError: If the level is unknown
    """
    if value is None:
        return None
    level = LEVEL_ALIASES.get(str(value).lower())
    if level is None:
        raise SettingsError(f"Invalid log level: {value}")
    return level


def resolve_path(path: str, base_dir: Path) -> str:
    resolved = Path(os.path.expandvars(path)).expanduser()
    if not resolved.is_absolute():
        resolved = base_dir / resolved
    return str(resolved)


@dataclass
class LoggingSettings:
    console_level: Optional[str] = None
    file_level: Optional[str] = None


@dataclass
class Settings:
    """Everything a run needs from the settings file."""
    backup: List[BackupConfiguration] = field(default_factory=list)
    transport: TransportSettings = field(default_factory=TransportSettings)
    email_sender: Optional[EmailAccount] = None
    email_recipients: List[str] = field(default_factory=list)
    email_context: str = ''
    tmp_dir: str = 'tmp'
    logs_dir: str = 'logs'
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        crypto: Optional[CryptoManager] = None,
        tmp_dir: Optional[str] = None,
        logs_dir: Optional[str] = None
    ) -> 'Settings':
        """
        Load settings from a JSON file.

        Args:
            path: Settings file path
            crypto: Crypto manager for '*_encrypted' values
            tmp_dir: Overrides the file's 'tmp' entry
            logs_dir: Overrides the file's 'logs' entry

        Returns:
            Settings instance

        Raises:
            SettingsError: If the file is missing or invalid
        """
        path = Path(path)
        if not path.exists():
            raise SettingsError(f"Settings file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Failed to read settings file {path}: {e}")

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {path} must contain a JSON object")

        settings = cls.from_dict(data, base_dir=path.resolve().parent, crypto=crypto)
        if tmp_dir:
            settings.tmp_dir = tmp_dir
        if logs_dir:
            settings.logs_dir = logs_dir
        return settings

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        base_dir: Optional[Path] = None,
        crypto: Optional[CryptoManager] = None
    ) -> 'Settings':
        """
        Build settings from a parsed settings document.

        Raises:
            SettingsError: If a section is invalid or cannot be decrypted
        """
        data = normalize_keys(data)
        base_dir = base_dir or Path.cwd()

        try:
            backup = [BackupConfiguration.from_dict(entry) for entry in data.get('backup') or []]
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid backup configuration: {e}")

        transport_section = data.get('transport') or data.get('ftp_cfg') or {}
        if 'ftp_cfg' in data and 'protocol' not in transport_section:
            transport_section = dict(transport_section, protocol='ftp')
        transport_section = _decrypt(transport_section, crypto, 'transport')

        email_sender = None
        if data.get('email_sender'):
            try:
                email_sender = EmailAccount.from_dict(_decrypt(data['email_sender'], crypto, 'email_sender'))
            except (TypeError, ValueError) as e:
                raise SettingsError(f"Invalid email_sender section: {e}")

        logging_section = data.get('logging') or data.get('serilog_configuration') or {}
        sinks = logging_section.get('sinks') or {}

        try:
            transport = TransportSettings.from_dict(transport_section)
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid transport section: {e}")

        return cls(
            backup=backup,
            transport=transport,
            email_sender=email_sender,
            email_recipients=list(data.get('email_recipients') or []),
            email_context=data.get('email_context') or '',
            tmp_dir=resolve_path(data.get('tmp') or 'tmp', base_dir),
            logs_dir=resolve_path(data.get('logs') or 'logs', base_dir),
            logging=LoggingSettings(
                console_level=parse_log_level(sinks.get('console')),
                file_level=parse_log_level(sinks.get('file')),
            ),
        )

    def ensure_directories(self):
        """Create the tmp and logs directories if they do not exist."""
        for directory in (self.tmp_dir, self.logs_dir):
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise SettingsError(f"Failed to create directory {directory}: {e}")


def _decrypt(section: Dict[str, Any], crypto: Optional[CryptoManager], name: str) -> Dict[str, Any]:
    has_encrypted = any(key.endswith(ENCRYPTED_SUFFIX) and value for key, value in section.items())
    if not has_encrypted:
        return section

    if crypto is None or not crypto.is_initialized:
        raise SettingsError(
            f"The {name} section holds encrypted values but no master password is configured"
        )

    try:
        return crypto.decrypt_section(section)
    except InvalidToken:
        raise SettingsError(f"Failed to decrypt the {name} section: wrong master password or salt")
