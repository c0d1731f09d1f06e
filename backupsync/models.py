"""
Data model for a backup run.

BackupConfiguration entries are read from the settings file and stay
immutable for the whole run. Each pipeline stage returns an explicit result
value which the processor folds into the ProcessingReport.
"""

import zipfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class CompressionLevel(str, Enum):
    """Zip compression levels supported for compressed backups."""
    FASTEST = 'fastest'
    OPTIMAL = 'optimal'
    NO_COMPRESSION = 'no_compression'
    SMALLEST_SIZE = 'smallest_size'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'CompressionLevel':
        """
        Parse a compression level name.

        Accepts 'Fastest', 'NoCompression', 'no_compression', 'smallestSize'
        and similar spellings. None falls back to FASTEST.

        Raises:
            ValueError: If the name is not a known level
        """
        if value is None:
            return cls.FASTEST
        if isinstance(value, cls):
            return value

        normalized = str(value).replace('_', '').replace('-', '').lower()
        for level in cls:
            if level.value.replace('_', '') == normalized:
                return level

        raise ValueError(
            f"Invalid compression level: {value}. "
            f"Valid options: {[level.value for level in cls]}"
        )

    @property
    def zip_options(self) -> Dict[str, Any]:
        """Keyword arguments for zipfile.ZipFile matching this level."""
        if self is CompressionLevel.NO_COMPRESSION:
            return {'compression': zipfile.ZIP_STORED}
        if self is CompressionLevel.FASTEST:
            return {'compression': zipfile.ZIP_DEFLATED, 'compresslevel': 1}
        if self is CompressionLevel.SMALLEST_SIZE:
            return {'compression': zipfile.ZIP_DEFLATED, 'compresslevel': 9}
        return {'compression': zipfile.ZIP_DEFLATED, 'compresslevel': 6}


def _pick(data: Dict[str, Any], *keys: str, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


TRUE_STRINGS = {'true', '1', 'yes'}
FALSE_STRINGS = {'false', '0', 'no'}


def parse_bool(value: Any, name: str) -> bool:
    """
    Parse a settings flag.

    Accepts JSON booleans and the strings true/false, 1/0 and yes/no in any
    case. Anything else is rejected rather than coerced by truthiness.

    Raises:
        ValueError: If the value is not a recognized boolean
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValueError(f"Invalid boolean for {name}: {value!r}")


@dataclass(frozen=True)
class BackupConfiguration:
    """One backed-up directory and its retention policy."""
    input_path: str
    destination_path: str = ''
    compress: bool = False
    compression_level: CompressionLevel = CompressionLevel.FASTEST
    nested: bool = False
    file_extension_filter: Optional[str] = None
    input_delete_older_than_days: Optional[int] = None
    destination_delete_older_than_days: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupConfiguration':
        """
        Build a configuration from a settings file entry.

        Both camelCase and snake_case keys are accepted.

        Args:
            data: Mapping read from the settings file

        Returns:
            BackupConfiguration instance

        Raises:
            ValueError: If a flag, level or day count is invalid
        """
        input_days = _pick(data, 'inputDeleteOlderThanDays', 'input_delete_older_than_days')
        destination_days = _pick(data, 'destinationDeleteOlderThanDays', 'destination_delete_older_than_days')

        return cls(
            input_path=_pick(data, 'inputPath', 'input_path', default='') or '',
            destination_path=_pick(data, 'destinationPath', 'destination_path', default='') or '',
            compress=parse_bool(_pick(data, 'compress', default=False), 'compress'),
            compression_level=CompressionLevel.parse(_pick(data, 'compressionLevel', 'compression_level')),
            nested=parse_bool(_pick(data, 'nested', default=False), 'nested'),
            file_extension_filter=_pick(data, 'fileExtensionFilter', 'file_extension_filter'),
            input_delete_older_than_days=int(input_days) if input_days is not None else None,
            destination_delete_older_than_days=int(destination_days) if destination_days is not None else None,
        )

    @property
    def allowed_extensions(self) -> List[str]:
        """Extensions from the comma separated filter, without dots."""
        if not self.file_extension_filter:
            return []
        return [
            ext.strip().lstrip('.')
            for ext in self.file_extension_filter.split(',')
            if ext.strip().lstrip('.')
        ]


@dataclass(frozen=True)
class UploadCandidate:
    """A local file selected for upload and the name it gets remotely."""
    local_path: str
    remote_name: str
    is_temporary: bool = False


@dataclass
class SelectionResult:
    """
    Files to upload for one configuration.

    skipped holds remote names left alone because they already exist
    remotely; errors holds files that could not be staged.
    """
    candidates: List[UploadCandidate] = field(default_factory=list)
    temp_artifacts: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.candidates


class TransferStatus(str, Enum):
    """Outcome of a verified upload."""
    UPLOADED = 'uploaded'
    ALREADY_EXISTS = 'already_exists'
    UPLOAD_FAILED = 'upload_failed'
    DOWNLOAD_FAILED = 'download_failed'
    CHECKSUM_MISMATCH = 'checksum_mismatch'


@dataclass
class TransferResult:
    candidate: UploadCandidate
    status: TransferStatus
    message: str = ''
    verification_copy: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status not in (TransferStatus.UPLOADED, TransferStatus.ALREADY_EXISTS)


@dataclass
class SweepResult:
    """Paths or URIs deleted by a retention sweep, and the errors it hit."""
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ProcessingReport:
    """
    Accumulator for a single run.

    Created by the orchestrator at run start, appended to by every stage,
    read once by the notifier and then discarded.
    """
    files_uploaded: List[str] = field(default_factory=list)
    files_skipped: List[str] = field(default_factory=list)
    files_cleaned_up_locally: List[str] = field(default_factory=list)
    files_cleaned_up_remotely: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0
