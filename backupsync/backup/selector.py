"""
Candidate selection - turns a backup configuration into files to upload.

Two modes:
- compress: the whole input tree becomes one dated zip archive, built in the
  temp directory unless an archive of that name already exists remotely
- raw: files are uploaded as they are, optionally recursing and filtering
  by extension

Remote destinations are flat, so a nested file is staged as a renamed copy
in the input root, its relative directory encoded into the name:
sub/deep/file.dat -> sub__deep__file.dat

A staged copy left behind by an interrupted run is reused when its content
matches the nested file; any other file at that name is never overwritten.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path, PurePath
from typing import List, Optional, Set

from backupsync.models import BackupConfiguration, SelectionResult, UploadCandidate
from .compression import create_archive, generate_archive_filename, get_archive_size
from .transport import BaseTransport
from .verifier import compute_file_sha

logger = logging.getLogger(__name__)

FLATTEN_DELIMITER = '__'


def sanitize_name(name: str) -> str:
    """Replace spaces with underscores."""
    return name.replace(' ', '_')


def flatten_relative_path(relative_path: PurePath) -> str:
    """Encode a relative file path as a single file name."""
    return FLATTEN_DELIMITER.join(relative_path.parts)


def matches_extension_filter(file_name: str, extensions: List[str]) -> bool:
    """
    Check a file name against an extension allow-list.

    The match is a case-sensitive suffix match: 'txt' selects 'a.txt' but
    not 'c.TXT'. An empty allow-list selects everything.
    """
    if not extensions:
        return True
    return any(file_name.endswith(f".{ext}") for ext in extensions)


def is_same_content(first: Path, second: Path) -> bool:
    """Compare two files by size, then by SHA-256 digest."""
    if first.stat().st_size != second.stat().st_size:
        return False
    return compute_file_sha(str(first)) == compute_file_sha(str(second))


class CandidateSelector:
    """
    Selects the upload candidates of a backup configuration.

    The transport must be scoped to the configuration's destination; it is
    used to check whether today's archive is already there.
    """

    def __init__(self, transport: BaseTransport, temp_dir: str):
        self.transport = transport
        self.temp_dir = temp_dir

    def select(self, configuration: BackupConfiguration, now: Optional[datetime] = None) -> SelectionResult:
        """
        Select the files to upload.

        Args:
            configuration: Backup configuration with an existing input path
            now: Date used for archive names (default: now)

        Returns:
            SelectionResult; empty when there is nothing to back up

        Raises:
            CompressionError: If the archive cannot be built
            TransportError: If the remote archive check fails
        """
        if configuration.compress:
            return self._select_archive(configuration, now or datetime.now())
        return self._select_files(configuration)

    def _select_archive(self, configuration: BackupConfiguration, now: datetime) -> SelectionResult:
        input_dir = Path(configuration.input_path)
        result = SelectionResult()

        if not any(input_dir.iterdir()):
            logger.info("Nothing to backup")
            return result

        archive_name = generate_archive_filename(configuration.input_path, now)
        if self.transport.exists(archive_name):
            logger.info(f"Archive already exists: {archive_name}, skipping compression")
            result.skipped.append(archive_name)
            return result

        logger.info(f"Compressing data (level: {configuration.compression_level.value})...")
        archive_path = create_archive(
            configuration.input_path,
            os.path.join(self.temp_dir, archive_name),
            configuration.compression_level
        )
        result.temp_artifacts.append(archive_path)
        result.candidates.append(UploadCandidate(archive_path, archive_name, is_temporary=True))

        size = get_archive_size(archive_path)
        logger.info(f"Data compressed: {archive_name} ({size / 1024 / 1024:.2f} MB)")
        return result

    def _list_files(self, input_dir: Path, nested: bool) -> List[Path]:
        if nested:
            return sorted(p for p in input_dir.rglob('*') if p.is_file())
        return sorted(p for p in input_dir.iterdir() if p.is_file())

    def _staged_path(self, input_dir: Path, relative_path: PurePath) -> Path:
        return input_dir / sanitize_name(flatten_relative_path(relative_path))

    def _find_leftover_copies(self, input_dir: Path, files: List[Path]) -> Set[Path]:
        """
        Find staged copies an interrupted run left in the input root.

        A file at a nested file's staged path counts as a leftover copy only
        when its content is identical to the nested file.
        """
        leftovers = set()
        for file_path in files:
            relative_path = file_path.relative_to(input_dir)
            if len(relative_path.parts) == 1:
                continue
            staged_path = self._staged_path(input_dir, relative_path)
            if staged_path.is_file() and is_same_content(file_path, staged_path):
                leftovers.add(staged_path)
        return leftovers

    def _select_files(self, configuration: BackupConfiguration) -> SelectionResult:
        input_dir = Path(configuration.input_path)
        extensions = configuration.allowed_extensions
        result = SelectionResult()

        files = [
            f for f in self._list_files(input_dir, configuration.nested)
            if matches_extension_filter(f.name, extensions)
        ]

        if not files:
            logger.info("Nothing to backup")
            return result

        leftovers = self._find_leftover_copies(input_dir, files) if configuration.nested else set()

        for file_path in files:
            relative_path = file_path.relative_to(input_dir)

            if len(relative_path.parts) == 1:
                if file_path in leftovers:
                    # Uploaded through its nested source
                    continue
                result.candidates.append(UploadCandidate(str(file_path), sanitize_name(file_path.name)))
                continue

            staged_path = self._staged_path(input_dir, relative_path)
            staged_name = staged_path.name

            if staged_path in leftovers:
                logger.info(f"Reusing leftover staged copy: {staged_path}")
            elif staged_path.exists():
                # Never overwrite a real file in the input root
                message = f"Cannot stage {file_path}: {staged_path} already exists"
                logger.error(message)
                result.errors.append(message)
                continue
            else:
                try:
                    shutil.copy2(file_path, staged_path)
                except OSError as e:
                    message = f"Failed to stage {file_path}: {e}"
                    logger.error(message)
                    result.errors.append(message)
                    continue
                logger.debug(f"Staged {relative_path} as {staged_name}")

            result.temp_artifacts.append(str(staged_path))
            result.candidates.append(UploadCandidate(str(staged_path), staged_name, is_temporary=True))

        logger.info(f"{len(result.candidates)} file(s) selected for upload")
        return result
