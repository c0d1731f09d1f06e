"""
Compression of backup directories into zip archives.

Archives are named after the compressed directory and the current date, so
a given directory produces at most one archive name per day:
{directory_name}_{YYYYMMDD}.zip
"""

import os
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from backupsync.models import CompressionLevel


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(
    source_dir: str,
    archive_path: str,
    compression_level: CompressionLevel = CompressionLevel.FASTEST
) -> str:
    """
    Create a zip archive holding the whole content of a directory.

    Entries are stored relative to source_dir, without the directory itself
    as a top level entry.

    Args:
        source_dir: Directory to compress recursively
        archive_path: Full path of the archive to create
        compression_level: Zip compression level

    Returns:
        Path to the created archive file

    Raises:
        CompressionError: If archive creation fails
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionError(f"Directory does not exist: {source_dir}")

    try:
        with zipfile.ZipFile(archive_path, 'w', **compression_level.zip_options) as zipf:
            for item in sorted(source.rglob('*')):
                if item.is_file():
                    zipf.write(item, item.relative_to(source).as_posix())
                elif item.is_dir() and not any(item.iterdir()):
                    # Keep empty directories
                    zipf.writestr(item.relative_to(source).as_posix() + '/', b'')
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def generate_archive_filename(input_path: str, now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a backed up directory.

    Format: {directory_name}_{YYYYMMDD}.zip, spaces replaced with underscores.

    Args:
        input_path: Directory being compressed
        now: Date to stamp the name with (default: today)

    Returns:
        Filename (without path)
    """
    now = now or datetime.now()
    directory_name = Path(os.path.normpath(input_path)).name.replace(' ', '_')
    return f"{directory_name}_{now:%Y%m%d}.zip"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
