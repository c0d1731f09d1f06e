"""
Verified uploads.

A candidate is uploaded only when its remote name is not already present.
After the upload the remote file is downloaded again into the temp
directory and both copies are compared by SHA-256. A mismatching remote
file is left in place for a human to investigate.
"""

import hashlib
import logging
import os

from backupsync.models import TransferResult, TransferStatus, UploadCandidate
from .transport import BaseTransport, TransportError

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024
VERIFICATION_DIR = 'verification'


def compute_file_sha(path: str) -> str:
    """Return the hex SHA-256 digest of a file's content."""
    sha = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b''):
            sha.update(chunk)
    return sha.hexdigest()


class TransferVerifier:
    """Uploads candidates through a scoped transport and verifies them."""

    def __init__(self, transport: BaseTransport, temp_dir: str):
        self.transport = transport
        self.temp_dir = temp_dir

    def transfer(self, candidate: UploadCandidate) -> TransferResult:
        """
        Upload one candidate and verify the remote copy.

        Never raises for a transport failure; the outcome is reported in the
        returned TransferResult.

        Args:
            candidate: File to upload

        Returns:
            TransferResult; verification_copy is set whenever a verification
            download was attempted and must be cleaned up by the caller
        """
        name = candidate.remote_name
        logger.info(f"Uploading file: {name}...")

        try:
            already_exists = self.transport.exists(name)
        except TransportError as e:
            # No upload was attempted, but the candidate is still not backed up
            return self._failed(
                candidate, TransferStatus.UPLOAD_FAILED, f"Failed to check remote file: {name}: {e}"
            )

        if already_exists:
            logger.info(f"File already exists: {name}")
            return TransferResult(candidate, TransferStatus.ALREADY_EXISTS, f"File already exists: {name}")

        try:
            uploaded = self.transport.upload(candidate.local_path, name)
        except TransportError as e:
            return self._failed(candidate, TransferStatus.UPLOAD_FAILED, f"Failed to upload: {name}: {e}")
        if not uploaded:
            return self._failed(candidate, TransferStatus.UPLOAD_FAILED, f"Failed to upload: {name}")

        logger.info("Upload completed")
        logger.info("Verifying file consistency - downloading file...")

        # Archives are built in temp_dir itself, keep the copies apart
        verification_dir = os.path.join(self.temp_dir, VERIFICATION_DIR)
        os.makedirs(verification_dir, exist_ok=True)
        verification_copy = os.path.join(verification_dir, name)
        try:
            downloaded = self.transport.download(name, verification_copy)
        except TransportError as e:
            return self._failed(
                candidate, TransferStatus.DOWNLOAD_FAILED,
                f"Failed to download file: {name}: {e}", verification_copy
            )
        if not downloaded:
            return self._failed(
                candidate, TransferStatus.DOWNLOAD_FAILED,
                f"Failed to download file: {name}", verification_copy
            )

        if compute_file_sha(candidate.local_path) != compute_file_sha(verification_copy):
            return self._failed(
                candidate, TransferStatus.CHECKSUM_MISMATCH,
                f"File sha MISMATCH: {name}", verification_copy
            )

        logger.info("File sha OK")
        return TransferResult(candidate, TransferStatus.UPLOADED, f"Uploaded: {name}", verification_copy)

    def _failed(self, candidate, status, message, verification_copy=None) -> TransferResult:
        logger.error(message)
        return TransferResult(candidate, status, message, verification_copy)
