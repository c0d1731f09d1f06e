"""
Backup engine for backupsync.

This module handles the core synchronization functionality including:
- Remote store transports (FTP, SFTP, S3, local)
- Candidate selection and compression
- Verified uploads
- Retention policy enforcement
- Per-configuration processing and run orchestration
"""

from .transport import TransportSettings, create_transport, TransportError
from .compression import create_archive, CompressionError
from .selector import CandidateSelector
from .verifier import TransferVerifier
from .retention import RetentionSweeper
from .processor import BackupProcessor, BackupConfigurationError
from .orchestrator import RunOrchestrator

__all__ = [
    'TransportSettings',
    'create_transport',
    'TransportError',
    'create_archive',
    'CompressionError',
    'CandidateSelector',
    'TransferVerifier',
    'RetentionSweeper',
    'BackupProcessor',
    'BackupConfigurationError',
    'RunOrchestrator'
]
