"""
Remote store transports for backup uploads.

Supports:
- FTPTransport: FTP / explicit FTPS servers
- SFTPTransport: SSH servers via SFTP
- S3Transport: AWS S3 buckets
- LocalTransport: a mounted or local directory

Every transport is built from a TransportSettings value. Scoping a client to
a destination subdirectory produces a new settings value and a new client,
so no client state is shared between backup configurations.
"""

import ftplib
import os
import posixpath
import shutil
import stat
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
import paramiko
from botocore.exceptions import BotoCoreError, ClientError
from paramiko import AutoAddPolicy, SSHClient

from backupsync.models import parse_bool


class TransportError(Exception):
    """Raised when a remote store operation fails."""
    pass


def join_remote_path(*parts: str) -> str:
    """
    Join remote path fragments with '/'.

    Empty fragments are skipped. A leading '/' on the first fragment is kept
    so absolute server paths stay absolute.
    """
    cleaned = [part.strip('/') for part in parts if part and part.strip('/')]
    joined = '/'.join(cleaned)
    if parts and parts[0] and parts[0].startswith('/'):
        joined = '/' + joined
    return joined


@dataclass(frozen=True)
class TransportSettings:
    """Location, credentials and subpath of a remote store."""
    protocol: str = 'ftp'
    host: str = ''
    port: Optional[int] = None
    username: str = ''
    password: str = ''
    private_key: str = ''
    base_path: str = ''
    sub_path: str = ''
    use_tls: bool = False
    passive: bool = True
    bucket: str = ''
    region: str = 'us-east-1'
    access_key: str = ''
    secret_key: str = ''
    timeout: int = 30

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransportSettings':
        """Build settings from the 'transport' section of the settings file."""
        known = {name for name in cls.__dataclass_fields__}
        values = {key: value for key, value in data.items() if key in known and value is not None}
        if 'protocol' in values:
            values['protocol'] = str(values['protocol']).lower()
        for flag in ('use_tls', 'passive'):
            if flag in values:
                values[flag] = parse_bool(values[flag], flag)
        if 'port' in values:
            values['port'] = int(values['port'])
        return cls(**values)

    def with_sub_path(self, sub_path: Optional[str]) -> 'TransportSettings':
        return replace(self, sub_path=sub_path or '')

    @property
    def remote_dir(self) -> str:
        return join_remote_path(self.base_path, self.sub_path)


class BaseTransport:
    """
    Capability set shared by all transports.

    Names passed to exists/get_last_modified/download/delete are relative to
    the client's scoped directory. Paths passed to directory_exists and
    create_directory are relative to it as well.
    """

    def __init__(self, settings: TransportSettings):
        self.settings = settings

    @property
    def remote_dir(self) -> str:
        return self.settings.remote_dir

    def clone_scoped_to(self, sub_path: Optional[str]) -> 'BaseTransport':
        """Return a new client bound to sub_path below the base path."""
        return create_transport(self.settings.with_sub_path(sub_path))

    def effective_location_uri(self) -> str:
        raise NotImplementedError

    def can_connect(self) -> bool:
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        raise NotImplementedError

    def list_entries(self) -> List[str]:
        raise NotImplementedError

    def get_last_modified(self, name: str) -> datetime:
        raise NotImplementedError

    def upload(self, local_path: str, remote_name: Optional[str] = None) -> bool:
        raise NotImplementedError

    def download(self, name: str, local_path: str) -> bool:
        raise NotImplementedError

    def delete(self, name: str) -> bool:
        raise NotImplementedError

    def directory_exists(self, path: str) -> bool:
        raise NotImplementedError

    def create_directory(self, path: str) -> bool:
        raise NotImplementedError

    @staticmethod
    def _check_local_file(local_path: str):
        if not os.path.isfile(local_path):
            raise TransportError(f"Local file not found: {local_path}")


class FTPTransport(BaseTransport):
    """
    Transport for FTP servers.

    A new control connection is opened for every operation and the working
    directory is changed to the scoped directory first.
    """

    default_port = 21

    @contextmanager
    def _session(self, scoped: bool = True):
        ftp_class = ftplib.FTP_TLS if self.settings.use_tls else ftplib.FTP
        ftp = ftp_class(timeout=self.settings.timeout)

        try:
            ftp.connect(self.settings.host, self.settings.port or self.default_port)
            ftp.login(self.settings.username or 'anonymous', self.settings.password or '')
            if self.settings.use_tls:
                ftp.prot_p()
            ftp.set_pasv(self.settings.passive)
            if scoped and self.remote_dir:
                ftp.cwd(self.remote_dir)
        except ftplib.all_errors as e:
            ftp.close()
            raise TransportError(f"Failed to connect to ftp://{self.settings.host}: {e}")

        try:
            yield ftp
        finally:
            try:
                ftp.quit()
            except ftplib.all_errors:
                ftp.close()

    def effective_location_uri(self) -> str:
        port = f":{self.settings.port}" if self.settings.port else ''
        uri = f"ftp://{self.settings.host}{port}"
        if self.remote_dir:
            uri = f"{uri}/{self.remote_dir.lstrip('/')}"
        return uri

    def can_connect(self) -> bool:
        with self._session():
            return True

    def list_entries(self) -> List[str]:
        with self._session() as ftp:
            try:
                entries = ftp.nlst()
            except ftplib.error_perm as e:
                # Some servers answer 550 for an empty directory
                if str(e).startswith('550'):
                    return []
                raise TransportError(f"Failed to list {self.effective_location_uri()}: {e}")
            except ftplib.all_errors as e:
                raise TransportError(f"Failed to list {self.effective_location_uri()}: {e}")

        names = [posixpath.basename(entry.rstrip('/')) for entry in entries]
        return [name for name in names if name not in ('', '.', '..')]

    def exists(self, name: str) -> bool:
        return name in self.list_entries()

    def get_last_modified(self, name: str) -> datetime:
        with self._session() as ftp:
            try:
                response = ftp.sendcmd(f"MDTM {name}")
            except ftplib.all_errors as e:
                raise TransportError(f"Failed to get last modified time of {name}: {e}")

        # 213 YYYYMMDDHHMMSS[.sss], always UTC
        try:
            timestamp = response.split()[1][:14]
            return datetime.strptime(timestamp, '%Y%m%d%H%M%S').replace(tzinfo=timezone.utc)
        except (IndexError, ValueError) as e:
            raise TransportError(f"Unexpected MDTM response for {name}: {response!r} ({e})")

    def upload(self, local_path: str, remote_name: Optional[str] = None) -> bool:
        self._check_local_file(local_path)
        name = remote_name or os.path.basename(local_path)

        with self._session() as ftp:
            try:
                with open(local_path, 'rb') as f:
                    ftp.storbinary(f"STOR {name}", f)
            except (*ftplib.all_errors, OSError) as e:
                raise TransportError(f"FTP upload of {name} failed: {e}")
        return True

    def download(self, name: str, local_path: str) -> bool:
        with self._session() as ftp:
            try:
                with open(local_path, 'wb') as f:
                    ftp.retrbinary(f"RETR {name}", f.write)
            except (*ftplib.all_errors, OSError) as e:
                raise TransportError(f"FTP download of {name} failed: {e}")
        return True

    def delete(self, name: str) -> bool:
        with self._session() as ftp:
            try:
                ftp.delete(name)
            except ftplib.all_errors as e:
                raise TransportError(f"FTP delete of {name} failed: {e}")
        return True

    def directory_exists(self, path: str) -> bool:
        with self._session() as ftp:
            try:
                ftp.cwd(path)
                return True
            except ftplib.error_perm:
                return False
            except ftplib.all_errors as e:
                raise TransportError(f"Failed to check directory {path}: {e}")

    def create_directory(self, path: str) -> bool:
        """Create path one component at a time, like mkdir -p."""
        with self._session() as ftp:
            if path.startswith('/'):
                ftp.cwd('/')
            for part in [p for p in path.split('/') if p]:
                try:
                    ftp.cwd(part)
                except ftplib.error_perm:
                    try:
                        ftp.mkd(part)
                        ftp.cwd(part)
                    except ftplib.all_errors as e:
                        raise TransportError(f"Failed to create directory {path}: {e}")
        return True


class SFTPTransport(BaseTransport):
    """Transport for SSH servers using SFTP."""

    default_port = 22

    @contextmanager
    def _session(self):
        ssh_client = SSHClient()
        ssh_client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs = {
            'hostname': self.settings.host,
            'port': self.settings.port or self.default_port,
            'username': self.settings.username,
            'timeout': self.settings.timeout
        }

        if self.settings.password:
            connect_kwargs['password'] = self.settings.password
        elif self.settings.private_key:
            key_path = Path(self.settings.private_key).expanduser()
            if not key_path.exists():
                raise TransportError(f"Private key not found: {self.settings.private_key}")
            connect_kwargs['key_filename'] = str(key_path)
        else:
            raise TransportError("Either password or private_key must be provided")

        try:
            ssh_client.connect(**connect_kwargs)
            sftp_client = ssh_client.open_sftp()
        except paramiko.AuthenticationException as e:
            ssh_client.close()
            raise TransportError(f"SSH authentication failed: {e}")
        except (paramiko.SSHException, OSError) as e:
            ssh_client.close()
            raise TransportError(f"Failed to connect to sftp://{self.settings.host}: {e}")

        try:
            yield sftp_client
        finally:
            sftp_client.close()
            ssh_client.close()

    def _path(self, name: str) -> str:
        return join_remote_path(self.remote_dir, name) if self.remote_dir else name

    def effective_location_uri(self) -> str:
        port = f":{self.settings.port}" if self.settings.port else ''
        uri = f"sftp://{self.settings.host}{port}"
        if self.remote_dir:
            uri = f"{uri}/{self.remote_dir.lstrip('/')}"
        return uri

    def can_connect(self) -> bool:
        with self._session():
            return True

    def list_entries(self) -> List[str]:
        with self._session() as sftp:
            try:
                return sorted(sftp.listdir(self.remote_dir or '.'))
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"Failed to list {self.effective_location_uri()}: {e}")

    def exists(self, name: str) -> bool:
        with self._session() as sftp:
            try:
                attributes = sftp.stat(self._path(name))
            except FileNotFoundError:
                return False
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"Failed to stat {name}: {e}")
        return not stat.S_ISDIR(attributes.st_mode)

    def get_last_modified(self, name: str) -> datetime:
        with self._session() as sftp:
            try:
                attributes = sftp.stat(self._path(name))
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"Failed to stat {name}: {e}")

        if stat.S_ISDIR(attributes.st_mode):
            raise TransportError(f"{name} is a directory")
        return datetime.fromtimestamp(attributes.st_mtime, tz=timezone.utc)

    def upload(self, local_path: str, remote_name: Optional[str] = None) -> bool:
        self._check_local_file(local_path)
        name = remote_name or os.path.basename(local_path)

        with self._session() as sftp:
            try:
                sftp.put(local_path, self._path(name))
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"SFTP upload of {name} failed: {e}")
        return True

    def download(self, name: str, local_path: str) -> bool:
        with self._session() as sftp:
            try:
                sftp.get(self._path(name), local_path)
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"SFTP download of {name} failed: {e}")
        return True

    def delete(self, name: str) -> bool:
        with self._session() as sftp:
            try:
                sftp.remove(self._path(name))
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"SFTP delete of {name} failed: {e}")
        return True

    def directory_exists(self, path: str) -> bool:
        with self._session() as sftp:
            try:
                return stat.S_ISDIR(sftp.stat(self._path(path)).st_mode)
            except FileNotFoundError:
                return False
            except (IOError, paramiko.SSHException) as e:
                raise TransportError(f"Failed to check directory {path}: {e}")

    def create_directory(self, path: str) -> bool:
        target = self._path(path)
        current = '/' if target.startswith('/') else ''

        with self._session() as sftp:
            for part in [p for p in target.split('/') if p]:
                current = posixpath.join(current, part) if current else part
                try:
                    sftp.stat(current)
                except FileNotFoundError:
                    try:
                        sftp.mkdir(current)
                    except (IOError, paramiko.SSHException) as e:
                        raise TransportError(f"Failed to create directory {path}: {e}")
        return True


class S3Transport(BaseTransport):
    """
    Transport for AWS S3.

    The scoped directory becomes a key prefix. S3 has no real directories,
    so directory operations always succeed.
    """

    # Use multipart upload for files larger than 100MB, in 10MB parts
    multipart_threshold = 100 * 1024 * 1024
    chunk_size = 10 * 1024 * 1024

    def __init__(self, settings: TransportSettings):
        super().__init__(settings)

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=settings.access_key or None,
                aws_secret_access_key=settings.secret_key or None,
                region_name=settings.region
            )
        except (BotoCoreError, ValueError) as e:
            raise TransportError(f"Failed to initialize S3 client: {e}")

    @property
    def prefix(self) -> str:
        return self.remote_dir.strip('/')

    def _key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    @staticmethod
    def _error_code(error: ClientError) -> str:
        return error.response.get('Error', {}).get('Code', 'Unknown')

    def effective_location_uri(self) -> str:
        uri = f"s3://{self.settings.bucket}"
        return f"{uri}/{self.prefix}" if self.prefix else uri

    def can_connect(self) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=self.settings.bucket)
            return True
        except ClientError as e:
            error_code = self._error_code(e)
            if error_code == '404':
                raise TransportError(f"Bucket does not exist: {self.settings.bucket}")
            elif error_code == '403':
                raise TransportError(f"Access denied to bucket: {self.settings.bucket}")
            raise TransportError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise TransportError(f"Failed to connect to S3: {e}")

    def list_entries(self) -> List[str]:
        list_prefix = f"{self.prefix}/" if self.prefix else ''
        entries = []

        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.settings.bucket, Prefix=list_prefix):
                for obj in page.get('Contents', []):
                    entries.append(obj['Key'][len(list_prefix):])
        except ClientError as e:
            raise TransportError(f"S3 list failed ({self._error_code(e)}): {e}")
        except BotoCoreError as e:
            raise TransportError(f"Failed to list S3 objects: {e}")

        return entries

    def _head(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.s3_client.head_object(Bucket=self.settings.bucket, Key=self._key(name))
        except ClientError as e:
            if self._error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return None
            raise TransportError(f"S3 head failed ({self._error_code(e)}): {e}")
        except BotoCoreError as e:
            raise TransportError(f"S3 head failed: {e}")

    def exists(self, name: str) -> bool:
        return self._head(name) is not None

    def get_last_modified(self, name: str) -> datetime:
        head = self._head(name)
        if head is None:
            raise TransportError(f"Object not found: {self._key(name)}")
        return head['LastModified']

    def upload(self, local_path: str, remote_name: Optional[str] = None) -> bool:
        self._check_local_file(local_path)
        key = self._key(remote_name or os.path.basename(local_path))

        try:
            file_size = os.path.getsize(local_path)
            if file_size > self.multipart_threshold:
                self._multipart_upload(local_path, key)
            else:
                with open(local_path, 'rb') as f:
                    self.s3_client.put_object(Bucket=self.settings.bucket, Key=key, Body=f)
        except ClientError as e:
            raise TransportError(f"S3 upload failed ({self._error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise TransportError(f"S3 upload failed: {e}")
        return True

    def _multipart_upload(self, local_path: str, key: str):
        response = self.s3_client.create_multipart_upload(Bucket=self.settings.bucket, Key=key)
        upload_id = response['UploadId']
        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1
                while True:
                    data = f.read(self.chunk_size)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.settings.bucket,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )
                    parts.append({'PartNumber': part_number, 'ETag': response['ETag']})
                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.settings.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )
        except (ClientError, BotoCoreError, OSError):
            self.s3_client.abort_multipart_upload(Bucket=self.settings.bucket, Key=key, UploadId=upload_id)
            raise

    def download(self, name: str, local_path: str) -> bool:
        try:
            self.s3_client.download_file(self.settings.bucket, self._key(name), local_path)
        except ClientError as e:
            raise TransportError(f"S3 download failed ({self._error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise TransportError(f"S3 download failed: {e}")
        return True

    def delete(self, name: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.settings.bucket, Key=self._key(name))
        except ClientError as e:
            raise TransportError(f"S3 delete failed ({self._error_code(e)}): {e}")
        except BotoCoreError as e:
            raise TransportError(f"Failed to delete from S3: {e}")
        return True

    def directory_exists(self, path: str) -> bool:
        return True

    def create_directory(self, path: str) -> bool:
        return True


class LocalTransport(BaseTransport):
    """Transport writing into a directory of the local filesystem (NAS mounts, USB drives)."""

    @property
    def directory(self) -> Path:
        return Path(self.settings.base_path).expanduser() / self.settings.sub_path.strip('/')

    def effective_location_uri(self) -> str:
        return self.directory.resolve().as_uri()

    def can_connect(self) -> bool:
        if not self.directory.is_dir():
            raise TransportError(f"Directory not found: {self.directory}")
        return True

    def list_entries(self) -> List[str]:
        try:
            return sorted(os.listdir(self.directory))
        except OSError as e:
            raise TransportError(f"Failed to list {self.directory}: {e}")

    def exists(self, name: str) -> bool:
        return (self.directory / name).is_file()

    def get_last_modified(self, name: str) -> datetime:
        path = self.directory / name
        if path.is_dir():
            raise TransportError(f"{name} is a directory")
        try:
            return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError as e:
            raise TransportError(f"Failed to stat {path}: {e}")

    def upload(self, local_path: str, remote_name: Optional[str] = None) -> bool:
        self._check_local_file(local_path)
        dest_path = self.directory / (remote_name or os.path.basename(local_path))

        try:
            shutil.copyfile(local_path, dest_path)
        except OSError as e:
            raise TransportError(f"Failed to copy {local_path} to {dest_path}: {e}")
        return True

    def download(self, name: str, local_path: str) -> bool:
        try:
            shutil.copyfile(self.directory / name, local_path)
        except OSError as e:
            raise TransportError(f"Failed to copy {name} to {local_path}: {e}")
        return True

    def delete(self, name: str) -> bool:
        try:
            (self.directory / name).unlink()
        except OSError as e:
            raise TransportError(f"Failed to delete {self.directory / name}: {e}")
        return True

    def directory_exists(self, path: str) -> bool:
        return (self.directory / path.strip('/')).is_dir()

    def create_directory(self, path: str) -> bool:
        try:
            (self.directory / path.strip('/')).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Failed to create directory {path}: {e}")
        return True


TRANSPORTS = {
    'ftp': FTPTransport,
    'ftps': FTPTransport,
    'sftp': SFTPTransport,
    's3': S3Transport,
    'local': LocalTransport,
}


def create_transport(settings: TransportSettings) -> BaseTransport:
    """
    Factory function to create the transport for a settings value.

    Args:
        settings: Transport settings ('ftp', 'ftps', 'sftp', 's3' or 'local' protocol)

    Returns:
        Transport instance

    Raises:
        ValueError: If the protocol is unknown
    """
    transport_class = TRANSPORTS.get(settings.protocol)
    if transport_class is None:
        raise ValueError(
            f"Invalid transport protocol: {settings.protocol}. "
            f"Valid options: {list(TRANSPORTS.keys())}"
        )

    if settings.protocol == 'ftps' and not settings.use_tls:
        settings = replace(settings, use_tls=True)

    return transport_class(settings)
