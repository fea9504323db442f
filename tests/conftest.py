"""
Shared pytest fixtures for backhaul tests.

This module provides fixtures for:
- An in-memory StorageDestination used to drive the orchestrator
- Config objects backed by temporary target/settings files
- Mock fixtures for external services (S3)
- Temporary file fixtures
"""

import json
import os
import tarfile
import threading

import pytest
import boto3
from moto import mock_aws

from backhaul.config import Config
from backhaul.backup.destinations.base import DeleteError, StorageDestination, UploadError
from backhaul.models import RemoteObject, UploadResult


class FakeDestination(StorageDestination):
    """
    In-memory destination.

    Args:
        fail_first: Number of upload attempts that fail before uploads succeed
        always_fail: Every upload fails
        fail_names: Uploads whose file name starts with one of these prefixes fail
        objects: Initial remote listing
        fail_deletes: Names whose deletion fails
        list_error: Exception raised by list_files
        init_error: Exception raised by initialize
    """

    type_name = 'fake'

    def __init__(self, config=None, fail_first=0, always_fail=False, fail_names=(),
                 objects=(), fail_deletes=(), list_error=None, init_error=None):
        super().__init__(config)
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.fail_names = tuple(fail_names)
        self.objects = list(objects)
        self.fail_deletes = set(fail_deletes)
        self.list_error = list_error
        self.init_error = init_error

        self.upload_attempts = 0
        self.uploads = []
        self.deleted = []
        self._lock = threading.Lock()

    def initialize(self):
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    def test_connection(self):
        self._require_initialized()
        return True

    def upload_file(self, local_path, remote_container, file_name):
        self._require_initialized()

        with self._lock:
            self.upload_attempts += 1
            attempt = self.upload_attempts

        if self.always_fail or attempt <= self.fail_first or any(file_name.startswith(p) for p in self.fail_names):
            raise UploadError(f"upload of {file_name} rejected")

        size = os.path.getsize(local_path)
        with self._lock:
            self.uploads.append(file_name)
        return UploadResult(name=file_name, size=size)

    def list_files(self, remote_container):
        self._require_initialized()
        if self.list_error is not None:
            raise self.list_error
        return sorted(self.objects, key=lambda o: o.modified, reverse=True)

    def delete_file(self, remote_container, file_name):
        self._require_initialized()
        if file_name in self.fail_deletes:
            raise DeleteError(f"cannot delete {file_name}")
        self.objects = [o for o in self.objects if o.name != file_name]
        self.deleted.append(file_name)


@pytest.fixture
def make_destination():
    """Factory for FakeDestination instances (kwargs as in FakeDestination)."""

    def _make(name=None, **kwargs):
        config = {'name': name} if name else {}
        return FakeDestination(config, **kwargs)

    return _make


@pytest.fixture
def remote_object():
    """Factory for RemoteObject listings."""

    def _make(name, modified, size=100):
        return RemoteObject(name=name, size=size, modified=modified, id=f"id-{name}")

    return _make


@pytest.fixture
def sleeps():
    """Backoff delays, recorded by passing sleeps.append as the sleep function."""
    return []


@pytest.fixture
def make_config(tmp_path):
    """
    Write a target list and settings file, return a Config pointing at them.

    Settings default to 7-day retention and a single 'fake' uploader.
    """

    def _make(targets=(), settings=None, write_settings=True):
        backup_file = tmp_path / '.backup'
        config_file = tmp_path / '.config'

        backup_file.write_text('\n'.join(targets) + '\n')

        if write_settings:
            data = {'retention_days': 7, 'uploaders': [{'type': 'fake'}]}
            data.update(settings or {})
            config_file.write_text(json.dumps(data))

        return Config(
            backup_file=str(backup_file),
            config_file=str(config_file),
            local_backup_dir=str(tmp_path / 'backups')
        )

    return _make


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never looks at the real chain."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a folder to back up.

    Creates:
    - data/file1.txt
    - data/file2.log
    - data/nested/file3.txt
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    (data_dir / 'file1.txt').write_text('Test content 1')
    (data_dir / 'file2.log').write_text('Test log content')

    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'file3.txt').write_text('Nested test content')

    return data_dir


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive file for testing.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'folder-test_data-20240115-020000.tar.gz'
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    return archive_path
