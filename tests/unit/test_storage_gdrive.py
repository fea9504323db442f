"""
Unit tests for the Google Drive API destination (backhaul/backup/destinations/gdrive.py).
"""

from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from backhaul.backup.destinations.base import (
    DeleteError,
    ListError,
    StorageConnectionError,
    UploadError,
)
from backhaul.backup.destinations.gdrive import DRIVE_SCOPES, GoogleDriveApiDestination
from backhaul.config import ConfigError


def _http_error(status, message='boom'):
    resp = MagicMock(status=status, reason=message)
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode('utf-8')
    return HttpError(resp, content)


@pytest.fixture
def service_account_file(tmp_path):
    path = tmp_path / 'service-account.json'
    path.write_text('{"type": "service_account"}')
    return path


@pytest.fixture
def drive_service():
    return MagicMock()


@pytest.fixture
def destination(service_account_file, drive_service):
    dest = GoogleDriveApiDestination({
        'folder_id': 'folder-123',
        'service_account_file': str(service_account_file)
    })
    with patch('backhaul.backup.destinations.gdrive.Credentials.from_service_account_file') as mock_creds, \
            patch.object(GoogleDriveApiDestination, '_build_service', return_value=drive_service):
        dest.initialize()
        mock_creds.assert_called_once_with(str(service_account_file), scopes=DRIVE_SCOPES)
    return dest


class TestGoogleDriveApiConfig:
    """Test construction and credential discovery."""

    def test_folder_id_required(self):
        with pytest.raises(ConfigError, match="Missing required field 'folder_id'"):
            GoogleDriveApiDestination({})

    def test_credentials_from_environment(self, monkeypatch):
        monkeypatch.delenv('GOOGLE_SERVICE_ACCOUNT_PATH', raising=False)
        monkeypatch.setenv('GOOGLE_APPLICATION_CREDENTIALS', '/etc/gcp/key.json')

        dest = GoogleDriveApiDestination({'folder_id': 'f'})

        assert dest.service_account_file == '/etc/gcp/key.json'
        assert dest.container == 'f'

    def test_initialize_without_credentials(self, monkeypatch):
        monkeypatch.delenv('GOOGLE_SERVICE_ACCOUNT_PATH', raising=False)
        monkeypatch.delenv('GOOGLE_APPLICATION_CREDENTIALS', raising=False)
        dest = GoogleDriveApiDestination({'folder_id': 'f'})

        with pytest.raises(StorageConnectionError, match='service account key'):
            dest.initialize()

    def test_initialize_missing_key_file(self, tmp_path):
        dest = GoogleDriveApiDestination({
            'folder_id': 'f', 'service_account_file': str(tmp_path / 'missing.json')
        })

        with pytest.raises(StorageConnectionError, match='Service account file not found'):
            dest.initialize()

    def test_initialize_bad_key(self, service_account_file):
        dest = GoogleDriveApiDestination({
            'folder_id': 'f', 'service_account_file': str(service_account_file)
        })

        with patch('backhaul.backup.destinations.gdrive.Credentials.from_service_account_file',
                   side_effect=ValueError('missing private_key')):
            with pytest.raises(StorageConnectionError, match='missing private_key'):
                dest.initialize()

        assert dest.initialized is False


class TestGoogleDriveApiDestination:
    """Test Drive operations against a mocked service."""

    def test_connection(self, destination, drive_service):
        drive_service.about.return_value.get.return_value.execute.return_value = {
            'user': {'emailAddress': 'backup@project.iam.gserviceaccount.com'}
        }

        assert destination.test_connection() is True
        drive_service.about.return_value.get.assert_called_once_with(fields='user')

    def test_connection_failure(self, destination, drive_service):
        drive_service.about.return_value.get.return_value.execute.side_effect = _http_error(403, 'forbidden')

        with pytest.raises(StorageConnectionError):
            destination.test_connection()

    @patch('backhaul.backup.destinations.gdrive.MediaFileUpload')
    def test_upload(self, mock_media, destination, drive_service, sample_archive):
        drive_service.files.return_value.create.return_value.execute.return_value = {
            'id': 'file-1', 'name': sample_archive.name, 'size': '321'
        }

        result = destination.upload_file(str(sample_archive), 'folder-123', sample_archive.name)

        assert result.name == sample_archive.name
        assert result.size == 321
        mock_media.assert_called_once_with(str(sample_archive), mimetype='application/gzip', resumable=True)
        kwargs = drive_service.files.return_value.create.call_args[1]
        assert kwargs['body'] == {'name': sample_archive.name, 'parents': ['folder-123']}
        assert kwargs['supportsAllDrives'] is True

    @patch('backhaul.backup.destinations.gdrive.MediaFileUpload')
    def test_upload_failure(self, mock_media, destination, drive_service, sample_archive):
        drive_service.files.return_value.create.return_value.execute.side_effect = _http_error(500, 'backend error')

        with pytest.raises(UploadError, match='Google Drive upload failed'):
            destination.upload_file(str(sample_archive), 'folder-123', sample_archive.name)

    def test_list_pages_and_sorts(self, destination, drive_service):
        drive_service.files.return_value.list.return_value.execute.side_effect = [
            {
                'files': [{'id': 'a', 'name': 'old.tar.gz', 'size': '10',
                           'createdTime': '2024-01-01T00:00:00.000Z'}],
                'nextPageToken': 'page-2'
            },
            {
                'files': [{'id': 'b', 'name': 'new.tar.gz', 'size': '20',
                           'createdTime': '2024-01-10T00:00:00.000Z'}]
            },
        ]

        files = destination.list_files('folder-123')

        assert [f.name for f in files] == ['new.tar.gz', 'old.tar.gz']
        assert [f.id for f in files] == ['b', 'a']
        assert files[0].modified.tzinfo is not None
        calls = drive_service.files.return_value.list.call_args_list
        assert calls[1][1]['pageToken'] == 'page-2'
        assert "'folder-123' in parents" in calls[0][1]['q']

    def test_list_missing_folder_is_empty(self, destination, drive_service):
        drive_service.files.return_value.list.return_value.execute.side_effect = _http_error(404, 'File not found')

        assert destination.list_files('gone') == []

    def test_list_error(self, destination, drive_service):
        drive_service.files.return_value.list.return_value.execute.side_effect = _http_error(500)

        with pytest.raises(ListError):
            destination.list_files('folder-123')

    def test_delete_by_name_removes_duplicates(self, destination, drive_service):
        drive_service.files.return_value.list.return_value.execute.return_value = {
            'files': [
                {'id': 'x1', 'name': 'dup.tar.gz', 'createdTime': '2024-01-01T00:00:00Z'},
                {'id': 'x2', 'name': 'dup.tar.gz', 'createdTime': '2024-01-02T00:00:00Z'},
            ]
        }

        destination.delete_file('folder-123', 'dup.tar.gz')

        deleted = [c[1]['fileId'] for c in drive_service.files.return_value.delete.call_args_list]
        assert deleted == ['x1', 'x2']

    def test_delete_missing_file(self, destination, drive_service):
        drive_service.files.return_value.list.return_value.execute.return_value = {'files': []}

        with pytest.raises(DeleteError, match='File not found'):
            destination.delete_file('folder-123', 'nope.tar.gz')

    def test_cleanup_deletes_by_id(self, destination, drive_service):
        drive_service.files.return_value.list.return_value.execute.return_value = {
            'files': [
                {'id': 'old-id', 'name': 'old.tar.gz', 'size': '1', 'createdTime': '2020-01-01T00:00:00.000Z'},
                {'id': 'new-id', 'name': 'new.tar.gz', 'size': '1', 'createdTime': '2999-01-01T00:00:00.000Z'},
            ]
        }

        assert destination.cleanup_old_backups('folder-123', 7) == 1
        drive_service.files.return_value.delete.assert_called_once_with(fileId='old-id', supportsAllDrives=True)
