"""
Tests for scripts/restore.py: HTTP restore tool.

Mocks the import request to test validation, confirmation and upload.
"""
import pytest
import sys
import os
import zipfile
from unittest.mock import Mock, patch

import requests

# Add scripts directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

import restore


@pytest.fixture
def backup_zip(tmp_path):
    path = tmp_path / 'backup.zip'
    with zipfile.ZipFile(path, 'w') as zf:
        zf.writestr('saints.yaml', 'saints: []\n')
        zf.writestr('brackets.yaml', 'brackets: []\n')
    return str(path)


def ok_response():
    response = Mock(status_code=200)
    response.json.return_value = {'success': True, 'backup_location': '/srv/backups/pre-restore-1'}
    return response


class TestZIPValidation:
    """Tests for backup ZIP structure validation."""

    def test_valid_zip(self, backup_zip):
        restore.validate_zip_structure(backup_zip)

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            restore.validate_zip_structure(str(tmp_path / 'missing.zip'))
        assert exc_info.value.code == 1

    def test_missing_data_files(self, tmp_path):
        path = tmp_path / 'other.zip'
        with zipfile.ZipFile(path, 'w') as zf:
            zf.writestr('notes.txt', 'hello')
        with pytest.raises(SystemExit) as exc_info:
            restore.validate_zip_structure(str(path))
        assert exc_info.value.code == 1

    def test_directory_traversal(self, tmp_path):
        path = tmp_path / 'evil.zip'
        with zipfile.ZipFile(path, 'w') as zf:
            zf.writestr('saints.yaml', 'saints: []\n')
            zf.writestr('../escape.yaml', 'x')
        with pytest.raises(SystemExit):
            restore.validate_zip_structure(str(path))

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / 'bad.zip'
        path.write_bytes(b'not a zip')
        with pytest.raises(SystemExit):
            restore.validate_zip_structure(str(path))


class TestUpload:
    """Tests for posting the ZIP to the server."""

    def test_success(self, backup_zip):
        with patch('restore.requests.post', return_value=ok_response()) as mock_post:
            payload = restore.upload_backup(backup_zip, 'https://x.org', 'secret')
        assert payload['success'] is True
        args, kwargs = mock_post.call_args
        assert args[0] == 'https://x.org/api/admin/import'
        assert kwargs['headers'] == {'Authorization': 'Bearer secret'}
        assert 'file' in kwargs['files']

    def test_auth_failure_exit_code(self, backup_zip):
        response = Mock(status_code=401)
        response.json.return_value = {'success': False, 'error': 'Admin authentication required'}
        with patch('restore.requests.post', return_value=response):
            with pytest.raises(SystemExit) as exc_info:
                restore.upload_backup(backup_zip, 'https://x.org', 'bad')
        assert exc_info.value.code == 2

    def test_server_rejects_zip(self, backup_zip):
        response = Mock(status_code=400)
        response.json.return_value = {'success': False, 'error': 'ZIP contains unsafe file paths'}
        with patch('restore.requests.post', return_value=response):
            with pytest.raises(SystemExit) as exc_info:
                restore.upload_backup(backup_zip, 'https://x.org', 'secret')
        assert exc_info.value.code == 3

    def test_connection_error(self, backup_zip):
        with patch('restore.requests.post', side_effect=requests.ConnectionError('refused')):
            with pytest.raises(SystemExit) as exc_info:
                restore.upload_backup(backup_zip, 'https://x.org', 'secret')
        assert exc_info.value.code == 2


class TestMain:
    """Tests for the confirmation flow."""

    def test_force_skips_prompt(self, backup_zip):
        with patch('restore.requests.post', return_value=ok_response()) as mock_post, \
                patch('builtins.input') as mock_input:
            code = restore.main([backup_zip, '--url', 'https://x.org', '--token', 't', '--force'])
        assert code == 0
        mock_input.assert_not_called()
        mock_post.assert_called_once()

    def test_cancelled(self, backup_zip):
        with patch('restore.requests.post') as mock_post, patch('builtins.input', return_value='no'):
            code = restore.main([backup_zip, '--token', 't'])
        assert code == 0
        mock_post.assert_not_called()

    def test_confirmed(self, backup_zip):
        with patch('restore.requests.post', return_value=ok_response()) as mock_post, \
                patch('builtins.input', return_value='RESTORE'):
            assert restore.main([backup_zip, '--token', 't']) == 0
        mock_post.assert_called_once()

    def test_missing_token(self, backup_zip, monkeypatch):
        monkeypatch.delenv('SAINTFEST_API_TOKEN', raising=False)
        with pytest.raises(SystemExit) as exc_info:
            restore.main([backup_zip])
        assert exc_info.value.code == 1
