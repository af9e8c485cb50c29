"""
Tests for admin login, session expiry and API token access.
"""
import pytest
import sys
import os
from datetime import timedelta

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


class TestAdminLogin:
    """Tests for the login endpoint."""

    def test_login_success(self, client, temp_data_dir):
        response = client.post('/api/admin/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['email'] == ADMIN_EMAIL
        assert 'expires_at' in data

    def test_login_email_case_insensitive(self, client, temp_data_dir):
        response = client.post('/api/admin/login',
                               json={'email': ADMIN_EMAIL.upper(), 'password': ADMIN_PASSWORD})
        assert response.status_code == 200

    def test_wrong_password(self, client, temp_data_dir):
        response = client.post('/api/admin/login', json={'email': ADMIN_EMAIL, 'password': 'wrong'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Invalid email or password'

    def test_wrong_email(self, client, temp_data_dir):
        response = client.post('/api/admin/login', json={'email': 'other@x.org', 'password': ADMIN_PASSWORD})
        assert response.status_code == 401

    def test_missing_fields(self, client, temp_data_dir):
        response = client.post('/api/admin/login', json={'email': ADMIN_EMAIL})
        assert response.status_code == 400

    def test_unconfigured_server(self, client, temp_data_dir, monkeypatch):
        import app as app_module
        monkeypatch.setattr(app_module, 'ADMIN_PASSWORD_HASH', None)
        response = client.post('/api/admin/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
        assert response.status_code == 500


class TestAdminRequired:
    """Tests for protected admin routes."""

    def test_anonymous_rejected(self, client, temp_data_dir):
        response = client.get('/api/admin/me')
        assert response.status_code == 401
        data = response.get_json()
        assert data['requiresAuth'] is True
        assert data['success'] is False

    def test_session_accepted(self, admin_client):
        response = admin_client.get('/api/admin/me')
        assert response.status_code == 200
        data = response.get_json()
        assert data['email'] == ADMIN_EMAIL
        assert data['via_token'] is False

    def test_logout(self, admin_client):
        admin_client.post('/api/admin/logout')
        assert admin_client.get('/api/admin/me').status_code == 401

    def test_session_expires_after_24_hours(self, admin_client):
        import app as app_module
        with admin_client.session_transaction() as sess:
            stale = app_module.now_utc() - timedelta(hours=25)
            sess['admin_login_at'] = stale.isoformat()
        assert admin_client.get('/api/admin/me').status_code == 401

    def test_bearer_token(self, client, temp_data_dir, auth_headers):
        response = client.get('/api/admin/me', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['via_token'] is True

    def test_wrong_bearer_token(self, client, temp_data_dir):
        response = client.get('/api/admin/me', headers={'Authorization': 'Bearer nope'})
        assert response.status_code == 401

    def test_token_disabled_when_unset(self, client, temp_data_dir, auth_headers, monkeypatch):
        import app as app_module
        monkeypatch.setattr(app_module, 'API_TOKEN', None)
        assert client.get('/api/admin/me', headers=auth_headers).status_code == 401


class TestJsonErrors:
    def test_unknown_api_route_is_json(self, client, temp_data_dir):
        response = client.get('/api/does-not-exist')
        assert response.status_code == 404
        assert response.get_json()['success'] is False
