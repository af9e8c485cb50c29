"""
Shared pytest fixtures for Saintfest tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os
import yaml
from werkzeug.security import generate_password_hash

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

ADMIN_EMAIL = 'admin@saintfest.test'
ADMIN_PASSWORD = 'pray-for-us'
API_TOKEN = 'test-api-token'

SAMPLE_CATEGORIES = ['martyrs', 'virgins', 'bishop', 'mystic', 'hermit']


def make_saints(categories=None, per_category=10):
    """Build saint records, ``per_category`` saints flagged for each category."""
    saints = []
    for category in categories or SAMPLE_CATEGORIES:
        for i in range(per_category):
            saints.append({
                'id': f'{category}-saint-{i + 1}',
                'name': f'{category.title()} Saint {i + 1}',
                category: True,
                'created_at': '2025-01-01T00:00:00',
                'updated_at': '2025-01-01T00:00:00',
            })
    return saints


@pytest.fixture
def sample_saints():
    """Ten saints in each of five categories."""
    return make_saints()


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the app at an empty temporary data directory with admin credentials set."""
    import app as app_module

    data_dir = tmp_path / "data"
    data_dir.mkdir()

    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    monkeypatch.setattr(app_module, 'BASE_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'API_TOKEN', API_TOKEN)
    monkeypatch.setattr(app_module, 'ADMIN_EMAIL', ADMIN_EMAIL)
    monkeypatch.setattr(app_module, 'ADMIN_PASSWORD_HASH', generate_password_hash(ADMIN_PASSWORD))

    return str(data_dir)


@pytest.fixture
def saints_data_dir(temp_data_dir, sample_saints):
    """Temporary data directory with the sample saints already stored."""
    saints_file = os.path.join(temp_data_dir, 'saints.yaml')
    with open(saints_file, 'w') as f:
        yaml.dump({'saints': sample_saints}, f, default_flow_style=False)
    return temp_data_dir


@pytest.fixture
def client():
    """Create a test client (unauthenticated)."""
    from app import app
    app.config['TESTING'] = True
    client = app.test_client()
    yield client


@pytest.fixture
def admin_client(temp_data_dir):
    """Create a test client logged in as the administrator."""
    from app import app
    app.config['TESTING'] = True
    client = app.test_client()
    response = client.post('/api/admin/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    yield client


@pytest.fixture
def auth_headers():
    """Authorization header carrying the API token."""
    return {'Authorization': f'Bearer {API_TOKEN}'}
