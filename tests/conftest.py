import json
from urllib.parse import urlsplit

import pytest

from api_client import StorytimeClient
from app import create_app
from config import Config
from session import CredentialStore, SessionManager


class StorytimeTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    AUTH_PROVIDER = 'local'
    LLM_PROVIDER = 'mock'
    LLM_MODEL = None


class FlaskResponse:
    """Just enough of ``requests.Response`` for StorytimeClient."""

    def __init__(self, resp):
        self.status_code = resp.status_code
        self.headers = resp.headers
        self.text = resp.get_data(as_text=True)

    def json(self):
        return json.loads(self.text)


class FlaskTransport:
    """Route StorytimeClient requests into a Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, headers=None, json=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path))
        return FlaskResponse(self.test_client.open(path, method=method, headers=headers, json=json))


@pytest.fixture
def app():
    return create_app(StorytimeTestConfig)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register_and_login(client):
    def _login(email='reader@example.com', password='secret1'):
        client.post('/api/auth/register', json={'email': email, 'password': password})
        resp = client.post('/api/auth/login', json={'email': email, 'password': password})
        assert resp.status_code == 200
        return resp.get_json()['access_token']
    return _login


@pytest.fixture
def token(register_and_login):
    return register_and_login()


@pytest.fixture
def auth_headers(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def transport(client):
    return FlaskTransport(client)


@pytest.fixture
def api(transport):
    return StorytimeClient('http://testserver', http=transport)


@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(str(tmp_path / 'storytime' / 'credentials.json'))


@pytest.fixture
def sessions(api, credential_store):
    return SessionManager(api, credential_store)
