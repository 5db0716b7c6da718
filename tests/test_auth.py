import pytest
import requests
from flask import g, jsonify

from app import create_app
from auth import token_required
from auth_provider import LocalAuthProvider
from conftest import StorytimeTestConfig
from errors import UpstreamFailure


class CountingProvider(LocalAuthProvider):
    def __init__(self):
        super().__init__()
        self.introspections = 0

    def get_user(self, token):
        self.introspections += 1
        return super().get_user(token)


class OutageProvider(LocalAuthProvider):
    """Sign-in works, but introspection and sign-out cannot reach the provider."""

    def get_user(self, token):
        raise UpstreamFailure('provider down')

    def sign_out(self, token):
        raise requests.exceptions.Timeout('provider timed out')


PROTECTED = [
    ('get', '/api/auth/me', None),
    ('get', '/api/books', None),
    ('post', '/api/books', {'title': 'Atlas'}),
    ('get', '/api/books/some-id', None),
    ('post', '/api/books/some-id/chapters', {'content': 'text', 'idx': 1}),
    ('post', '/api/story/next', {'prompt': 'Once upon a time'}),
]


def test_register_then_login_returns_same_email(client):
    resp = client.post('/api/auth/register', json={'email': 'Ada@Example.com', 'password': 'secret1'})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['user']['email'] == 'Ada@Example.com'
    assert body['session']['access_token']

    login = client.post('/api/auth/login', json={'email': 'ada@example.com', 'password': 'secret1'})
    assert login.status_code == 200
    data = login.get_json()
    assert data['access_token'] == data['session']['access_token']

    me = client.get('/api/auth/me', headers={'Authorization': f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.get_json()['user']['email'] == 'Ada@Example.com'
    assert me.get_json()['user']['id'] == body['user']['id']


@pytest.mark.parametrize('payload', [
    {},
    {'email': 'a@b.c'},
    {'password': 'secret1'},
    {'email': '   ', 'password': 'secret1'},
    {'email': 'a@b.c', 'password': 'short'},
])
def test_register_rejects_invalid_input(client, payload):
    resp = client.post('/api/auth/register', json=payload)
    assert resp.status_code == 400
    assert resp.get_json()['kind'] == 'invalid_argument'


def test_register_duplicate_email_is_provider_error(client):
    client.post('/api/auth/register', json={'email': 'a@b.c', 'password': 'secret1'})
    resp = client.post('/api/auth/register', json={'email': 'A@B.C', 'password': 'secret2'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'User already registered'


def test_login_with_wrong_password_is_401(client):
    client.post('/api/auth/register', json={'email': 'a@b.c', 'password': 'secret1'})
    resp = client.post('/api/auth/login', json={'email': 'a@b.c', 'password': 'wrong-pass'})
    assert resp.status_code == 401
    body = resp.get_json()
    assert body['kind'] == 'unauthenticated'
    assert body['reason'] == 'invalid_credentials'
    assert 'access_token' not in body


@pytest.mark.parametrize('method,path,payload', PROTECTED)
@pytest.mark.parametrize('header,reason', [
    (None, 'missing_token'),
    ('', 'missing_token'),
    ('Token abc', 'missing_token'),
    ('Bearer ', 'missing_token'),
    ('Bearer garbage', 'invalid_token'),
])
def test_protected_endpoints_reject_bad_tokens(client, method, path, payload, header, reason):
    headers = {} if header is None else {'Authorization': header}
    resp = getattr(client, method)(path, json=payload, headers=headers)
    assert resp.status_code == 401
    assert resp.is_json
    body = resp.get_json()
    assert set(body) == {'error', 'kind', 'reason'}
    assert body['kind'] == 'unauthenticated'
    assert body['reason'] == reason


def test_every_request_reverifies_token():
    provider = CountingProvider()
    app = create_app(StorytimeTestConfig, auth_provider=provider)
    client = app.test_client()
    client.post('/api/auth/register', json={'email': 'a@b.c', 'password': 'secret1'})
    token = client.post('/api/auth/login', json={'email': 'a@b.c', 'password': 'secret1'}).get_json()['access_token']
    headers = {'Authorization': f'Bearer {token}'}

    for _ in range(3):
        assert client.get('/api/books', headers=headers).status_code == 200
    assert provider.introspections == 3


def test_introspection_outage_is_verification_failed():
    app = create_app(StorytimeTestConfig, auth_provider=OutageProvider())
    client = app.test_client()
    resp = client.get('/api/books', headers={'Authorization': 'Bearer whatever'})
    assert resp.status_code == 401
    assert resp.get_json()['reason'] == 'verification_failed'


def test_logout_revokes_token(client, token):
    headers = {'Authorization': f'Bearer {token}'}
    resp = client.post('/api/auth/logout', headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['message'] == 'Logout successful'
    assert client.get('/api/auth/me', headers=headers).status_code == 401


def test_logout_is_always_200(client):
    assert client.post('/api/auth/logout').status_code == 200
    assert client.post('/api/auth/logout', headers={'Authorization': 'Bearer nope'}).status_code == 200


def test_logout_survives_provider_timeout():
    app = create_app(StorytimeTestConfig, auth_provider=OutageProvider())
    client = app.test_client()
    resp = client.post('/api/auth/logout', headers={'Authorization': 'Bearer whatever'})
    assert resp.status_code == 200


def test_status_reports_providers_without_secrets(client):
    body = client.get('/api/ai/status').get_json()
    assert body == {'llm_provider': 'mock', 'llm_model': 'mock', 'auth_provider': 'local'}


def test_middleware_stores_principal_on_g():
    app = create_app(StorytimeTestConfig)

    @app.route('/api/whoami-g')
    @token_required
    def whoami_g(principal):
        return jsonify({'same': g.principal is principal, 'token_kept': 'access_token' in g})

    client = app.test_client()
    client.post('/api/auth/register', json={'email': 'a@b.c', 'password': 'secret1'})
    token = client.post('/api/auth/login', json={'email': 'a@b.c', 'password': 'secret1'}).get_json()['access_token']
    body = client.get('/api/whoami-g', headers={'Authorization': f'Bearer {token}'}).get_json()
    assert body == {'same': True, 'token_kept': False}
