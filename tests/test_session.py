import json
import os
from unittest.mock import MagicMock

import pytest
import requests

from api_client import ApiError, StorytimeClient, TransportError
from auth_provider import Principal
from errors import InvalidArgument
from session import (CredentialStore, InvalidTransition, RestoreOutcome, SessionManager,
                     SessionState)


class ScriptedTransport:
    """Delegates to the Flask app unless a path has a scripted outcome."""

    def __init__(self, inner, outcomes=None):
        self.inner = inner
        self.outcomes = outcomes or {}

    def request(self, method, url, **kwargs):
        for path, outcome in self.outcomes.items():
            if url.endswith(path):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return self.inner.request(method, url, **kwargs)


def _raw_response(status_code, content_type, body):
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = {'Content-Type': content_type}
    resp.json.side_effect = lambda: json.loads(body)
    return resp


def _manager(transport, store, outcomes):
    return SessionManager(StorytimeClient('http://testserver', http=ScriptedTransport(transport, outcomes)), store)


def test_register_then_login_yields_registered_email(sessions, credential_store):
    sessions.register('writer@example.com', 'secret1')
    session = sessions.login('writer@example.com', 'secret1')

    assert session.principal.email == 'writer@example.com'
    assert session.issued_trust is True
    assert sessions.state is SessionState.AUTHENTICATED
    token, principal = credential_store.load()
    assert token == session.token
    assert principal == session.principal


def test_failed_login_stays_unauthenticated(sessions, credential_store):
    sessions.register('writer@example.com', 'secret1')
    with pytest.raises(ApiError) as exc:
        sessions.login('writer@example.com', 'not-the-password')
    assert exc.value.status == 401
    assert sessions.state is SessionState.UNAUTHENTICATED
    assert credential_store.load() is None


@pytest.mark.parametrize('email,password', [('', 'secret1'), ('a@b.c', ''), ('a@b.c', '12345')])
def test_credentials_validated_before_network(credential_store, email, password):
    http = MagicMock()
    manager = SessionManager(StorytimeClient('http://testserver', http=http), credential_store)
    with pytest.raises(InvalidArgument):
        manager.login(email, password)
    with pytest.raises(InvalidArgument):
        manager.register(email, password)
    http.request.assert_not_called()
    assert manager.state is SessionState.UNAUTHENTICATED


def test_restore_without_credential(sessions):
    assert sessions.restore() is RestoreOutcome.NO_CREDENTIAL
    assert sessions.state is SessionState.UNAUTHENTICATED


def test_restore_verifies_with_server(api, credential_store):
    first = SessionManager(api, credential_store)
    first.register('writer@example.com', 'secret1')
    first.login('writer@example.com', 'secret1')

    # A new process with only the stored file
    restarted = SessionManager(api, credential_store)
    assert restarted.restore() is RestoreOutcome.RESTORED
    assert restarted.is_authenticated
    assert restarted.session.principal.email == 'writer@example.com'


def test_restore_rejected_token_clears_store(sessions, credential_store, transport):
    credential_store.save('revoked-token', Principal(id='u1', email='old@example.com'))

    assert sessions.restore() is RestoreOutcome.REJECTED
    assert sessions.state is SessionState.UNAUTHENTICATED
    assert sessions.session is None
    assert not os.path.exists(credential_store.path)
    assert transport.calls == [('GET', '/api/auth/me')]


@pytest.mark.parametrize('outcome', [
    requests.exceptions.ConnectionError('server unreachable'),
    requests.exceptions.Timeout('slow'),
    _raw_response(502, 'text/html', '<html>Bad Gateway</html>'),
    _raw_response(200, 'application/json', '{truncated'),
    _raw_response(401, 'application/json',
                  '{"error": "Unable to verify token", "kind": "unauthenticated", "reason": "verification_failed"}'),
])
def test_restore_transient_failure_preserves_credential(transport, credential_store, outcome):
    principal = Principal(id='u1', email='writer@example.com')
    credential_store.save('good-token', principal)
    manager = _manager(transport, credential_store, {'/api/auth/me': outcome})

    assert manager.restore() is RestoreOutcome.UNREACHABLE
    assert manager.state is SessionState.UNAUTHENTICATED
    assert not manager.is_authenticated
    assert credential_store.load() == ('good-token', principal)


def test_logout_clears_store_even_if_revoke_times_out(transport, credential_store):
    manager = _manager(transport, credential_store, {'/api/auth/logout': requests.exceptions.Timeout('provider timeout')})
    manager.register('writer@example.com', 'secret1')
    manager.login('writer@example.com', 'secret1')

    manager.logout()

    assert manager.state is SessionState.UNAUTHENTICATED
    assert manager.session is None
    assert credential_store.load() is None


def test_logout_revokes_on_server(sessions, api):
    sessions.register('writer@example.com', 'secret1')
    token = sessions.login('writer@example.com', 'secret1').token
    sessions.logout()
    with pytest.raises(ApiError) as exc:
        api.me(token)
    assert exc.value.reason == 'invalid_token'


def test_logout_after_unreachable_restore_clears_store(transport, credential_store):
    credential_store.save('tok', Principal(id='u1', email='a@b.c'))
    manager = _manager(transport, credential_store,
                       {'/api/auth/me': requests.exceptions.ConnectionError('server unreachable')})
    assert manager.restore() is RestoreOutcome.UNREACHABLE

    manager.logout()

    assert credential_store.load() is None
    assert manager.state is SessionState.UNAUTHENTICATED
    assert manager.session is None
    assert transport.calls == []


def test_logout_without_session_is_harmless(sessions):
    sessions.logout()
    sessions.logout()
    assert sessions.state is SessionState.UNAUTHENTICATED


def test_unlisted_transition_is_rejected(sessions):
    with pytest.raises(InvalidTransition):
        sessions._transition(SessionState.LOGGING_OUT)


def test_rejected_call_drops_session(sessions, credential_store, client):
    sessions.register('writer@example.com', 'secret1')
    token = sessions.login('writer@example.com', 'secret1').token
    # Server-side revocation behind the client's back
    client.post('/api/auth/logout', headers={'Authorization': f'Bearer {token}'})

    with pytest.raises(ApiError) as exc:
        sessions.call(sessions.api.list_books)
    assert exc.value.is_unauthenticated
    assert sessions.state is SessionState.UNAUTHENTICATED
    assert credential_store.load() is None


def test_verification_outage_does_not_drop_session(transport, credential_store):
    outage = _raw_response(401, 'application/json',
                           '{"error": "Unable to verify token", "kind": "unauthenticated", "reason": "verification_failed"}')
    manager = _manager(transport, credential_store, {'/api/books': outage})
    manager.register('writer@example.com', 'secret1')
    manager.login('writer@example.com', 'secret1')

    with pytest.raises(ApiError) as exc:
        manager.call(manager.api.list_books)
    assert exc.value.is_transient_auth
    assert manager.is_authenticated
    assert credential_store.load() is not None


def test_call_without_session_is_unauthenticated(sessions):
    with pytest.raises(ApiError) as exc:
        sessions.call(sessions.api.list_books)
    assert exc.value.reason == 'missing_token'


def test_non_json_response_is_transport_error(transport):
    api = StorytimeClient('http://testserver', http=ScriptedTransport(transport, {
        '/api/books': _raw_response(200, 'text/html; charset=utf-8', '<html></html>'),
    }))
    with pytest.raises(TransportError):
        api.list_books('any-token')


def test_credential_store_roundtrip_and_corruption(tmp_path):
    store = CredentialStore(str(tmp_path / 'creds.json'))
    assert store.load() is None

    store.save('tok', Principal(id='u1', email='a@b.c'))
    assert store.load() == ('tok', Principal(id='u1', email='a@b.c'))

    (tmp_path / 'creds.json').write_text('{"token": "tok"', encoding='utf-8')
    assert store.load() is None
    assert not (tmp_path / 'creds.json').exists()

    store.clear()
    store.clear()
