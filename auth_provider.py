"""Auth provider collaborators.

The server never handles passwords itself beyond handing them to a provider.
A provider exposes four calls:

* ``sign_up(email, password)``  -> ``{'user': {...}, 'session': {...} | None}``
* ``sign_in(email, password)``  -> ``{'user': {...}, 'session': {...}}``
* ``sign_out(token)``           -> best-effort revoke
* ``get_user(token)``           -> ``Principal`` or ``None`` (token introspection)

``get_user`` returns ``None`` only when the provider says the token is invalid,
expired or revoked. Anything else (network failure, outage) raises
``UpstreamFailure`` so the middleware can tell the two apart.

``LocalAuthProvider`` keeps accounts in memory for local development and
tests. ``firebase_auth.FirebaseAuthProvider`` talks to Firebase.
"""

import secrets
import threading
import time
from dataclasses import dataclass, asdict

from flask import current_app
from werkzeug.security import generate_password_hash, check_password_hash

from errors import InvalidArgument, Unauthenticated

EXTENSION_KEY = 'storytime_auth'


@dataclass(frozen=True)
class Principal:
    """Resolved identity of an authenticated caller."""
    id: str
    email: str

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError('principal requires an id')
        return cls(id=str(data['id']), email=str(data.get('email') or ''))


def generate_token():
    return secrets.token_hex(32)


class AuthProvider:
    name = 'base'

    def sign_up(self, email, password):
        raise NotImplementedError

    def sign_in(self, email, password):
        raise NotImplementedError

    def sign_out(self, token):
        raise NotImplementedError

    def get_user(self, token):
        raise NotImplementedError


class LocalAuthProvider(AuthProvider):
    """In-memory accounts and sessions (dev only, nothing survives a restart)."""
    name = 'local'

    def __init__(self):
        self._lock = threading.Lock()
        # USERS keyed by lowercased email to enforce case-insensitive uniqueness
        self.users = {}     # email_lower -> { id, email, password_hash, created_at }
        self.sessions = {}  # token -> email_lower

    def _issue_session(self, email_lower):
        token = generate_token()
        self.sessions[token] = email_lower
        return {'access_token': token, 'token_type': 'bearer'}

    @staticmethod
    def _public_user(user):
        return {'id': user['id'], 'email': user['email'], 'created_at': user['created_at']}

    def sign_up(self, email, password):
        email_lower = email.strip().lower()
        with self._lock:
            if email_lower in self.users:
                raise InvalidArgument('User already registered')
            user = {
                'id': secrets.token_hex(8),
                'email': email.strip(),
                'password_hash': generate_password_hash(password),
                'created_at': int(time.time()),
            }
            self.users[email_lower] = user
            session = self._issue_session(email_lower)
        return {'user': self._public_user(user), 'session': session}

    def sign_in(self, email, password):
        email_lower = email.strip().lower()
        with self._lock:
            user = self.users.get(email_lower)
            if not user or not check_password_hash(user['password_hash'], password):
                raise Unauthenticated('invalid_credentials')
            session = self._issue_session(email_lower)
        return {'user': self._public_user(user), 'session': session}

    def sign_out(self, token):
        with self._lock:
            self.sessions.pop(token, None)

    def get_user(self, token):
        with self._lock:
            email_lower = self.sessions.get(token)
            user = self.users.get(email_lower) if email_lower else None
        if not user:
            return None
        return Principal(id=user['id'], email=user['email'])


def _build_provider(app):
    provider_name = app.config.get('AUTH_PROVIDER', 'local')
    if provider_name == 'firebase':
        from firebase_auth import FirebaseAuthProvider
        return FirebaseAuthProvider.from_config(app.config)
    if provider_name != 'local':
        raise ValueError(f'Unknown AUTH_PROVIDER: {provider_name}')
    return LocalAuthProvider()


def init_auth_provider(app, provider=None):
    """Attach the configured auth provider to ``app`` (call once at startup)."""
    if provider is None:
        provider = _build_provider(app)
    app.extensions[EXTENSION_KEY] = provider
    app.logger.info('Auth provider initialized: %s', provider.name)
    return provider


def get_auth_provider():
    return current_app.extensions[EXTENSION_KEY]
