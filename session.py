"""Client-side session lifecycle.

``CredentialStore`` is the only durable client state: a small JSON file with
the bearer token and the principal it belongs to. ``SessionManager`` decides
when that state may be trusted::

    UNAUTHENTICATED -> VERIFYING -> AUTHENTICATED | UNAUTHENTICATED
    AUTHENTICATED   -> LOGGING_OUT -> UNAUTHENTICATED

A stored credential is only trusted after the server confirms it. Only an
explicit rejection from the server deletes it; an unreachable server leaves
it in place so the next start can try again.
"""

import enum
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass

from api_client import ApiError, TransportError
from auth_provider import Principal
from errors import InvalidArgument

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Session:
    token: str
    principal: Principal
    issued_trust: bool = False


class SessionState(enum.Enum):
    UNAUTHENTICATED = 'unauthenticated'
    VERIFYING = 'verifying'
    AUTHENTICATED = 'authenticated'
    LOGGING_OUT = 'logging_out'


class RestoreOutcome(enum.Enum):
    NO_CREDENTIAL = 'no_credential'
    RESTORED = 'restored'
    REJECTED = 'rejected'
    UNREACHABLE = 'unreachable'


_TRANSITIONS = {
    SessionState.UNAUTHENTICATED: {SessionState.VERIFYING},
    SessionState.VERIFYING: {SessionState.AUTHENTICATED, SessionState.UNAUTHENTICATED},
    SessionState.AUTHENTICATED: {SessionState.LOGGING_OUT},
    SessionState.LOGGING_OUT: {SessionState.UNAUTHENTICATED},
}


class InvalidTransition(RuntimeError):
    pass


class CredentialStore:
    """Persist ``{token, principal}`` across process restarts."""

    def __init__(self, path):
        self.path = os.path.expanduser(path)

    def save(self, token, principal):
        directory = os.path.dirname(self.path) or '.'
        os.makedirs(directory, exist_ok=True)
        data = {'token': token, 'principal': principal.to_dict()}
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.credentials-', suffix='.json')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass

    def load(self):
        """Return ``(token, principal)`` or None if nothing usable is stored."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            token = data['token']
            principal = Principal.from_dict(data['principal'])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning('Discarding unreadable credential file %s: %s', self.path, e)
            self.clear()
            return None
        if not token or not isinstance(token, str):
            self.clear()
            return None
        return token, principal

    def clear(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


def validate_credentials(email, password):
    if not isinstance(email, str) or not email.strip() or not isinstance(password, str) or not password:
        raise InvalidArgument('Email and password are required')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidArgument(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return email.strip(), password


class SessionManager:

    def __init__(self, api, store):
        self.api = api
        self.store = store
        self.state = SessionState.UNAUTHENTICATED
        self.session = None
        self._lock = threading.RLock()

    @property
    def is_authenticated(self):
        return self.state is SessionState.AUTHENTICATED and self.session is not None

    def _transition(self, new_state):
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f'{self.state.value} -> {new_state.value}')
        logger.debug('session %s -> %s', self.state.value, new_state.value)
        self.state = new_state

    def _drop(self):
        self.store.clear()
        self.session = None
        self._transition(SessionState.UNAUTHENTICATED)

    def register(self, email, password):
        email, password = validate_credentials(email, password)
        return self.api.register(email, password)

    def login(self, email, password):
        email, password = validate_credentials(email, password)
        with self._lock:
            self._transition(SessionState.VERIFYING)
            try:
                body = self.api.login(email, password)
                token = body['access_token']
                principal = Principal.from_dict(body['user'])
                self.store.save(token, principal)
            except Exception:
                self._transition(SessionState.UNAUTHENTICATED)
                raise
            self.session = Session(token=token, principal=principal, issued_trust=True)
            self._transition(SessionState.AUTHENTICATED)
            logger.info('Logged in as %s', principal.email)
            return self.session

    def restore(self):
        """Verify a stored credential with the server before trusting it."""
        with self._lock:
            stored = self.store.load()
            if stored is None:
                return RestoreOutcome.NO_CREDENTIAL
            token, _ = stored
            self._transition(SessionState.VERIFYING)
            try:
                user = self.api.me(token)
                principal = Principal.from_dict(user)
            except TransportError as e:
                logger.warning('Could not verify stored session, keeping it: %s', e)
                self._transition(SessionState.UNAUTHENTICATED)
                return RestoreOutcome.UNREACHABLE
            except ApiError as e:
                if e.is_unauthenticated and not e.is_transient_auth:
                    logger.info('Stored session rejected (%s); login required', e.reason)
                    self._drop()
                    return RestoreOutcome.REJECTED
                logger.warning('Could not verify stored session, keeping it: %s', e)
                self._transition(SessionState.UNAUTHENTICATED)
                return RestoreOutcome.UNREACHABLE
            except ValueError as e:
                logger.warning('Identity check returned no usable user: %s', e)
                self._transition(SessionState.UNAUTHENTICATED)
                return RestoreOutcome.UNREACHABLE
            # Persist the server's view of the principal, not the cached one
            self.store.save(token, principal)
            self.session = Session(token=token, principal=principal, issued_trust=True)
            self._transition(SessionState.AUTHENTICATED)
            return RestoreOutcome.RESTORED

    def logout(self):
        """Clear the local credential, then ask the server to revoke (best effort).

        Without a verified session (e.g. after an unreachable restore) only the
        stored credential is removed.
        """
        with self._lock:
            self.store.clear()
            if self.state is not SessionState.AUTHENTICATED:
                self.session = None
                return
            self._transition(SessionState.LOGGING_OUT)
            token = self.session.token if self.session else None
            self.session = None
            try:
                if token:
                    self.api.logout(token)
            except (ApiError, TransportError) as e:
                logger.warning('Server logout failed (local session already cleared): %s', e)
            finally:
                self._transition(SessionState.UNAUTHENTICATED)

    def call(self, fn, *args, **kwargs):
        """Run ``fn(token, *args, **kwargs)`` with the current session.

        An authentication rejection ends the session; a verification outage
        on the server side does not.
        """
        session = self.session
        if not self.is_authenticated:
            raise ApiError(401, 'unauthenticated', 'Not logged in', 'missing_token')
        try:
            return fn(session.token, *args, **kwargs)
        except ApiError as e:
            if e.is_unauthenticated and not e.is_transient_auth:
                with self._lock:
                    if self.session is session and self.state is SessionState.AUTHENTICATED:
                        logger.info('Session rejected by server (%s); login required', e.reason)
                        # Forced logout: no revoke call, the server already refused the token
                        self._transition(SessionState.LOGGING_OUT)
                        self._drop()
            raise
