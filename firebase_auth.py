"""
Firebase Authentication provider

Sign-up, password sign-in and sign-out go to Firebase; the server only checks
the resulting ID tokens.

Setup:
1. Create a Firebase project: https://console.firebase.google.com/
2. Enable Email/Password sign-in in Authentication settings
3. Download service account key JSON
4. Add to .env: FIREBASE_SERVICE_ACCOUNT_PATH=path/to/serviceAccountKey.json
5. Get Web API key and project ID from Firebase console
6. Add to .env: AUTH_PROVIDER=firebase, FIREBASE_WEB_API_KEY and FIREBASE_PROJECT_ID
"""

import json
import requests
import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError
from flask import current_app

from auth_provider import AuthProvider, Principal
from errors import InvalidArgument, Unauthenticated, UpstreamFailure

IDENTITY_TOOLKIT_URL = 'https://identitytoolkit.googleapis.com/v1/accounts:{action}'
APP_NAME = 'storytime'

# Identity Toolkit error codes that mean "wrong email or password"
_CREDENTIAL_ERRORS = ('EMAIL_NOT_FOUND', 'INVALID_PASSWORD', 'INVALID_LOGIN_CREDENTIALS', 'USER_DISABLED', 'INVALID_EMAIL')


def init_firebase(service_account_path=None, service_account_json=None, project_id=None):
    """Initialize (or reuse) the Firebase Admin app used for token checks."""
    try:
        return firebase_admin.get_app(APP_NAME)
    except ValueError:
        pass

    if service_account_json:
        # Use JSON string from environment variable
        cred = credentials.Certificate(json.loads(service_account_json))
    elif service_account_path:
        cred = credentials.Certificate(service_account_path)
    else:
        # Application default credentials (e.g. on Cloud Run)
        cred = credentials.ApplicationDefault()

    options = {'projectId': project_id} if project_id else None
    return firebase_admin.initialize_app(cred, options, name=APP_NAME)


class FirebaseAuthProvider(AuthProvider):
    name = 'firebase'

    def __init__(self, web_api_key, firebase_app, timeout=10, http=None):
        self.web_api_key = web_api_key
        self.firebase_app = firebase_app
        self.timeout = timeout
        self.http = http or requests.Session()

    @classmethod
    def from_config(cls, cfg):
        api_key = cfg.get('FIREBASE_WEB_API_KEY')
        if not api_key:
            raise ValueError('FIREBASE_WEB_API_KEY is required when AUTH_PROVIDER=firebase')
        app = init_firebase(
            service_account_path=cfg.get('FIREBASE_SERVICE_ACCOUNT_PATH'),
            service_account_json=cfg.get('FIREBASE_SERVICE_ACCOUNT_JSON'),
            project_id=cfg.get('FIREBASE_PROJECT_ID'),
        )
        return cls(api_key, app, timeout=cfg.get('AUTH_HTTP_TIMEOUT', 10))

    def _post(self, action, payload):
        """POST to the Identity Toolkit. Returns (status_code, json_body)."""
        url = IDENTITY_TOOLKIT_URL.format(action=action)
        try:
            r = self.http.post(url, params={'key': self.web_api_key}, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            current_app.logger.error('Firebase %s request failed: %s', action, e)
            raise UpstreamFailure('Auth provider unreachable') from e
        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamFailure(f'Auth provider returned an unreadable response ({r.status_code})') from e
        return r.status_code, body

    @staticmethod
    def _error_code(body):
        message = ((body or {}).get('error') or {}).get('message') or 'UNKNOWN'
        # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
        return message.split(' ')[0], message

    @staticmethod
    def _result(body):
        user = {'id': body.get('localId'), 'email': body.get('email')}
        session = {
            'access_token': body.get('idToken'),
            'refresh_token': body.get('refreshToken'),
            'expires_in': int(body.get('expiresIn') or 3600),
            'token_type': 'bearer',
        }
        return {'user': user, 'session': session}

    def sign_up(self, email, password):
        status, body = self._post('signUp', {'email': email, 'password': password, 'returnSecureToken': True})
        if status == 400:
            _, message = self._error_code(body)
            raise InvalidArgument(message)
        if status != 200:
            raise UpstreamFailure(f'Auth provider error ({status})')
        return self._result(body)

    def sign_in(self, email, password):
        status, body = self._post('signInWithPassword', {'email': email, 'password': password, 'returnSecureToken': True})
        if status == 400:
            code, message = self._error_code(body)
            if code in _CREDENTIAL_ERRORS:
                raise Unauthenticated('invalid_credentials')
            raise Unauthenticated('invalid_credentials', message)
        if status != 200:
            raise UpstreamFailure(f'Auth provider error ({status})')
        return self._result(body)

    def get_user(self, token):
        """
        Verify a Firebase ID token.

        Returns:
            Principal: if the token is valid and not revoked
            None: if Firebase rejects the token
        Raises:
            UpstreamFailure: if Firebase could not be asked
        """
        try:
            decoded = firebase_auth.verify_id_token(token, app=self.firebase_app, check_revoked=True)
        except (firebase_auth.InvalidIdTokenError, firebase_auth.UserDisabledError, ValueError):
            # Covers ExpiredIdTokenError and RevokedIdTokenError
            return None
        except (firebase_auth.CertificateFetchError, FirebaseError) as e:
            current_app.logger.error('Firebase token verification failed: %s', e)
            raise UpstreamFailure('Token verification unavailable') from e
        return Principal(id=decoded.get('uid'), email=decoded.get('email') or '')

    def sign_out(self, token):
        """Revoke the refresh tokens of the token's owner."""
        try:
            decoded = firebase_auth.verify_id_token(token, app=self.firebase_app)
            firebase_auth.revoke_refresh_tokens(decoded['uid'], app=self.firebase_app)
        except (firebase_auth.InvalidIdTokenError, ValueError):
            # Nothing to revoke for a token Firebase no longer accepts
            return
        except FirebaseError as e:
            raise UpstreamFailure('Token revocation failed') from e
