"""Auth routes and the bearer-token middleware.

Credential issuance is delegated to the configured auth provider (see
auth_provider.py). ``token_required`` re-verifies the bearer token with the
provider on every request; nothing about token validity is cached here.
"""

from functools import wraps
from flask import Blueprint, request, jsonify, current_app, g

from auth_provider import get_auth_provider
from errors import InvalidArgument, Unauthenticated

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

MIN_PASSWORD_LENGTH = 6
BEARER_PREFIX = 'Bearer '


def bearer_token():
    """Return the token from the Authorization header, or None if absent/malformed."""
    token_header = request.headers.get('Authorization')
    if not token_header or not token_header.startswith(BEARER_PREFIX):
        return None
    token = token_header[len(BEARER_PREFIX):].strip()
    return token or None


def authenticate_request():
    """Resolve the request's bearer token to a Principal or raise Unauthenticated."""
    token = bearer_token()
    if token is None:
        current_app.logger.warning('Rejected %s %s: missing_token', request.method, request.path)
        raise Unauthenticated('missing_token')
    try:
        principal = get_auth_provider().get_user(token)
    except Exception as e:
        # Provider outage or network failure: surface, never retry here
        current_app.logger.warning('Rejected %s %s: verification_failed (%s)', request.method, request.path, e)
        raise Unauthenticated('verification_failed') from e
    if principal is None:
        current_app.logger.warning('Rejected %s %s: invalid_token', request.method, request.path)
        raise Unauthenticated('invalid_token')
    g.principal = principal
    return principal


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        principal = authenticate_request()
        # Pass the principal as the first arg to handlers (existing convention)
        return f(principal, *args, **kwargs)
    return decorated


def _credentials_from_body():
    data = request.get_json(silent=True) or {}
    email = data.get('email')
    password = data.get('password')
    if not email or not isinstance(email, str) or not email.strip():
        raise InvalidArgument('Email and password are required')
    if not password or not isinstance(password, str):
        raise InvalidArgument('Email and password are required')
    return email.strip(), password


@auth_bp.route('/register', methods=['POST'])
def register():
    email, password = _credentials_from_body()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidArgument(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    result = get_auth_provider().sign_up(email, password)
    current_app.logger.info('Registered user %s', result['user'].get('id'))
    return jsonify({
        'user': result['user'],
        'session': result.get('session'),
        'message': 'Registration successful',
    }), 200


@auth_bp.route('/login', methods=['POST'])
def login():
    email, password = _credentials_from_body()
    result = get_auth_provider().sign_in(email, password)
    session = result['session']
    return jsonify({
        'user': result['user'],
        'session': session,
        'access_token': session['access_token'],
        'message': 'Login successful',
    }), 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    # Best-effort: the client has already dropped its credential
    token = bearer_token()
    if token:
        try:
            get_auth_provider().sign_out(token)
        except Exception as e:
            current_app.logger.warning('Sign-out with provider failed: %s', e)
    return jsonify({'message': 'Logout successful'}), 200


@auth_bp.route('/me', methods=['GET'])
@token_required
def me(principal):
    return jsonify({'user': principal.to_dict()}), 200
