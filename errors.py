"""Error taxonomy shared by the server and the client.

Every failure the API reports is one of the kinds below and travels as a JSON
envelope::

    {"error": "<message>", "kind": "<kind>"}           # plus "reason" for auth

so clients can parse error bodies uniformly.
"""

from flask import jsonify
from werkzeug.exceptions import HTTPException


class StorytimeError(Exception):
    """Base class for errors that map onto an API error envelope."""
    kind = 'internal'
    status = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind}


class Unauthenticated(StorytimeError):
    """Missing, invalid or unverifiable credential.

    ``reason`` is one of ``missing_token``, ``invalid_token``,
    ``verification_failed`` or ``invalid_credentials``.
    """
    kind = 'unauthenticated'
    status = 401

    MESSAGES = {
        'missing_token': 'Authorization token is missing or invalid',
        'invalid_token': 'Invalid or expired token',
        'verification_failed': 'Unable to verify token',
        'invalid_credentials': 'Invalid email or password',
    }

    def __init__(self, reason, message=None):
        super().__init__(message or self.MESSAGES.get(reason, 'Authentication failed'))
        self.reason = reason

    def to_dict(self):
        body = super().to_dict()
        body['reason'] = self.reason
        return body


class InvalidArgument(StorytimeError):
    kind = 'invalid_argument'
    status = 400


class NotFound(StorytimeError):
    kind = 'not_found'
    status = 404


class UpstreamFailure(StorytimeError):
    """The auth provider or the LLM provider failed."""
    kind = 'upstream_failure'
    status = 502


class PersistenceFailure(StorytimeError):
    """A store read or write failed."""
    kind = 'persistence_failure'
    status = 500


def register_error_handlers(app):
    """Make every error response JSON, never the framework's HTML pages."""

    @app.errorhandler(StorytimeError)
    def handle_storytime_error(err):
        return jsonify(err.to_dict()), err.status

    @app.errorhandler(HTTPException)
    def handle_http_exception(err):
        if err.code == 404:
            return jsonify({'error': 'route not found', 'kind': 'not_found'}), 404
        if err.code == 400:
            # Malformed JSON bodies and the like
            return jsonify({'error': err.description or 'bad request', 'kind': 'invalid_argument'}), 400
        return jsonify({'error': err.name.lower(), 'kind': 'http_error'}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err):
        app.logger.exception('Unhandled error: %s', err)
        return jsonify({'error': 'internal error', 'kind': 'internal'}), 500
