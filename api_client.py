"""HTTP client for the Storytime API.

Every response goes through one envelope check: a response that is not JSON
(wrong content type, unparsable body) is a ``TransportError``, exactly like a
refused connection, and its body is never interpreted. JSON error bodies
become ``ApiError`` carrying the server's ``kind`` and ``reason`` fields.
"""

import logging

import requests

from continuation import clean_content, clean_title

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/json'


class TransportError(Exception):
    """The server could not be reached or did not answer with JSON."""


class ApiError(Exception):
    """The server answered with a JSON error envelope."""

    def __init__(self, status, kind, message, reason=None):
        super().__init__(message)
        self.status = status
        self.kind = kind
        self.message = message
        self.reason = reason

    @property
    def is_unauthenticated(self):
        return self.kind == 'unauthenticated' or self.status == 401

    @property
    def is_transient_auth(self):
        """401 caused by the server failing to reach its auth provider."""
        return self.is_unauthenticated and self.reason == 'verification_failed'

    def __repr__(self):
        return f'ApiError(status={self.status}, kind={self.kind!r}, reason={self.reason!r}, message={self.message!r})'


class StorytimeClient:

    def __init__(self, base_url, timeout=90, http=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = http or requests.Session()

    def _request(self, method, path, token=None, payload=None):
        headers = {'Accept': JSON_CONTENT_TYPE}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        url = f'{self.base_url}{path}'
        try:
            resp = self.http.request(method, url, headers=headers, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning('%s %s failed: %s', method, path, e)
            raise TransportError(f'Unable to connect to server at {self.base_url}') from e

        content_type = resp.headers.get('Content-Type') or ''
        if JSON_CONTENT_TYPE not in content_type:
            raise TransportError(f'Server error: {resp.status_code} (unexpected content type {content_type or "none"})')
        try:
            body = resp.json()
        except ValueError as e:
            raise TransportError(f'Server error: {resp.status_code} (unreadable JSON)') from e
        if not isinstance(body, dict):
            raise TransportError(f'Server error: {resp.status_code} (unexpected body)')

        if resp.status_code >= 400:
            raise ApiError(
                resp.status_code,
                body.get('kind') or 'unknown',
                body.get('error') or f'Request failed ({resp.status_code})',
                body.get('reason'),
            )
        return body

    # --- auth ---

    def register(self, email, password):
        return self._request('POST', '/api/auth/register', payload={'email': email, 'password': password})

    def login(self, email, password):
        return self._request('POST', '/api/auth/login', payload={'email': email, 'password': password})

    def logout(self, token):
        return self._request('POST', '/api/auth/logout', token=token)

    def me(self, token):
        return self._request('GET', '/api/auth/me', token=token)['user']

    # --- books ---

    def create_book(self, token, title):
        return self._request('POST', '/api/books', token=token, payload={'title': clean_title(title)})['book']

    def list_books(self, token):
        return self._request('GET', '/api/books', token=token).get('books') or []

    def get_book(self, token, book_id):
        return self._request('GET', f'/api/books/{book_id}', token=token)

    def add_chapter(self, token, book_id, content, idx=None):
        payload = {'content': clean_content(content)}
        if idx is not None:
            payload['idx'] = idx
        return self._request('POST', f'/api/books/{book_id}/chapters', token=token, payload=payload)['chapter']

    # --- story ---

    def next_chapter(self, token, prompt, book_id=None, idx=None):
        payload = {'prompt': clean_content(prompt, field='Prompt')}
        if book_id:
            payload['bookId'] = book_id
            payload['idx'] = idx
        return self._request('POST', '/api/story/next', token=token, payload=payload)
