# story_manager.py

from flask import Blueprint, request, jsonify, current_app

from ai_service import generate_chat_completion, story_messages
from auth import token_required
from continuation import clean_content, clean_idx, next_chapter_idx, reconstruct_story
from errors import InvalidArgument, PersistenceFailure, UpstreamFailure
from store import BookStore

books_bp = Blueprint('books', __name__, url_prefix='/api/books')
story_bp = Blueprint('story', __name__, url_prefix='/api/story')

store = BookStore()


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgument('JSON object body required')
    return data


@books_bp.route('', methods=['POST'])
@token_required
def create_book(principal):
    data = _json_body()
    book = store.create_book(principal.id, data.get('title'))
    current_app.logger.info('Book %s created by %s', book.id, principal.id)
    return jsonify({'book': book.to_dict()}), 201


@books_bp.route('', methods=['GET'])
@token_required
def list_books(principal):
    books = store.list_books(principal.id)
    return jsonify({'books': [b.to_dict() for b in books]}), 200


@books_bp.route('/<book_id>', methods=['GET'])
@token_required
def get_book(principal, book_id):
    book = store.get_book(principal.id, book_id)
    chapters = store.list_chapters(book.id)
    return jsonify({
        'book': book.to_dict(),
        'chapters': [c.to_dict() for c in chapters],
        'story': reconstruct_story(chapters),
        'next_idx': next_chapter_idx(chapters),
    }), 200


@books_bp.route('/<book_id>/chapters', methods=['POST'])
@token_required
def add_chapter(principal, book_id):
    data = _json_body()
    content = clean_content(data.get('content'))
    idx = clean_idx(data.get('idx'))
    book = store.get_book(principal.id, book_id)
    chapter = store.add_chapter(book.id, content, idx)
    return jsonify({'chapter': chapter.to_dict()}), 201


@story_bp.route('/next', methods=['POST'])
@token_required
def next_chapter(principal):
    """Generate the next chapter for ``prompt``; persist it when ``bookId`` is given.

    A store failure after a successful generation still returns the text,
    flagged ``persisted: false``, so the client can retry saving it.
    """
    data = _json_body()
    prompt = clean_content(data.get('prompt'), field='Prompt')
    book_id = data.get('bookId') or None
    idx = clean_idx(data.get('idx'))

    book = store.get_book(principal.id, book_id) if book_id else None

    try:
        story = generate_chat_completion(story_messages(prompt))
    except UpstreamFailure as e:
        current_app.logger.error('Chapter generation failed: %s', e)
        return jsonify(e.to_dict()), 500

    if book is None:
        return jsonify({'story': story, 'chapter': None, 'persisted': False}), 200

    try:
        chapter = store.add_chapter(book.id, story, idx)
    except PersistenceFailure as e:
        current_app.logger.error('Generated chapter for book %s was not saved: %s', book.id, e)
        return jsonify({'story': story, 'chapter': None, 'persisted': False, 'error': e.to_dict()}), 200

    return jsonify({'story': story, 'chapter': chapter.to_dict(), 'persisted': True}), 200
