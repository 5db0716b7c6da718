"""Book/Chapter store on top of Flask-SQLAlchemy.

Books are scoped to their owner: looking up another principal's book behaves
exactly like looking up a book that does not exist. Any database error is
rolled back and reported as ``PersistenceFailure``.
"""

from functools import wraps

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from continuation import clean_content, clean_idx, clean_title, next_chapter_idx
from errors import NotFound, PersistenceFailure
from models import db, Book, Chapter


def _persistence(action):
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.error('Store failed to %s: %s', action, e)
                raise PersistenceFailure(f'Failed to {action}') from e
        return wrapper
    return decorator


class BookStore:

    @_persistence('create book')
    def create_book(self, owner_id, title):
        book = Book(title=clean_title(title), owner_id=owner_id)
        db.session.add(book)
        db.session.commit()
        return book

    @_persistence('list books')
    def list_books(self, owner_id):
        """Caller's books, newest first."""
        return (Book.query
                .filter_by(owner_id=owner_id)
                .order_by(Book.created_at.desc(), Book.id.desc())
                .all())

    @_persistence('load book')
    def get_book(self, owner_id, book_id):
        book = db.session.get(Book, book_id) if book_id else None
        if book is None or book.owner_id != owner_id:
            raise NotFound('Book not found')
        return book

    @_persistence('load chapters')
    def list_chapters(self, book_id):
        return (Chapter.query
                .filter_by(book_id=book_id)
                .order_by(Chapter.idx.asc(), Chapter.created_at.asc(), Chapter.id.asc())
                .all())

    @_persistence('save chapter')
    def add_chapter(self, book_id, content, idx=None):
        """Insert a chapter. ``idx=None`` appends after the highest stored idx.

        Duplicate idx values are accepted; readers order ties by created_at.
        """
        content = clean_content(content)
        idx = clean_idx(idx)
        if idx is None:
            idx = next_chapter_idx(self.list_chapters(book_id))
        chapter = Chapter(book_id=book_id, content=content, idx=idx)
        db.session.add(chapter)
        db.session.commit()
        return chapter
