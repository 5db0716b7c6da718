"""Client side of chapter continuation for one selected book.

``BookSession`` keeps the transient view of the selected book: its title, the
reconstructed story, the next idx to send and, after a save failure, the one
generated chapter that still needs saving. Every call that changes the view
remembers the selection epoch it started under; if the user has picked a
different book (or cleared the selection) by the time the response arrives,
the result is handed back to the caller but the view is left alone.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from continuation import (CHAPTER_SEPARATOR, FIRST_CHAPTER_IDX, clean_content,
                          clean_title, next_chapter_idx, reconstruct_story)

logger = logging.getLogger(__name__)


@dataclass
class PendingChapter:
    """Generated text the server could not save."""
    book_id: str
    content: str
    idx: int


@dataclass
class ContinuationResult:
    story: str
    persisted: bool
    applied: bool
    chapter: Optional[dict] = None
    error: Optional[dict] = None


class BookSession:

    def __init__(self, sessions):
        self.sessions = sessions
        self.api = sessions.api
        self._lock = threading.Lock()
        self._epoch = 0
        self.book_id = None
        self.title = ''
        self.story = ''
        self.next_idx = FIRST_CHAPTER_IDX
        self.pending = None

    def _reset(self, book_id=None, title='', story='', next_idx=FIRST_CHAPTER_IDX):
        self._epoch += 1
        self.book_id = book_id
        self.title = title
        self.story = story
        self.next_idx = next_idx
        self.pending = None

    def clear(self):
        with self._lock:
            self._reset()

    def list_books(self):
        return self.sessions.call(self.api.list_books)

    def create_book(self, title):
        """Create a book and select it (empty story, next idx 1)."""
        title = clean_title(title)
        with self._lock:
            epoch = self._epoch
        book = self.sessions.call(self.api.create_book, title)
        with self._lock:
            if self._epoch == epoch:
                self._reset(book['id'], book.get('title') or title)
            else:
                logger.info('Book %s created after the selection changed; not selecting it', book['id'])
        return book

    def select_book(self, book_id):
        """Load ``book_id`` and rebuild its story from the chapters."""
        with self._lock:
            self._reset(book_id)
            epoch = self._epoch
        data = self.sessions.call(self.api.get_book, book_id)
        chapters = data.get('chapters') or []
        story = reconstruct_story(chapters)
        with self._lock:
            if self._epoch != epoch:
                logger.info('Discarding late load of book %s', book_id)
                return story
            self.title = (data.get('book') or {}).get('title') or ''
            self.story = story
            self.next_idx = next_chapter_idx(chapters)
        return story

    def reload(self):
        if self.book_id is None:
            return self.story
        return self.select_book(self.book_id)

    def _append_to_view(self, text):
        self.story = (self.story + CHAPTER_SEPARATOR if self.story else '') + text

    def continue_story(self, prompt):
        """Ask for the next chapter. Without a selected book nothing is saved."""
        clean_content(prompt, field='Prompt')
        with self._lock:
            epoch, book_id, idx = self._epoch, self.book_id, self.next_idx
        body = self.sessions.call(self.api.next_chapter, prompt, book_id, idx if book_id else None)
        story = body.get('story') or ''
        persisted = bool(body.get('persisted'))
        result = ContinuationResult(story=story, persisted=persisted, applied=False,
                                    chapter=body.get('chapter'), error=body.get('error'))
        with self._lock:
            if self._epoch != epoch:
                logger.info('Discarding late chapter for book %s', book_id)
                return result
            self._append_to_view(story)
            self.next_idx = idx + 1
            if book_id and not persisted:
                logger.warning('Chapter %s of book %s was generated but not saved', idx, book_id)
                self.pending = PendingChapter(book_id, story, idx)
            result.applied = True
        return result

    def retry_persist(self):
        """Save the pending chapter again. Returns the stored chapter, or None if nothing is pending."""
        with self._lock:
            pending = self.pending
        if pending is None:
            return None
        chapter = self.sessions.call(self.api.add_chapter, pending.book_id, pending.content, pending.idx)
        with self._lock:
            if self.pending is pending:
                self.pending = None
        return chapter
