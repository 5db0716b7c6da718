"""Chapter ordering and story reconstruction.

A book's story is never stored. It is rebuilt from the chapter set every time
a book is loaded: chapters are sorted by ``idx``, then ``created_at``, then
``id`` (insertion order), and their contents are joined with a blank line.
``idx`` is only advisory, so duplicates are expected when two writers race
and must never make reconstruction fail or drop a chapter.

Functions here accept either ORM rows (``models.Chapter``) or the JSON dicts
the API returns, so the server and the client share the same rules.
"""

from datetime import datetime, timezone

from errors import InvalidArgument

CHAPTER_SEPARATOR = '\n\n'
FIRST_CHAPTER_IDX = 1

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _field(chapter, name):
    if isinstance(chapter, dict):
        return chapter.get(name)
    return getattr(chapter, name, None)


def _as_datetime(value):
    if value is None:
        return _EPOCH
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return _EPOCH
    if not isinstance(value, datetime):
        return _EPOCH
    if value.tzinfo is None:
        # sqlite hands back naive datetimes; they are stored as UTC
        value = value.replace(tzinfo=timezone.utc)
    return value


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def chapter_sort_key(chapter):
    return (
        _as_int(_field(chapter, 'idx')),
        _as_datetime(_field(chapter, 'created_at')),
        _as_int(_field(chapter, 'id')),
    )


def order_chapters(chapters):
    """Return a new list of ``chapters`` in reconstruction order."""
    return sorted(chapters or [], key=chapter_sort_key)


def reconstruct_story(chapters):
    return CHAPTER_SEPARATOR.join(_field(c, 'content') or '' for c in order_chapters(chapters))


def next_chapter_idx(chapters):
    """``max(idx) + 1`` over ``chapters``, or 1 for an empty book."""
    indices = [_as_int(_field(c, 'idx')) for c in chapters or []]
    if not indices:
        return FIRST_CHAPTER_IDX
    return max(indices) + 1


def clean_title(title):
    if not isinstance(title, str) or not title.strip():
        raise InvalidArgument('Title is required')
    return title.strip()


def clean_content(content, field='Content'):
    if not isinstance(content, str) or not content.strip():
        raise InvalidArgument(f'{field} is required')
    return content


def clean_idx(idx):
    """Validate a chapter index; ``None`` means "let the server pick"."""
    if idx is None:
        return None
    if isinstance(idx, bool) or not isinstance(idx, int) or idx < 0:
        raise InvalidArgument('idx must be a non-negative integer')
    return idx
