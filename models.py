from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
import uuid

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class Book(db.Model):
    __tablename__ = 'books'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.String(128), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    def to_dict(self):
        return {'id': self.id, 'title': self.title, 'created_at': _isoformat(self.created_at)}


class Chapter(db.Model):
    __tablename__ = 'chapters'
    # Autoincrement id doubles as the insertion-order tie break
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    book_id = db.Column(db.String(36), db.ForeignKey('books.id'), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False)
    idx = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'book_id': self.book_id,
            'content': self.content,
            'idx': self.idx,
            'created_at': _isoformat(self.created_at),
        }
