from datetime import datetime, timezone

from markdrop.extensions import db
from markdrop.services.bookmarks import BookmarkPayload


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QueueItem(db.Model):
    __tablename__ = "queue_items"

    id = db.Column(db.Integer, primary_key=True)
    payload = db.Column(db.JSON, nullable=False)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # AUTOINCREMENT keeps SQLite from handing out the id of a removed row again.
    __table_args__ = (
        db.Index("ix_queue_items_due", "next_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    @property
    def bookmark(self) -> BookmarkPayload:
        return BookmarkPayload.from_dict(self.payload)

    def as_dict(self):
        return {
            "id": self.id,
            "payload": dict(self.payload or {}),
            "attempt_count": self.attempt_count,
            "next_attempt_at": ensure_utc(self.next_attempt_at).isoformat(),
            "last_error": self.last_error,
            "created_at": ensure_utc(self.created_at).isoformat(),
            "updated_at": ensure_utc(self.updated_at).isoformat(),
        }
