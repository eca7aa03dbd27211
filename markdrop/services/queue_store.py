from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from markdrop.errors import QueueStoreError
from markdrop.extensions import db
from markdrop.models import QueueItem, utcnow
from markdrop.services.bookmarks import BookmarkPayload, QueueStats


class QueueStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def enqueue(self, payload: BookmarkPayload, error: str | None = None) -> int:
        now = self.clock()
        item = QueueItem(
            payload=payload.as_dict(),
            attempt_count=0,
            next_attempt_at=now,
            last_error=error,
            created_at=now,
            updated_at=now,
        )
        try:
            db.session.add(item)
            db.session.flush()
            # The row is due at once; a retry pass may delete it after commit.
            item_id = item.id
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise QueueStoreError(f"Could not queue bookmark: {exc}") from exc
        return item_id

    def list(self, limit: int | None = None) -> list[QueueItem]:
        stmt = select(QueueItem).order_by(QueueItem.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        return self._read(stmt)

    def get(self, item_id: int) -> QueueItem | None:
        try:
            return db.session.get(QueueItem, item_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise QueueStoreError(f"Could not read queue: {exc}") from exc

    def due_items(
        self,
        now: datetime | None = None,
        exclude: Iterable[int] = (),
        limit: int | None = None,
    ) -> list[QueueItem]:
        now = now or self.clock()
        stmt = select(QueueItem).where(QueueItem.next_attempt_at <= now)
        excluded = list(exclude)
        if excluded:
            stmt = stmt.where(QueueItem.id.not_in(excluded))
        stmt = stmt.order_by(QueueItem.next_attempt_at.asc(), QueueItem.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        return self._read(stmt)

    def update(
        self,
        item_id: int,
        attempt_count: int,
        next_attempt_at: datetime,
        last_error: str | None,
    ) -> bool:
        stmt = (
            update(QueueItem)
            .where(QueueItem.id == item_id)
            .values(
                attempt_count=attempt_count,
                next_attempt_at=next_attempt_at,
                last_error=last_error,
                updated_at=self.clock(),
            )
        )
        return self._write(stmt) > 0

    def remove(self, item_id: int) -> bool:
        return self._write(delete(QueueItem).where(QueueItem.id == item_id)) > 0

    def stats(self) -> QueueStats:
        try:
            pending = db.session.scalar(select(func.count(QueueItem.id))) or 0
            failed = (
                db.session.scalar(
                    select(func.count(QueueItem.id)).where(QueueItem.attempt_count > 0)
                )
                or 0
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise QueueStoreError(f"Could not read queue: {exc}") from exc
        return QueueStats(pending=pending, failed=failed)

    def _read(self, stmt) -> list[QueueItem]:
        try:
            return list(db.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise QueueStoreError(f"Could not read queue: {exc}") from exc

    def _write(self, stmt) -> int:
        try:
            result = db.session.execute(
                stmt, execution_options={"synchronize_session": False}
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise QueueStoreError(f"Could not update queue: {exc}") from exc
        return result.rowcount or 0
