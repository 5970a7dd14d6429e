"""SQLAlchemy implementation of the risk store."""

import functools
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from giftguard.db.models import (
    RiskEventRow,
    SessionRecord,
    SessionStatsRecord,
    TransactionRow,
    UserRecord,
)
from giftguard.errors import ConcurrentUpdateError, RecordNotFoundError, StoreError
from giftguard.logging_utils import get_logger
from giftguard.models import (
    SESSION_REVIEWED,
    LiveSession,
    RiskEvent,
    SessionStats,
    TransactionRecord,
    User,
)
from giftguard.store.base import RiskStore

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _wrap_errors(func: F) -> F:
    """Re-raise any SQLAlchemy failure as StoreError."""

    @functools.wraps(func)
    def wrapper(self: "SqlAlchemyStore", *args: Any, **kwargs: Any) -> Any:
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", func.__name__, exc)
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper  # type: ignore[return-value]


class SqlAlchemyStore(RiskStore):
    """Risk store backed by a SQLAlchemy ORM session.

    One instance wraps one ``Session`` and must not be shared between threads.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def atomic(self) -> Iterator["SqlAlchemyStore"]:
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Store commit failed, rolled back: %s", exc)
            raise StoreError(f"commit failed: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise

    # Users

    @_wrap_errors
    def get_user(self, user_id: str) -> User:
        # row lock where the backend has one (SQLite ignores FOR UPDATE)
        return User.model_validate(self._user_row(user_id, lock=True))

    @_wrap_errors
    def update_user(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Apply ``fields`` to the row read earlier in this unit of work.

        The UPDATE is conditional on the row version that was read. If another
        session committed a change in between, no row matches and
        ``ConcurrentUpdateError`` is raised instead of overwriting it.
        """
        row = self._user_row(user_id)
        for name, value in fields.items():
            setattr(row, name, value)
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning("User %s changed since it was read: %s", user_id, exc)
            raise ConcurrentUpdateError("User", user_id) from exc

    def _user_row(self, user_id: str, lock: bool = False) -> UserRecord:
        if lock:
            row = self.session.get(UserRecord, user_id, with_for_update=True)
        else:
            row = self.session.get(UserRecord, user_id)
        if row is None:
            raise RecordNotFoundError("User", user_id)
        return row

    # Transactions

    @_wrap_errors
    def list_transactions_since(self, user_id: str, since: datetime) -> List[TransactionRecord]:
        rows = (
            self.session.query(TransactionRow)
            .filter(
                TransactionRow.user_id == user_id,
                TransactionRow.timestamp >= since,
            )
            .order_by(TransactionRow.timestamp)
            .all()
        )
        return [TransactionRecord.model_validate(row) for row in rows]

    @_wrap_errors
    def insert_transaction(self, record: TransactionRecord) -> str:
        data = record.model_dump(exclude={"transaction_id"})
        data["type"] = record.type.value
        row = TransactionRow(**data)
        self.session.add(row)
        self.session.flush()
        return row.transaction_id

    @_wrap_errors
    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        row = self.session.get(TransactionRow, transaction_id)
        if row is None:
            raise RecordNotFoundError("Transaction", transaction_id)
        return TransactionRecord.model_validate(row)

    @_wrap_errors
    def list_transactions_by_session(self, session_id: str) -> List[TransactionRecord]:
        rows = (
            self.session.query(TransactionRow)
            .filter(TransactionRow.session_id == session_id)
            .order_by(TransactionRow.timestamp)
            .all()
        )
        return [TransactionRecord.model_validate(row) for row in rows]

    # Risk events

    @_wrap_errors
    def insert_risk_event(self, record: RiskEvent) -> str:
        row = RiskEventRow(**record.model_dump(exclude={"event_id"}))
        self.session.add(row)
        self.session.flush()
        return row.event_id

    @_wrap_errors
    def list_risk_events_by_transaction_ids(self, transaction_ids: Iterable[str]) -> List[RiskEvent]:
        ids = list(transaction_ids)
        if not ids:
            return []
        rows = (
            self.session.query(RiskEventRow)
            .filter(RiskEventRow.transaction_id.in_(ids))
            .order_by(RiskEventRow.created_at)
            .all()
        )
        return [RiskEvent.model_validate(row) for row in rows]

    # Sessions

    @_wrap_errors
    def get_session(self, session_id: str) -> LiveSession:
        row = self.session.get(SessionRecord, session_id)
        if row is None:
            raise RecordNotFoundError("Session", session_id)
        return LiveSession.model_validate(row)

    @_wrap_errors
    def list_sessions_by_creator_since(self, creator_id: str, since: datetime) -> List[LiveSession]:
        rows = (
            self.session.query(SessionRecord)
            .filter(
                SessionRecord.user_id == creator_id,
                SessionRecord.start_time >= since,
            )
            .all()
        )
        return [LiveSession.model_validate(row) for row in rows]

    @_wrap_errors
    def list_unreviewed_sessions(self, limit: Optional[int] = None) -> List[LiveSession]:
        query = (
            self.session.query(SessionRecord)
            .outerjoin(
                SessionStatsRecord,
                SessionStatsRecord.session_id == SessionRecord.session_id,
            )
            .filter(
                or_(
                    SessionStatsRecord.session_id.is_(None),
                    SessionStatsRecord.status != SESSION_REVIEWED,
                )
            )
            .order_by(SessionRecord.start_time)
        )
        if limit is not None:
            query = query.limit(limit)
        return [LiveSession.model_validate(row) for row in query.all()]

    @_wrap_errors
    def get_session_stats(self, session_id: str) -> SessionStats:
        row = self.session.get(SessionStatsRecord, session_id)
        if row is None:
            raise RecordNotFoundError("SessionStats", session_id)
        return SessionStats.model_validate(row)

    @_wrap_errors
    def upsert_session_stats(self, session_id: str, fields: Dict[str, Any]) -> None:
        row = self.session.get(SessionStatsRecord, session_id)
        if row is None:
            row = SessionStatsRecord(session_id=session_id)
            self.session.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        self.session.flush()
