"""Shared fixtures: an in-memory risk store and a fixed clock."""

import copy
import itertools
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional

import pytest

from giftguard.errors import ConcurrentUpdateError, RecordNotFoundError, StoreError
from giftguard.models import (
    SESSION_REVIEWED,
    LiveSession,
    RiskEvent,
    SessionStats,
    TransactionRecord,
    TransactionType,
    User,
)
from giftguard.store.base import RiskStore

NOW = datetime(2026, 10, 18, 12, 0, 0)


class InMemoryStore(RiskStore):
    """Dict-backed store with failure injection and call recording."""

    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.transactions: Dict[str, TransactionRecord] = {}
        self.risk_events: Dict[str, RiskEvent] = {}
        self.sessions: Dict[str, LiveSession] = {}
        self.session_stats: Dict[str, SessionStats] = {}

        self.calls: List[str] = []
        self.fail_on: set = set()
        self.read_delay = 0.0
        self.conflicts = 0
        self._ids = itertools.count(1)

    # Test helpers

    def add_user(self, user_id: str, **fields: Any) -> User:
        user = User(user_id=user_id, **fields)
        self.users[user_id] = user
        return user

    def add_session(
        self,
        session_id: str,
        creator_id: str = "creator_1",
        status: str = "live",
        start_time: datetime = NOW - timedelta(hours=1),
    ) -> LiveSession:
        session = LiveSession(
            session_id=session_id, user_id=creator_id, status=status, start_time=start_time
        )
        self.sessions[session_id] = session
        return session

    def add_transaction(
        self,
        user_id: str = "user_1",
        amount: Any = "10",
        timestamp: datetime = NOW - timedelta(minutes=30),
        status: str = "Transaction Approved",
        session_id: Optional[str] = None,
        failure_flag: bool = False,
        transaction_score: int = 0,
    ) -> str:
        transaction_id = f"tx_{next(self._ids)}"
        self.transactions[transaction_id] = TransactionRecord(
            transaction_id=transaction_id,
            user_id=user_id,
            receiver_id="creator_1",
            session_id=session_id,
            type=TransactionType.GIFT,
            amount=Decimal(str(amount)),
            timestamp=timestamp,
            status=status,
            transaction_score=transaction_score,
            failure_flag=failure_flag,
        )
        return transaction_id

    def add_risk_event(self, transaction_id: str, points: int = 20, user_id: str = "user_1") -> str:
        event_id = f"ev_{next(self._ids)}"
        self.risk_events[event_id] = RiskEvent(
            event_id=event_id,
            transaction_id=transaction_id,
            user_id=user_id,
            risk_factor="High Frequency",
            points_added=points,
            created_at=NOW,
        )
        return event_id

    def events_for(self, transaction_id: str) -> List[RiskEvent]:
        return [ev for ev in self.risk_events.values() if ev.transaction_id == transaction_id]

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise StoreError(f"{name} failed")

    # RiskStore

    @contextmanager
    def atomic(self) -> Iterator["InMemoryStore"]:
        snapshot = copy.deepcopy(
            (self.users, self.transactions, self.risk_events, self.session_stats)
        )
        try:
            yield self
        except Exception:
            self.users, self.transactions, self.risk_events, self.session_stats = snapshot
            raise

    def get_user(self, user_id: str) -> User:
        self._enter("get_user")
        if self.read_delay:
            time.sleep(self.read_delay)
        if user_id not in self.users:
            raise RecordNotFoundError("User", user_id)
        return self.users[user_id].model_copy()

    def update_user(self, user_id: str, fields: Dict[str, Any]) -> None:
        self._enter("update_user")
        if self.conflicts:
            self.conflicts -= 1
            raise ConcurrentUpdateError("User", user_id)
        self.users[user_id] = self.users[user_id].model_copy(update=fields)

    def list_transactions_since(self, user_id: str, since: datetime) -> List[TransactionRecord]:
        self._enter("list_transactions_since")
        return [
            tx
            for tx in self.transactions.values()
            if tx.user_id == user_id and tx.timestamp >= since
        ]

    def insert_transaction(self, record: TransactionRecord) -> str:
        self._enter("insert_transaction")
        transaction_id = f"tx_{next(self._ids)}"
        self.transactions[transaction_id] = record.model_copy(
            update={"transaction_id": transaction_id}
        )
        return transaction_id

    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        self._enter("get_transaction")
        if transaction_id not in self.transactions:
            raise RecordNotFoundError("Transaction", transaction_id)
        return self.transactions[transaction_id]

    def list_transactions_by_session(self, session_id: str) -> List[TransactionRecord]:
        self._enter("list_transactions_by_session")
        return [tx for tx in self.transactions.values() if tx.session_id == session_id]

    def insert_risk_event(self, record: RiskEvent) -> str:
        self._enter("insert_risk_event")
        event_id = f"ev_{next(self._ids)}"
        self.risk_events[event_id] = record.model_copy(update={"event_id": event_id})
        return event_id

    def list_risk_events_by_transaction_ids(self, transaction_ids: Iterable[str]) -> List[RiskEvent]:
        self._enter("list_risk_events_by_transaction_ids")
        ids = set(transaction_ids)
        return [ev for ev in self.risk_events.values() if ev.transaction_id in ids]

    def get_session(self, session_id: str) -> LiveSession:
        self._enter("get_session")
        if session_id not in self.sessions:
            raise RecordNotFoundError("Session", session_id)
        return self.sessions[session_id]

    def list_sessions_by_creator_since(self, creator_id: str, since: datetime) -> List[LiveSession]:
        self._enter("list_sessions_by_creator_since")
        return [
            s for s in self.sessions.values() if s.user_id == creator_id and s.start_time >= since
        ]

    def list_unreviewed_sessions(self, limit: Optional[int] = None) -> List[LiveSession]:
        self._enter("list_unreviewed_sessions")
        pending = sorted(
            (
                s
                for s in self.sessions.values()
                if s.session_id not in self.session_stats
                or self.session_stats[s.session_id].status != SESSION_REVIEWED
            ),
            key=lambda s: s.start_time,
        )
        return pending[:limit] if limit is not None else pending

    def get_session_stats(self, session_id: str) -> SessionStats:
        self._enter("get_session_stats")
        if session_id not in self.session_stats:
            raise RecordNotFoundError("SessionStats", session_id)
        return self.session_stats[session_id]

    def upsert_session_stats(self, session_id: str, fields: Dict[str, Any]) -> None:
        self._enter("upsert_session_stats")
        self.session_stats[session_id] = SessionStats(session_id=session_id, **fields)


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory store for each test."""
    return InMemoryStore()


@pytest.fixture
def clock():
    """Clock pinned to NOW."""
    return lambda: NOW
