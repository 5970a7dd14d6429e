"""Persistent store contract required by the risk engine.

The engine never talks to a database directly. Every read and write goes
through a ``RiskStore``, and every evaluation or review runs its store calls
inside ``store.atomic()`` so a failure part-way through leaves nothing behind.

Implementations must raise ``StoreError`` (or ``RecordNotFoundError``) for
any failure; the engine lets those propagate unchanged.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from giftguard.models import (
    LiveSession,
    RiskEvent,
    SessionStats,
    TransactionRecord,
    User,
)


class RiskStore(ABC):
    """Read/write access to users, transactions, risk events and sessions."""

    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """Unit of work: commit on normal exit, roll back on exception."""

    # Users

    @abstractmethod
    def get_user(self, user_id: str) -> User:
        """Load a user. Raises RecordNotFoundError when missing."""

    @abstractmethod
    def update_user(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Partially update a user row.

        Raises ConcurrentUpdateError when the row changed in another unit of
        work since it was read.
        """

    # Transactions

    @abstractmethod
    def list_transactions_since(self, user_id: str, since: datetime) -> List[TransactionRecord]:
        """Transactions sent by ``user_id`` with ``timestamp >= since``."""

    @abstractmethod
    def insert_transaction(self, record: TransactionRecord) -> str:
        """Insert a transaction and return its assigned id."""

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        """Load a transaction. Raises RecordNotFoundError when missing."""

    @abstractmethod
    def list_transactions_by_session(self, session_id: str) -> List[TransactionRecord]:
        """All transactions scoped to a session."""

    # Risk events

    @abstractmethod
    def insert_risk_event(self, record: RiskEvent) -> str:
        """Append a risk event and return its id."""

    @abstractmethod
    def list_risk_events_by_transaction_ids(self, transaction_ids: Iterable[str]) -> List[RiskEvent]:
        """Risk events owned by any of the given transactions."""

    # Sessions

    @abstractmethod
    def get_session(self, session_id: str) -> LiveSession:
        """Load a session. Raises RecordNotFoundError when missing."""

    @abstractmethod
    def list_sessions_by_creator_since(self, creator_id: str, since: datetime) -> List[LiveSession]:
        """Sessions created by ``creator_id`` with ``start_time >= since``."""

    @abstractmethod
    def list_unreviewed_sessions(self, limit: Optional[int] = None) -> List[LiveSession]:
        """Sessions with no stats yet, or whose stats status is not ``reviewed``."""

    @abstractmethod
    def get_session_stats(self, session_id: str) -> SessionStats:
        """Load stored stats. Raises RecordNotFoundError when never reviewed."""

    @abstractmethod
    def upsert_session_stats(self, session_id: str, fields: Dict[str, Any]) -> None:
        """Create or overwrite the stats row for a session."""
