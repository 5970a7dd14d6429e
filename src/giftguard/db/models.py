"""Database models for GiftGuard."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


class UserRecord(Base):
    """Sender risk state, mutated after every evaluation."""

    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)
    verified = Column(Boolean, nullable=False, default=False)
    risk_score = Column(Integer, nullable=False, default=0)
    access = Column(Boolean, nullable=False, default=True)
    watchlist_flag = Column(Boolean, nullable=False, default=False)
    total_tips_sent = Column(Integer, nullable=False, default=0)
    total_amount_sent = Column(Numeric(14, 2), nullable=False, default=0)
    # bumped on every update; a stale writer matches no row
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<UserRecord("
            f"id={self.user_id}, "
            f"risk_score={self.risk_score}, "
            f"access={self.access}"
            f")>"
        )


class TransactionRow(Base):
    """Transaction audit trail. Rows are never updated after insert."""

    __tablename__ = "transactions"

    transaction_id = Column(String(36), primary_key=True, default=_new_id)

    user_id = Column(String(64), nullable=False, index=True)
    receiver_id = Column(String(64), nullable=True)
    session_id = Column(String(64), nullable=True, index=True)

    type = Column(String(16), nullable=False)  # topup/gift
    amount = Column(Numeric(14, 2), nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)

    status = Column(String(128), nullable=False)
    transaction_score = Column(Integer, nullable=False, default=0)
    failure_flag = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<TransactionRow("
            f"id={self.transaction_id}, "
            f"user={self.user_id}, "
            f"status={self.status}"
            f")>"
        )


class RiskEventRow(Base):
    """One rule firing against one transaction. Append-only."""

    __tablename__ = "risk_events"

    event_id = Column(String(36), primary_key=True, default=_new_id)
    transaction_id = Column(
        String(36), ForeignKey("transactions.transaction_id"), nullable=False, index=True
    )
    user_id = Column(String(64), nullable=False, index=True)
    risk_factor = Column(String(64), nullable=False)
    points_added = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)


class SessionRecord(Base):
    """Creator live session."""

    __tablename__ = "sessions"

    session_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)  # creator
    status = Column(String(32), nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)


class SessionStatsRecord(Base):
    """Latest review verdict per session. Overwritten on each review."""

    __tablename__ = "session_stats"

    session_id = Column(String(64), ForeignKey("sessions.session_id"), primary_key=True)
    status = Column(String(32), nullable=False)
    is_flagged = Column(Boolean, nullable=False, default=False)
    risk_score = Column(Integer, nullable=False, default=0)
    reviewed_at = Column(DateTime, nullable=False)


# Composite indexes for the trailing-window queries
Index("idx_transactions_user_timestamp", TransactionRow.user_id, TransactionRow.timestamp)
Index("idx_sessions_creator_start", SessionRecord.user_id, SessionRecord.start_time)
