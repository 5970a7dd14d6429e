"""Session-level risk review.

Re-assesses every transaction of one live session for aggregate abuse and
combines it with the creator's recent history to produce a verdict. The
verdict overwrites the session's stats row on every call.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from giftguard.config import RiskConfig, get_settings
from giftguard.engine.locks import KeyedLock
from giftguard.errors import StoreError
from giftguard.logging_utils import get_logger
from giftguard.models import (
    SESSION_FLAGGED,
    SESSION_REVIEWED,
    LiveSession,
    SessionReview,
    TransactionRecord,
    is_review_status,
    utcnow,
)
from giftguard.store.base import RiskStore

logger = get_logger(__name__)

FLAG_DOMINANT_TIPPER = "Dominant Tipper (>80% of tips from one user)"
FLAG_MICRO_TIPS = "High Micro-tip Ratio (>70% of tips under 5 coins)"
FLAG_FAILURE_RATE = "High Failure Rate (>50%)"


class SessionRiskReviewer:
    """Reviews sessions and persists their stats.

    Reviews are serialized per creator, since the trailing-window average
    reads across all of the creator's recent sessions.
    """

    def __init__(
        self,
        store: RiskStore,
        config: Optional[RiskConfig] = None,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or get_settings().risk
        self.locks = locks or KeyedLock()
        self.clock = clock or utcnow

    def review_session(self, session_id: str) -> str:
        """Review a session and return its new status."""
        return self.review(session_id).status

    def review(self, session_id: str) -> SessionReview:
        """Review a session and overwrite its stats.

        Args:
            session_id: Session to review

        Returns:
            Review with status, flags and aggregate scores

        Raises:
            StoreError: any store failure (nothing is committed)
        """
        try:
            # the creator is only known after loading the session
            with self.store.atomic():
                session = self.store.get_session(session_id)

            with self.locks.hold(session.user_id):
                with self.store.atomic():
                    return self._review_locked(session)
        except StoreError:
            logger.error("Review aborted for session=%s", session_id)
            raise

    def review_pending(self, limit: Optional[int] = None) -> List[SessionReview]:
        """Review every session that has not reached ``reviewed`` yet.

        Args:
            limit: Maximum number of sessions to review

        Returns:
            One review per session, in session start order
        """
        with self.store.atomic():
            pending = self.store.list_unreviewed_sessions(limit=limit)
        logger.info("Reviewing %d pending sessions", len(pending))
        return [self.review(session.session_id) for session in pending]

    def _review_locked(self, session: LiveSession) -> SessionReview:
        now = self.clock()

        # Step 1: Session transactions
        transactions = self.store.list_transactions_by_session(session.session_id)
        total = len(transactions)
        all_finalized = not any(is_review_status(tx.status) for tx in transactions)

        # Step 2: In-session patterns
        flags = self.detect_patterns(transactions)

        # Step 3: This session's risk score
        tx_ids = [tx.transaction_id for tx in transactions]
        session_events = self.store.list_risk_events_by_transaction_ids(tx_ids) if tx_ids else []
        session_risk_score = sum(ev.points_added for ev in session_events)

        # Step 4: Creator's trailing-window average
        since = now - timedelta(days=self.config.session.history_window_days)
        recent_sessions = self.store.list_sessions_by_creator_since(session.user_id, since)
        avg_events = self._average_risk_events(recent_sessions)

        # Step 5: Verdict
        is_flagged = avg_events > self.config.session.max_avg_risk_events or bool(flags)
        if all_finalized:
            status = SESSION_REVIEWED
        elif is_flagged:
            status = SESSION_FLAGGED
        else:
            status = session.status

        self.store.upsert_session_stats(
            session.session_id,
            {
                "reviewed_at": now,
                "is_flagged": is_flagged,
                "status": status,
                "risk_score": session_risk_score,
            },
        )

        logger.info(
            "Reviewed session %s creator=%s status=%s flagged=%s txs=%d score=%d avg_events=%.2f flags=%s",
            session.session_id,
            session.user_id,
            status,
            is_flagged,
            total,
            session_risk_score,
            avg_events,
            flags,
        )

        return SessionReview(
            session_id=session.session_id,
            creator_id=session.user_id,
            status=status,
            is_flagged=is_flagged,
            all_finalized=all_finalized,
            flags=flags,
            transaction_count=total,
            risk_score=session_risk_score,
            recent_session_count=len(recent_sessions),
            avg_risk_events_per_session=avg_events,
            reviewed_at=now,
        )

    def detect_patterns(self, transactions: Sequence[TransactionRecord]) -> List[str]:
        """Named suspicious patterns across a session's transactions.

        Returns an empty list for a session without transactions.
        """
        total = len(transactions)
        if total == 0:
            return []

        rules = self.config.session
        flags = []

        tipper_counts = Counter(tx.user_id for tx in transactions)
        max_ratio = max(tipper_counts.values()) / total
        if max_ratio > rules.dominant_tipper_ratio:
            flags.append(FLAG_DOMINANT_TIPPER)

        micro_tips = sum(1 for tx in transactions if tx.amount < rules.micro_tip_amount)
        if micro_tips / total > rules.micro_tip_ratio:
            flags.append(FLAG_MICRO_TIPS)

        failures = sum(1 for tx in transactions if tx.failure_flag)
        if failures / total > rules.failure_rate:
            flags.append(FLAG_FAILURE_RATE)

        return flags

    def _average_risk_events(self, recent_sessions: Sequence[LiveSession]) -> float:
        """Risk events per session over the creator's recent sessions."""
        if not recent_sessions:
            return 0.0

        tx_ids: List[str] = []
        for recent in recent_sessions:
            tx_ids.extend(
                tx.transaction_id for tx in self.store.list_transactions_by_session(recent.session_id)
            )

        total_events = len(self.store.list_risk_events_by_transaction_ids(tx_ids)) if tx_ids else 0
        return total_events / len(recent_sessions)
