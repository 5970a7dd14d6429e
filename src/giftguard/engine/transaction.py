"""Per-transaction risk evaluation.

Evaluates a proposed top-up or gift against the tip-limit, frequency,
smurfing and cumulative score rules, then records the outcome:
1. One transaction row carrying the decision
2. One risk event per rule that fired
3. The sender's updated risk state

Rules never short-circuit each other. Every rule adds its points, but only the
first rule that moves the decision away from Approved chooses the reason. The
score thresholds run last on the accumulated total.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from giftguard.config import RiskConfig, get_settings
from giftguard.engine.locks import KeyedLock
from giftguard.errors import ConcurrentUpdateError, InputError, StoreError
from giftguard.logging_utils import get_logger
from giftguard.models import (
    FACTOR_FREQUENCY,
    FACTOR_SMURFING,
    FACTOR_TIP_LIMIT,
    REASON_FREQUENCY,
    REASON_RISK_THRESHOLD,
    REASON_SMURFING,
    REASON_TIP_LIMIT,
    CandidateTransaction,
    Decision,
    OutcomeKind,
    RiskEvent,
    RuleHit,
    TransactionEvaluation,
    TransactionRecord,
    TransactionType,
    User,
    utcnow,
)
from giftguard.store.base import RiskStore

logger = get_logger(__name__)

AMOUNT_QUANTUM = Decimal("0.01")


class _Verdict:
    """Mutable decision state threaded through the rules of one evaluation."""

    def __init__(self) -> None:
        self.decision = Decision.approved()
        self.failed = False
        self.hits: List[RuleHit] = []

    def hit(self, risk_factor: str, points: int) -> None:
        self.hits.append(RuleHit(risk_factor=risk_factor, points=points))

    def block_if_approved(self, reason: str) -> None:
        if self.decision.is_approved:
            self.decision = Decision.blocked(reason)
        self.failed = True

    @property
    def total_points(self) -> int:
        return sum(h.points for h in self.hits)


class TransactionRiskEvaluator:
    """Evaluates candidate transactions and persists the audit trail.

    All evaluations for the same ``user_id`` are serialized through ``locks``.
    Share one ``KeyedLock`` between evaluator instances that may run
    concurrently (for example one evaluator per request).
    """

    def __init__(
        self,
        store: RiskStore,
        config: Optional[RiskConfig] = None,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize evaluator.

        Args:
            store: Persistent store adapter
            config: Risk parameters (uses settings if None)
            locks: Per-user lock map (private one if None)
            clock: Returns the current naive UTC time (used for the windows)
        """
        self.store = store
        self.config = config or get_settings().risk
        self.locks = locks or KeyedLock()
        self.clock = clock or utcnow

    def evaluate_transaction(
        self, candidate: Union[CandidateTransaction, Dict[str, Any]]
    ) -> bool:
        """Evaluate a candidate and return whether it failed (was blocked).

        A Review outcome is not a failure.
        """
        return self.evaluate(candidate).failed

    def evaluate(
        self, candidate: Union[CandidateTransaction, Dict[str, Any]]
    ) -> TransactionEvaluation:
        """Evaluate a candidate transaction and persist the result.

        Args:
            candidate: Proposed transaction (model or plain dict)

        Returns:
            Evaluation with decision, points and the sender's new state

        Raises:
            InputError: candidate is malformed (nothing is read or written)
            StoreError: any store failure (nothing is committed)
            ConcurrentUpdateError: the sender kept changing under another
                writer after every retry
        """
        candidate = self._validate(candidate)
        retries = self.config.transaction.conflict_retries
        conflicts = 0

        with self.locks.hold(candidate.user_id):
            while True:
                try:
                    with self.store.atomic():
                        return self._evaluate_locked(candidate)
                except ConcurrentUpdateError:
                    # another process updated the sender first; re-run on fresh state
                    conflicts += 1
                    if conflicts > retries:
                        logger.error(
                            "Evaluation aborted for user=%s amount=%s after %d conflicts",
                            candidate.user_id,
                            candidate.amount,
                            conflicts,
                        )
                        raise
                    logger.warning(
                        "Sender %s changed concurrently, retrying (%d/%d)",
                        candidate.user_id,
                        conflicts,
                        retries,
                    )
                except StoreError:
                    logger.error(
                        "Evaluation aborted for user=%s amount=%s", candidate.user_id, candidate.amount
                    )
                    raise

    def _validate(
        self, candidate: Union[CandidateTransaction, Dict[str, Any]]
    ) -> CandidateTransaction:
        if not isinstance(candidate, CandidateTransaction):
            try:
                candidate = CandidateTransaction.model_validate(candidate)
            except ValidationError as exc:
                raise InputError(f"Invalid candidate transaction: {exc}") from exc
        if not isinstance(candidate.amount, Decimal) or not candidate.amount.is_finite():
            raise InputError(f"Amount must be a finite decimal, got {candidate.amount!r}")
        if candidate.amount <= 0:
            raise InputError(f"Amount must be positive, got {candidate.amount}")
        # amounts are stored with two decimals
        if candidate.amount != candidate.amount.quantize(AMOUNT_QUANTUM):
            raise InputError(f"Amount must have at most 2 decimals, got {candidate.amount}")
        if not isinstance(candidate.type, TransactionType):
            raise InputError(f"Unknown transaction type {candidate.type!r}")
        if not candidate.user_id:
            raise InputError("user_id is required")
        return candidate

    def _evaluate_locked(self, candidate: CandidateTransaction) -> TransactionEvaluation:
        rules = self.config.transaction
        now = self.clock()

        # Step 1: Load sender
        user = self.store.get_user(candidate.user_id)
        verdict = _Verdict()

        # Step 2: Per-transaction rules
        self._check_tip_limit(user, candidate, verdict)

        hour_ago = now - timedelta(seconds=rules.frequency_window_sec)
        recent = self.store.list_transactions_since(user.user_id, hour_ago)
        self._check_frequency(len(recent), verdict)

        minute_ago = now - timedelta(seconds=rules.smurfing_window_sec)
        burst = self.store.list_transactions_since(user.user_id, minute_ago)
        self._check_smurfing(len(burst), candidate, verdict)

        # Step 3: Cumulative score thresholds
        total_points = verdict.total_points
        new_score = user.risk_score + total_points
        watchlist = self._apply_score_thresholds(new_score, verdict)

        # Step 4: Persist transaction and risk events
        transaction_id = self.store.insert_transaction(
            TransactionRecord(
                user_id=candidate.user_id,
                receiver_id=candidate.receiver_id,
                session_id=candidate.session_id,
                type=candidate.type,
                amount=candidate.amount,
                timestamp=candidate.timestamp,
                status=verdict.decision.status,
                transaction_score=total_points,
                failure_flag=verdict.failed,
            )
        )
        for hit in verdict.hits:
            self.store.insert_risk_event(
                RiskEvent(
                    transaction_id=transaction_id,
                    user_id=candidate.user_id,
                    risk_factor=hit.risk_factor,
                    points_added=hit.points,
                    created_at=candidate.timestamp,
                )
            )

        # Step 5: Update sender
        # access is recomputed from the new score on every call
        access = not (new_score > self.config.thresholds.revoke_access)
        updates: Dict[str, Any] = {
            "risk_score": new_score,
            "watchlist_flag": watchlist,
            "access": access,
        }
        if not verdict.failed:
            updates["total_tips_sent"] = user.total_tips_sent + 1
            updates["total_amount_sent"] = user.total_amount_sent + candidate.amount
        self.store.update_user(user.user_id, updates)

        for hit in verdict.hits:
            logger.debug("Rule fired user=%s factor=%s points=%d", user.user_id, hit.risk_factor, hit.points)
        logger.info(
            "Evaluated transaction %s user=%s status=%r points=%d score=%d->%d access=%s",
            transaction_id,
            user.user_id,
            verdict.decision.status,
            total_points,
            user.risk_score,
            new_score,
            access,
        )

        return TransactionEvaluation(
            transaction_id=transaction_id,
            user_id=user.user_id,
            decision=verdict.decision,
            status=verdict.decision.status,
            failed=verdict.failed,
            transaction_score=total_points,
            previous_risk_score=user.risk_score,
            new_risk_score=new_score,
            watchlist=watchlist,
            access=access,
            rule_hits=verdict.hits,
        )

    def _check_tip_limit(self, user: User, candidate: CandidateTransaction, verdict: _Verdict) -> None:
        """Cap a single transfer by verification tier."""
        rules = self.config.transaction
        limit = rules.max_tip_verified if user.verified else rules.max_tip_unverified
        if candidate.amount > limit:
            verdict.hit(FACTOR_TIP_LIMIT, rules.tip_limit_points)
            verdict.block_if_approved(REASON_TIP_LIMIT)

    def _check_frequency(self, recent_count: int, verdict: _Verdict) -> None:
        """Too many transactions in the trailing frequency window."""
        rules = self.config.transaction
        if recent_count >= rules.max_tips_per_window:
            verdict.hit(FACTOR_FREQUENCY, rules.frequency_points)
            verdict.block_if_approved(REASON_FREQUENCY)

    def _check_smurfing(
        self, burst_count: int, candidate: CandidateTransaction, verdict: _Verdict
    ) -> None:
        """Many transactions in a short window while this one is small."""
        rules = self.config.transaction
        if burst_count >= rules.smurfing_count and candidate.amount < rules.smurfing_max_amount:
            verdict.hit(FACTOR_SMURFING, rules.smurfing_points)
            verdict.block_if_approved(REASON_SMURFING)

    def _apply_score_thresholds(self, new_score: int, verdict: _Verdict) -> bool:
        """Apply block/review thresholds to the new cumulative score.

        Returns:
            Whether the sender goes on the watchlist
        """
        thresholds = self.config.thresholds
        if new_score >= thresholds.block:
            verdict.decision = Decision.blocked(REASON_RISK_THRESHOLD)
            verdict.failed = True
            return False
        if new_score >= thresholds.review and verdict.decision.kind == OutcomeKind.APPROVED:
            verdict.decision = Decision.review(REASON_RISK_THRESHOLD)
            return True
        return False
