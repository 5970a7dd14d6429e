"""Data models for GiftGuard."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the store's timestamp format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    """Kinds of value transfer."""

    TOPUP = "topup"
    GIFT = "gift"


class OutcomeKind(str, Enum):
    """Outcome of a single transaction evaluation."""

    APPROVED = "APPROVED"
    BLOCKED = "BLOCKED"
    REVIEW = "REVIEW"


APPROVED_STATUS = "Transaction Approved"

# Reason texts. These are shown to users verbatim, keep them stable.
REASON_TIP_LIMIT = "Tip Limit Exceeded"
REASON_FREQUENCY = "Too Many Tips in 1 Hour"
REASON_SMURFING = "Smurfing Detected"
REASON_RISK_THRESHOLD = "Risk Score Threshold Exceeded"

# Risk factor names recorded on risk events.
FACTOR_TIP_LIMIT = "Tip Limit Exceeded"
FACTOR_FREQUENCY = "High Frequency"
FACTOR_SMURFING = "Smurfing Behavior"

# Session status values written by the reviewer.
SESSION_REVIEWED = "reviewed"
SESSION_FLAGGED = "flagged"


class Decision(BaseModel):
    """Tagged transaction outcome with a human-readable reason.

    ``status`` renders the string stored on the transaction row, e.g.
    ``"Blocked: Smurfing Detected"``.
    """

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind = OutcomeKind.APPROVED
    reason: Optional[str] = None

    @classmethod
    def approved(cls) -> "Decision":
        return cls(kind=OutcomeKind.APPROVED)

    @classmethod
    def blocked(cls, reason: str) -> "Decision":
        return cls(kind=OutcomeKind.BLOCKED, reason=reason)

    @classmethod
    def review(cls, reason: str) -> "Decision":
        return cls(kind=OutcomeKind.REVIEW, reason=reason)

    @property
    def is_approved(self) -> bool:
        return self.kind == OutcomeKind.APPROVED

    @property
    def status(self) -> str:
        if self.kind == OutcomeKind.BLOCKED:
            return f"Blocked: {self.reason}"
        if self.kind == OutcomeKind.REVIEW:
            return f"Review: {self.reason}"
        return APPROVED_STATUS

    @classmethod
    def parse(cls, status: str) -> "Decision":
        """Parse a stored status string back into a decision.

        Raises:
            ValueError: if the string is not a known status shape
        """
        if status == APPROVED_STATUS:
            return cls.approved()
        prefix, sep, reason = status.partition(": ")
        if sep and prefix == "Blocked":
            return cls.blocked(reason)
        if sep and prefix == "Review":
            return cls.review(reason)
        raise ValueError(f"Unknown transaction status: {status!r}")


def is_review_status(status: str) -> bool:
    """True when a stored transaction status still needs manual review."""
    return status.startswith("Review")


class CandidateTransaction(BaseModel):
    """A proposed transfer submitted for evaluation."""

    user_id: str = Field(..., description="Sender")
    receiver_id: Optional[str] = Field(None, description="Recipient (None for top-ups)")
    session_id: Optional[str] = Field(None, description="Live session the gift is scoped to")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Transfer amount, at most 2 decimals")
    timestamp: datetime = Field(default_factory=utcnow)
    type: TransactionType = Field(..., description="topup or gift")

    @field_validator("timestamp")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "user_123",
                "receiver_id": "creator_456",
                "session_id": "session_789",
                "amount": "12.50",
                "timestamp": "2026-10-18T10:30:00Z",
                "type": "gift",
            }
        }
    )


class User(BaseModel):
    """Sender risk state."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    verified: bool = False
    risk_score: int = 0
    access: bool = True
    watchlist_flag: bool = False
    total_tips_sent: int = 0
    total_amount_sent: Decimal = Decimal("0")


class TransactionRecord(BaseModel):
    """A stored transaction."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: Optional[str] = None
    user_id: str
    receiver_id: Optional[str] = None
    session_id: Optional[str] = None
    type: TransactionType
    amount: Decimal
    timestamp: datetime
    status: str
    transaction_score: int = 0
    failure_flag: bool = False


class RiskEvent(BaseModel):
    """Audit record of one rule firing."""

    model_config = ConfigDict(from_attributes=True)

    event_id: Optional[str] = None
    transaction_id: Optional[str] = None
    user_id: str
    risk_factor: str
    points_added: int = Field(..., gt=0)
    created_at: datetime


class LiveSession(BaseModel):
    """A creator broadcast that gifts can be scoped to."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_id: str = Field(..., description="Creator")
    status: str
    start_time: datetime


class SessionStats(BaseModel):
    """Latest review verdict for a session."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    status: str
    is_flagged: bool
    risk_score: int
    reviewed_at: datetime


class RuleHit(BaseModel):
    """A rule that fired during evaluation, before it is persisted."""

    risk_factor: str
    points: int


class TransactionEvaluation(BaseModel):
    """Full result of evaluating one candidate transaction."""

    transaction_id: str
    user_id: str
    decision: Decision
    status: str
    failed: bool
    transaction_score: int
    previous_risk_score: int
    new_risk_score: int
    watchlist: bool
    access: bool
    rule_hits: List[RuleHit] = Field(default_factory=list)


class SessionReview(BaseModel):
    """Full result of reviewing one session."""

    session_id: str
    creator_id: str
    status: str
    is_flagged: bool
    all_finalized: bool
    flags: List[str] = Field(default_factory=list)
    transaction_count: int
    risk_score: int
    recent_session_count: int
    avg_risk_events_per_session: float
    reviewed_at: datetime


class TransactionAudit(BaseModel):
    """A stored transaction together with the risk events it produced."""

    transaction: TransactionRecord
    risk_events: List[RiskEvent] = Field(default_factory=list)
