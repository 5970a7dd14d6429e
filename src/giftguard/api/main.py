"""FastAPI application for GiftGuard.

Entry points that UI actions and scheduled jobs call:
- Transaction evaluation (POST /api/v1/transactions/evaluate)
- Transaction audit view (GET /api/v1/transactions/{transaction_id})
- Session review (POST /api/v1/sessions/{session_id}/review)
- Batch review of unreviewed sessions (POST /api/v1/sessions/review-pending)
- Session stats (GET /api/v1/sessions/{session_id}/stats)
- Health check (GET /health)

Evaluation endpoints are plain ``def`` so FastAPI runs them in its thread
pool; the process-wide lock maps keep one user's evaluations (and one
creator's reviews) from interleaving.
"""

from typing import List, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from giftguard.config import get_settings
from giftguard.db.session import get_db
from giftguard.engine.locks import KeyedLock
from giftguard.engine.session import SessionRiskReviewer
from giftguard.engine.transaction import TransactionRiskEvaluator
from giftguard.errors import RecordNotFoundError, StoreError
from giftguard.logging_utils import get_logger
from giftguard.models import (
    CandidateTransaction,
    SessionReview,
    SessionStats,
    TransactionAudit,
    TransactionEvaluation,
)
from giftguard.store.sql import SqlAlchemyStore

logger = get_logger(__name__)

app = FastAPI(
    title="GiftGuard API",
    description="Risk evaluation for virtual-currency gifting",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Shared across requests so serialization holds across the thread pool
user_locks = KeyedLock()
creator_locks = KeyedLock()


def get_store(db: Session = Depends(get_db)) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


def get_evaluator(store: SqlAlchemyStore = Depends(get_store)) -> TransactionRiskEvaluator:
    return TransactionRiskEvaluator(store, config=get_settings().risk, locks=user_locks)


def get_reviewer(store: SqlAlchemyStore = Depends(get_store)) -> SessionRiskReviewer:
    return SessionRiskReviewer(store, config=get_settings().risk, locks=creator_locks)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "service": "giftguard", "version": "0.1.0"}


@app.post(
    "/api/v1/transactions/evaluate",
    response_model=TransactionEvaluation,
    status_code=201,
)
def evaluate_transaction(
    candidate: CandidateTransaction,
    evaluator: TransactionRiskEvaluator = Depends(get_evaluator),
) -> TransactionEvaluation:
    """Evaluate a proposed transaction.

    The transaction is recorded whatever the outcome; ``failed`` tells the
    caller whether it was blocked.

    Raises:
        404 if the sender is unknown, 503 on store failure
    """
    return evaluator.evaluate(candidate)


@app.get("/api/v1/transactions/{transaction_id}", response_model=TransactionAudit)
def get_transaction(
    transaction_id: str,
    store: SqlAlchemyStore = Depends(get_store),
) -> TransactionAudit:
    """Retrieve a transaction and the risk events it produced."""
    transaction = store.get_transaction(transaction_id)
    events = store.list_risk_events_by_transaction_ids([transaction_id])
    return TransactionAudit(transaction=transaction, risk_events=events)


@app.post("/api/v1/sessions/review-pending", response_model=List[SessionReview])
def review_pending_sessions(
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum sessions to review"),
    reviewer: SessionRiskReviewer = Depends(get_reviewer),
) -> List[SessionReview]:
    """Review every session that is not yet ``reviewed``."""
    return reviewer.review_pending(limit=limit)


@app.post("/api/v1/sessions/{session_id}/review", response_model=SessionReview)
def review_session(
    session_id: str,
    reviewer: SessionRiskReviewer = Depends(get_reviewer),
) -> SessionReview:
    """Review a session and overwrite its stats."""
    return reviewer.review(session_id)


@app.get("/api/v1/sessions/{session_id}/stats", response_model=SessionStats)
def get_session_stats(
    session_id: str,
    store: SqlAlchemyStore = Depends(get_store),
) -> SessionStats:
    """Retrieve the latest stored verdict for a session."""
    return store.get_session_stats(session_id)


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request, exc):
    """Handle missing users, sessions and transactions."""
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request, exc):
    """Handle store failures."""
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Store unavailable"})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    """Handle ValueError exceptions (including InputError)."""
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
