"""
Analytics API Endpoints

Read surface over the snapshot ledger and the live subscription table.
Field names of these documents are consumed by the dashboard and must
stay stable.
"""

from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request

from src.analytics.conversion import ConversionReport, ConversionVerifier
from src.analytics.mrr import AnalyticsSummary, MRRHistoryPoint, MRRHistoryRecorder
from src.analytics.periods import reference_today
from src.analytics.retention import CohortComparator, RetentionReport
from src.serving.api.dependencies import get_cohort_comparator, get_conversion_verifier, get_mrr_recorder
from src.serving.api.middleware import get_request_id
from src.serving.cache import analytics_cache

router = APIRouter()
logger = structlog.get_logger(__name__)


class RetentionResponse(RetentionReport):
    request_id: str
    timestamp: datetime


class TrialConversionResponse(ConversionReport):
    request_id: str
    timestamp: datetime


class SnapshotResponse(AnalyticsSummary):
    timestamp: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/retention", response_model=RetentionResponse)
async def get_retention(
    request: Request,
    period: Optional[str] = Query(None, description="Days back (1, 3, 7, 14, 30), week, month, week_start or month_start"),
    comparator: CohortComparator = Depends(get_cohort_comparator),
) -> RetentionResponse:
    """
    Retention of counted subscriptions between a baseline day and today.

    Churned subscriptions are listed first, each group by monthly value.
    """
    today = reference_today()

    async def compute() -> dict:
        report = await comparator.retention(period, today=today)
        return report.model_dump(mode="json")

    data = await analytics_cache.get_or_set(f"retention:{period or 'default'}:{today.isoformat()}", compute)
    return RetentionResponse(**data, request_id=get_request_id(request), timestamp=_now())


@router.get("/trial-conversion", response_model=TrialConversionResponse)
async def get_trial_conversion(
    request: Request,
    period: Optional[str] = Query(None, description="Lookback in days: 7, 14 or 30"),
    verifier: ConversionVerifier = Depends(get_conversion_verifier),
) -> TrialConversionResponse:
    """Share of finished trials in the lookback window that converted to paid"""
    today = reference_today()

    async def compute() -> dict:
        report = await verifier.conversion(period, today=today)
        return report.model_dump(mode="json")

    data = await analytics_cache.get_or_set(f"trial_conversion:{period or 'default'}:{today.isoformat()}", compute)
    return TrialConversionResponse(**data, request_id=get_request_id(request), timestamp=_now())


@router.get("/snapshot", response_model=SnapshotResponse)
async def get_snapshot(recorder: MRRHistoryRecorder = Depends(get_mrr_recorder)) -> SnapshotResponse:
    """Current official MRR and trial pipeline"""
    summary = await recorder.summary()
    return SnapshotResponse(**summary.model_dump(), timestamp=_now())


@router.get("/mrr/history", response_model=List[MRRHistoryPoint])
async def get_mrr_history(
    limit: int = Query(30, ge=1, le=365),
    recorder: MRRHistoryRecorder = Depends(get_mrr_recorder),
) -> List[MRRHistoryPoint]:
    """Daily MRR series, oldest first"""
    return await recorder.history(limit=limit)
