from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..engine import BucketAnalytics
from ..models.schemas import AttributeValue, CountPoint, IdentifierOutcome, IngestResponse, QueryRequest, RankedOutcomes
from .deps import get_analytics

router = APIRouter(prefix="/api/v1/tables", tags=["analytics"])


@router.post("/{table}/events", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_events(
    table: str,
    events: List[Dict[str, Optional[AttributeValue]]],
    analytics: BucketAnalytics = Depends(get_analytics),
) -> IngestResponse:
    await analytics.ingest(table, *events)
    return IngestResponse(table=table, ingested=len(events))


@router.get("/{table}/count", response_model=List[CountPoint])
async def count_events(
    table: str,
    start: int = Query(..., ge=0),
    end: int = Query(..., ge=0),
    scan: bool = False,
    analytics: BucketAnalytics = Depends(get_analytics),
) -> List[Dict[str, int]]:
    return await analytics.count(table, start, end, scan=scan)


@router.post("/{table}/query")
async def query_events(
    table: str,
    payload: QueryRequest,
    analytics: BucketAnalytics = Depends(get_analytics),
) -> List[Dict[str, Any]]:
    return await analytics.query(
        table,
        payload.start,
        payload.end,
        where=payload.where,
        fields=payload.fields,
        scan=payload.scan,
    )


@router.get("/{table}/aggregate")
async def aggregate_events(
    table: str,
    field: str,
    buckets: int = Query(1, ge=1),
    timestamp: Optional[int] = None,
    pipeline: bool = False,
    analytics: BucketAnalytics = Depends(get_analytics),
) -> List[Dict[str, Any]]:
    if pipeline:
        return await analytics.aggregate_buckets_with_pipeline(table, field, buckets, timestamp)
    return await analytics.aggregate_buckets(table, field, buckets, timestamp)


@router.get("/{table}/top", response_model=RankedOutcomes)
async def top_identifiers(
    table: str,
    buckets: int = Query(1, ge=1),
    items: int = Query(10, ge=1),
    timestamp: Optional[int] = None,
    check_at_most: Optional[int] = Query(None, ge=1),
    analytics: BucketAnalytics = Depends(get_analytics),
) -> RankedOutcomes:
    return await analytics.get_most_allowed_blocked(table, buckets, items, timestamp, check_at_most)


@router.get("/{table}/allowed-blocked", response_model=Dict[str, IdentifierOutcome])
async def allowed_blocked(
    table: str,
    buckets: int = Query(1, ge=1),
    timestamp: Optional[int] = None,
    analytics: BucketAnalytics = Depends(get_analytics),
) -> Dict[str, IdentifierOutcome]:
    return await analytics.get_allowed_blocked(table, buckets, timestamp)
