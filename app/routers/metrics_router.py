"""
Prometheus scrape endpoint.

Exposes HTTP, schedule transition, sweep, notification, import and pairing
metrics in the text exposition format.
"""
from fastapi import APIRouter, Response

from app.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["metrics"])


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    response_class=Response,
    include_in_schema=False,
)
async def metrics():
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
