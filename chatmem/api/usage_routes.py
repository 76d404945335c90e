"""Usage and quota routes for the current user."""

import structlog
from fastapi import APIRouter, Depends, Request

from ..core.enums import UsageMetric
from ..core.exceptions import QuotaExceededError, ValidationError
from ..memory.orchestrator import MemoryOrchestrator
from .dependencies import AuthContext, get_orchestrator, parse_body, require_user
from .schemas import ConsumeUsageRequest

logger = structlog.get_logger()
usage_router = APIRouter(prefix="/usage", tags=["usage"])


@usage_router.get("")
async def get_usage(
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Per-metric ``{current, limit, percentage}`` plus the resolved plan."""
    summary = await orchestrator.usage_summary(auth.user_id)
    return summary.to_api()


@usage_router.get("/warnings")
async def get_usage_warnings(
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    warnings, should_notify = await orchestrator.usage_warnings(auth.user_id)
    return {
        "warnings": [
            {
                "metric": w.metric.wire_name,
                "current": w.current,
                "limit": w.limit,
                "percentage": w.percentage,
                "overLimit": w.over_limit,
                "message": w.message,
            }
            for w in warnings
        ],
        "shouldNotify": should_notify,
    }


@usage_router.post("/consume")
async def consume_usage(
    request: Request,
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Consume one unit of a metric (interactions, voice chats, ...) if the plan allows it."""
    body = await parse_body(request, ConsumeUsageRequest)
    try:
        metric = UsageMetric.parse(body.metric)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    result = await orchestrator.consume_usage(auth.user_id, metric)
    if not result.allowed:
        raise QuotaExceededError(metric, result.limit, result.new_count)
    return {"allowed": True, "newCount": result.new_count, "limit": result.limit}


@usage_router.post("/sync")
async def sync_usage(
    auth: AuthContext = Depends(require_user),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Recompute the caller's counters from authoritative sources."""
    counts = await orchestrator.sync_usage(auth.user_id)
    return {
        "success": True,
        "message": "Memory usage synced successfully",
        "counts": {metric.wire_name: count for metric, count in counts.items()},
    }
