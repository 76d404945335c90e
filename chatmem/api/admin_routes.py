"""Admin API routes for usage maintenance."""

from fastapi import APIRouter, Depends

from ..memory.orchestrator import MemoryOrchestrator
from .dependencies import AuthContext, get_orchestrator, require_admin_permission

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.post("/usage/sync-all")
async def sync_all_usage(
    auth: AuthContext = Depends(require_admin_permission),
    orchestrator: MemoryOrchestrator = Depends(get_orchestrator),
):
    """Reconcile usage counters for every known user. Admin-only."""
    report = await orchestrator.sync_all_usage()
    return {
        "success": not report.failures,
        "usersSynced": report.users_synced,
        "failures": report.failures,
    }
