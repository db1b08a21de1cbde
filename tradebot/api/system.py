"""System API: health check, scheduler status, cycle logs."""

from fastapi import APIRouter, Depends, Query

from tradebot.api.deps import get_controller, require_token
from tradebot.engine.controller import BotController

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler", dependencies=[Depends(require_token)])
def scheduler_status(controller: BotController = Depends(get_controller)):
    """Current scheduler state with job details."""
    return controller.get_scheduler_status()


@router.get("/logs", dependencies=[Depends(require_token)])
def cycle_logs(
    chain: str | None = None,
    status: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    controller: BotController = Depends(get_controller),
):
    if controller.journal is None:
        return []
    return controller.journal.cycle_logs(chain=chain, status=status, limit=limit)
