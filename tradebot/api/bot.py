"""Bot control API: lifecycle, config, trades."""

from fastapi import APIRouter, Depends, HTTPException, Query

from tradebot.api.deps import get_controller, require_token
from tradebot.engine.config_store import ConfigValidationError
from tradebot.engine.controller import BotController
from tradebot.schemas.engine_config import EngineConfig, EngineConfigUpdate
from tradebot.schemas.trade import BotStats, BotStatus, TradeRead

router = APIRouter(prefix="/api/bot", tags=["bot"], dependencies=[Depends(require_token)])


@router.post("/start", response_model=BotStatus)
async def start_bot(controller: BotController = Depends(get_controller)):
    # async so the scheduler binds to the server's event loop
    return controller.start()


@router.post("/stop", response_model=BotStatus)
async def stop_bot(controller: BotController = Depends(get_controller)):
    return controller.stop()


@router.get("/status", response_model=BotStatus)
def bot_status(controller: BotController = Depends(get_controller)):
    return controller.get_status()


@router.get("/stats", response_model=BotStats)
def bot_stats(controller: BotController = Depends(get_controller)):
    return controller.get_stats()


@router.get("/config", response_model=EngineConfig)
def get_config(controller: BotController = Depends(get_controller)):
    return controller.get_config()


@router.put("/config", response_model=EngineConfig)
async def update_config(
    data: EngineConfigUpdate,
    controller: BotController = Depends(get_controller),
):
    try:
        return controller.update_config(data)
    except ConfigValidationError as e:
        raise HTTPException(status_code=422, detail={"field": e.field, "message": e.message})


@router.get("/trades", response_model=list[TradeRead])
def active_trades(controller: BotController = Depends(get_controller)):
    return controller.get_active_trades()


@router.get("/trades/history", response_model=list[TradeRead])
def trade_history(
    limit: int = Query(default=100, ge=1, le=1000),
    controller: BotController = Depends(get_controller),
):
    return controller.get_trade_history(limit)


@router.post("/tick")
async def run_tick(controller: BotController = Depends(get_controller)):
    """Run one scan tick now, whether or not the bot is running."""
    return await controller.run_tick()
