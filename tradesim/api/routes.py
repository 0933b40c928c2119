from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status

from ..domain.validator import validate_bot_config
from ..models.bot import BotConfig
from ..models.market import PriceSnapshot
from ..models.preset import PresetMapping, PresetRequest, ValidationResult
from ..models.stats import BotStats, BotTickResult, ManagerStats
from ..services.bot_manager import (
    BotAlreadyExistsError,
    BotManager,
    BotNotFoundError,
    InvalidBotConfigError,
)

router = APIRouter()


def get_bot_manager(request: Request) -> BotManager:
    return request.app.state.bot_manager


def _not_found(exc: BotNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _invalid(exc: InvalidBotConfigError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail=exc.validation.model_dump(mode="json", by_alias=True),
    )


@router.post("/tick", response_model=List[BotTickResult])
def tick(snapshot: PriceSnapshot, manager: BotManager = Depends(get_bot_manager)) -> List[BotTickResult]:
    return manager.tick(snapshot.prices)


@router.get("/bots", response_model=List[BotStats])
def list_bots(
    trade_limit: Optional[int] = 50, manager: BotManager = Depends(get_bot_manager)
) -> List[BotStats]:
    return manager.get_all_stats(trade_limit)


@router.get("/stats", response_model=ManagerStats)
def aggregated_stats(
    trade_limit: int = 50, manager: BotManager = Depends(get_bot_manager)
) -> ManagerStats:
    return manager.get_aggregated_stats(trade_limit)


@router.post("/bots", response_model=BotStats, status_code=status.HTTP_201_CREATED)
def create_bot(config: BotConfig, manager: BotManager = Depends(get_bot_manager)) -> BotStats:
    try:
        return manager.create_bot(config)
    except InvalidBotConfigError as exc:
        raise _invalid(exc)
    except BotAlreadyExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("/bots/preset", response_model=BotStats, status_code=status.HTTP_201_CREATED)
def create_bot_from_preset(
    request: PresetRequest, manager: BotManager = Depends(get_bot_manager)
) -> BotStats:
    try:
        return manager.create_from_preset(
            request.preset,
            bot_id=request.id,
            name=request.name,
            trading_pairs=request.trading_pairs,
            invested_capital=request.invested_capital,
        )
    except InvalidBotConfigError as exc:
        raise _invalid(exc)
    except BotAlreadyExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/bots/{bot_id}", response_model=BotStats)
def get_bot(
    bot_id: str, trade_limit: Optional[int] = 50, manager: BotManager = Depends(get_bot_manager)
) -> BotStats:
    try:
        return manager.get_stats(bot_id, trade_limit)
    except BotNotFoundError as exc:
        raise _not_found(exc)


@router.get("/bots/{bot_id}/config", response_model=BotConfig)
def get_config(bot_id: str, manager: BotManager = Depends(get_bot_manager)) -> BotConfig:
    try:
        return manager.get_config(bot_id)
    except BotNotFoundError as exc:
        raise _not_found(exc)


@router.patch("/bots/{bot_id}/config", response_model=BotConfig)
def update_config(
    bot_id: str,
    changes: Dict[str, Any] = Body(...),
    manager: BotManager = Depends(get_bot_manager),
) -> BotConfig:
    try:
        return manager.update_config(bot_id, changes)
    except BotNotFoundError as exc:
        raise _not_found(exc)
    except InvalidBotConfigError as exc:
        raise _invalid(exc)


@router.put("/bots/{bot_id}/config", response_model=BotConfig)
def replace_config(
    bot_id: str, config: BotConfig, manager: BotManager = Depends(get_bot_manager)
) -> BotConfig:
    try:
        return manager.replace_config(bot_id, config)
    except BotNotFoundError as exc:
        raise _not_found(exc)
    except InvalidBotConfigError as exc:
        raise _invalid(exc)


@router.post("/bots/{bot_id}/reset-config", response_model=BotConfig)
def reset_config(bot_id: str, manager: BotManager = Depends(get_bot_manager)) -> BotConfig:
    try:
        return manager.reset_config(bot_id)
    except BotNotFoundError as exc:
        raise _not_found(exc)
    except InvalidBotConfigError as exc:
        raise _invalid(exc)


@router.post("/bots/{bot_id}/clear-history", response_model=BotStats)
def clear_history(bot_id: str, manager: BotManager = Depends(get_bot_manager)) -> BotStats:
    try:
        return manager.clear_history(bot_id)
    except BotNotFoundError as exc:
        raise _not_found(exc)


@router.delete("/bots/{bot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bot(bot_id: str, manager: BotManager = Depends(get_bot_manager)) -> None:
    try:
        manager.delete_bot(bot_id)
    except BotNotFoundError as exc:
        raise _not_found(exc)


@router.post("/validate", response_model=ValidationResult)
def validate(config: BotConfig) -> ValidationResult:
    return validate_bot_config(config)


@router.post("/presets/map", response_model=PresetMapping)
def map_preset(request: PresetRequest, manager: BotManager = Depends(get_bot_manager)) -> PresetMapping:
    return manager.map_preset(
        request.preset,
        name=request.name,
        trading_pairs=request.trading_pairs,
        invested_capital=request.invested_capital,
    )
