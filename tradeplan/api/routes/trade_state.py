from __future__ import annotations

import hmac
from typing import Annotated, Any

from fastapi import APIRouter, Body, Header, HTTPException, status

from tradeplan.api.deps import RequestId, Services
from tradeplan.api.models import OkResponse, TradeStateResponse
from tradeplan.logging import get_logger
from tradeplan.utils.error_taxonomy import ConfigError, InputError

router = APIRouter(prefix="/trade-state", tags=["Trade state"])
logger = get_logger("api.trade_state")


@router.get("", response_model=TradeStateResponse)
def get_trade_state(services: Services) -> TradeStateResponse:
    store = services.resolve_state_store()
    return TradeStateResponse(state=store.load_state())


@router.post("", response_model=OkResponse)
def save_trade_state(
    services: Services,
    request_id: RequestId,
    payload: Annotated[Any, Body()] = None,
    x_admin_key: Annotated[str | None, Header(alias="X-Admin-Key")] = None,
) -> OkResponse:
    expected_key = services.settings.trade_admin_key
    if not expected_key:
        raise ConfigError("TRADE_ADMIN_KEY is not configured")
    if not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode("utf-8"), expected_key.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    if not isinstance(payload, dict):
        raise InputError("Invalid JSON")

    services.resolve_state_store().save_state(payload)
    logger.info(
        "trade-state-saved",
        extra={"fn": "tradeState", "request_id": request_id},
    )
    return OkResponse()
