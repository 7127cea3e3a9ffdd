from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..intervals import ClickHouseInterval
from ..schemas import ChartQueryParams
from ..service import QueryGateway, error_response, get_gateway
from ..validators import RequestValidationError, validate_enum_value

router = APIRouter(prefix="/charts", tags=["charts"])

_INTERVALS = [i.value for i in ClickHouseInterval]


def _chart_params(interval: Optional[str], last_hours: Optional[str], params: Optional[str]) -> ChartQueryParams:
    invalid = validate_enum_value(interval or None, _INTERVALS, "interval")
    if invalid is not None:
        raise RequestValidationError(invalid.message)
    hours = None
    if last_hours not in (None, ""):
        try:
            hours = int(last_hours)
        except ValueError:
            hours = -1
        if hours < 0:
            raise RequestValidationError("Invalid lastHours: must be a non-negative number")
    extra = None
    if params:
        try:
            extra = json.loads(params)
        except json.JSONDecodeError:
            extra = None
        if not isinstance(extra, dict):
            raise RequestValidationError("Invalid params: must be a JSON object")
    try:
        return ChartQueryParams(interval=interval or None, last_hours=hours, params=extra)
    except ValidationError as e:
        raise RequestValidationError("Invalid params: values must be scalars", {"errors": str(e)}) from e


@router.get("")
async def list_charts(gateway: QueryGateway = Depends(get_gateway)) -> dict:
    return {"charts": gateway.charts.available_charts()}


@router.get("/{name}")
def run_chart(
    name: str,
    request: Request,
    hostId: Optional[str] = Query(default=None),
    interval: Optional[str] = Query(default=None),
    lastHours: Optional[str] = Query(default=None),
    params: Optional[str] = Query(default=None, description="JSON object of extra chart parameters"),
    gateway: QueryGateway = Depends(get_gateway),
) -> JSONResponse:
    api = request.url.path
    try:
        chart_params = _chart_params(interval, lastHours, params)
    except RequestValidationError as e:
        return error_response(e.error, api=api).json_response()
    return gateway.run_chart(name, hostId, chart_params, api=api).json_response()
