from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ..service import QueryGateway, error_response, get_gateway
from ..validators import RequestValidationError

router = APIRouter(prefix="/data", tags=["data"])


@router.post("")
async def run_data(request: Request, gateway: QueryGateway = Depends(get_gateway)) -> JSONResponse:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if not isinstance(body, dict):
        return error_response(RequestValidationError("Invalid request body: must be a JSON object").error).json_response()
    result = await run_in_threadpool(gateway.run_data, body)
    return result.json_response()
