from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..service import QueryGateway, get_gateway

router = APIRouter(prefix="/tables", tags=["tables"])


@router.get("")
async def list_tables(gateway: QueryGateway = Depends(get_gateway)) -> dict:
    return {"tables": gateway.catalog.names()}


@router.get("/{name}")
def run_table(name: str, request: Request, gateway: QueryGateway = Depends(get_gateway)) -> JSONResponse:
    # Every query-string entry except hostId is bound as a query parameter
    search = {k: v for k, v in request.query_params.items() if k != "hostId"}
    host_id = request.query_params.get("hostId")
    return gateway.run_table(name, host_id, search, api=request.url.path).json_response()
