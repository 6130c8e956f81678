"""
api/routes/v1/regions.py -- Public region and comuna lookups.
"""

from typing import Optional

from fastapi import APIRouter, Query, Request

from api.errors import api_error
from api.models import ComunaResponse, RegionResponse, ok
from core.errors import ErrorCode

router = APIRouter()


@router.get("/regions")
def list_regions(request: Request) -> dict:
    return ok([RegionResponse.from_domain(r) for r in request.app.state.region_store.list_regions()])


@router.get("/comunas")
def list_comunas(request: Request, region_id: Optional[str] = Query(None, alias="regionId")) -> dict:
    if not region_id or not region_id.strip():
        raise api_error(ErrorCode.MISSING_REGION_ID, "Query parameter regionId is required.")
    comunas = request.app.state.region_store.list_comunas(region_id.strip())
    return ok([ComunaResponse.from_domain(c) for c in comunas])
