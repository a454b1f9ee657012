from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from api.mappings import models as api_models
from api.mappings import services


router = APIRouter(prefix="/v1/mappings", tags=["mappings"])


@router.post("/run")
async def run_mapping(
    request: Request,
    payload: api_models.RunMappingRequest,
    authorization: Optional[str] = Header(default=None),
):
    status_code, body = await services.run_mapping(
        payload,
        authorization,
        store=getattr(request.app.state, "node_mapping_store", None),
        audit_sink=getattr(request.app.state, "audit_sink", None),
    )
    return JSONResponse(status_code=status_code, content=body)


@router.post("/validate-logic", response_model=api_models.ValidateLogicResponse)
async def validate_logic(payload: api_models.ValidateLogicRequest):
    return services.validate_logic(payload)
