from __future__ import annotations

from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.errors import UpstreamError
from ...security.auth import User, get_current_user
from ...services.llm_client import ProviderClient
from ..deps import get_llm_client


router = APIRouter(tags=["models"])


@router.get("/models")
async def list_models(
    user: User = Depends(get_current_user),
    client: ProviderClient = Depends(get_llm_client),
) -> Dict[str, List[Dict[str, Any]]]:
    try:
        models = await client.list_models()
    except UpstreamError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return {"models": models}
