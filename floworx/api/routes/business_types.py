"""
Business type catalog: supported verticals and their merged schemas.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from floworx.api.middleware.auth import require_api_key
from floworx.observability.logging import get_logger
from floworx.schemas.loader import (
    SchemaNotFoundError,
    SchemaValidationError,
    get_available_business_types,
    get_business_type_metadata,
    load_schema,
)
from floworx.utils.error_sanitizer import get_safe_error_detail

router = APIRouter(
    prefix="/api/business-types", tags=["business-types"], dependencies=[Depends(require_api_key)]
)
logger = get_logger(__name__)


@router.get("")
async def list_business_types() -> dict[str, Any]:
    types = []
    for business_type in get_available_business_types():
        try:
            types.append(get_business_type_metadata(business_type))
        except (SchemaNotFoundError, SchemaValidationError) as e:
            logger.warning("Business type %s unavailable: %s", business_type, e)
    return {"businessTypes": types, "total": len(types)}


@router.get("/{business_type}/schema")
async def get_business_type_schema(business_type: str) -> dict[str, Any]:
    """Merged (base + vertical) schema; ids, display names and aliases are accepted."""
    try:
        return load_schema(business_type)
    except SchemaNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Unknown business type: {business_type}") from e
    except SchemaValidationError as e:
        raise HTTPException(
            status_code=500, detail=get_safe_error_detail(e, 500, "Business type schema is invalid")
        ) from e
