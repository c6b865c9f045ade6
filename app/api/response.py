# FILE: app/api/response.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def ok(
    data: Any = None,
    *,
    message: Optional[str] = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Standard success wrapper:
    {
      "success": true,
      "data": ...,
      "message": "..." (optional)
    }
    """
    payload: Dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        payload["message"] = message

    # jsonable_encoder handles date / Decimal / Enum / pydantic models
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def err(
    message: str = "Something went wrong",
    *,
    status_code: int = 400,
    errors: Optional[List[Dict[str, str]]] = None,
) -> JSONResponse:
    """
    Standard error wrapper:
    {
      "success": false,
      "message": "...",
      "errors": [{"field": "...", "message": "..."}] (validation only)
    }
    """
    payload: Dict[str, Any] = {"success": False, "message": message}
    if errors is not None:
        payload["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))
