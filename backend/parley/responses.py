"""JSON envelope shared by every REST endpoint.

Success: ``{"success": true, "message": ..., "data": ..., "pagination"?: ...}``
Failure: ``{"success": false, "message": ..., "error"?: ...}``
"""
import math
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def ok(message: str, data: Any = None, status_code: int = 200, pagination: Optional[dict] = None) -> JSONResponse:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    if pagination is not None:
        body["pagination"] = pagination
    return JSONResponse(body, status_code=status_code)


def fail(message: str, status_code: int, error: Optional[str] = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    return JSONResponse(body, status_code=status_code)


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }
