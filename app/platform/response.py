from typing import Any, Dict, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """
    Single source of truth for ALL API responses.
    Automatically sets status = "success" if < 400 else "error"
    """
    status_str = "success" if status_code < 400 else "error"
    data = jsonable_encoder(data) if data is not None else {}

    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "status": status_str,
            "message": message,
            "data": data,
        },
    )


def error_response(
    *,
    error_code: str,
    message: str,
    status_code: int,
    reason: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    Error envelope carrying a stable machine-readable code.

    `data` always holds `success: false` and `error_code`; `error_reason`
    is a best-effort diagnostic and only present when known.
    """
    data: Dict[str, Any] = {"success": False, "error_code": error_code}
    if reason:
        data["error_reason"] = reason
    if extra:
        data.update(extra)
    return api_response(data=data, message=message, status_code=status_code)
