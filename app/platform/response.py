from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

SUCCESS = "success"
ERROR = "error"


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """
    Wrap a payload in the {status_code, status, message, data} envelope.

    CamelModel payloads are encoded by alias, so scans and results go out
    as camelCase. Missing data is sent as an empty object.
    """
    body = {
        "status_code": status_code,
        "status": ERROR if status_code >= status.HTTP_400_BAD_REQUEST else SUCCESS,
        "message": message,
        "data": {} if data is None else jsonable_encoder(data, by_alias=True),
    }
    return JSONResponse(status_code=status_code, content=body)
