from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success(data: Any = None) -> dict:
    """Success envelope; the status code is set on the route or the injected Response."""
    return {"status": "success", "data": jsonable_encoder(data if data is not None else {})}


def error(message: str = "Something went wrong !", status_code: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"status": "error", "message": message}
    )
