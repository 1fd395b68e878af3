"""Uniform JSON envelope for every API response."""

from typing import Any
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_body(label: str, data: Any) -> dict:
    """Build ``{"isSuccess": true, "data": {label: data}}``."""
    return {
        "isSuccess": True,
        "data": {label: jsonable_encoder(data)},
    }


def error_body(error_text: str) -> dict:
    """Build ``{"isSuccess": false, "errorText": error_text}``."""
    return {
        "isSuccess": False,
        "errorText": error_text,
    }


def success_response(label: str, data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=success_body(label, data))


def error_response(error_text: str, status_code: int = 400, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(error_text), headers=headers)
