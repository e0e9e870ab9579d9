"""
webkit - Request Validator Setup
==================================

What:  Installs consistent formatting for request validation failures.
Why:   FastAPI validates request bodies, query strings and path parameters with
       pydantic and answers 422 with pydantic's raw error list. Clients of this
       template get a flat, stable shape instead:

           HTTP 400
           {
               "error": "validation_error",
               "message": "name: Field required",
               "details": [{"field": "name", "message": "Field required"}],
               "request_id": "a1b2c3d4"
           }

How:   init_validator(app) registers a RequestValidationError handler.
When:  Once at startup, after the database is initialized.
"""

import logging
from typing import Any, Dict, List, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from webkit.exceptions import ValidatorError
from webkit.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

# Location prefixes FastAPI adds in front of the actual field path
_LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie"}


def format_errors(errors: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Flatten pydantic error dicts into [{"field": ..., "message": ...}].

    ("body", "user", "email") → "user.email"; list indexes are kept
    ("body", "items", 0, "qty") → "items.0.qty".
    """
    formatted = []
    for error in errors:
        loc = list(error.get("loc", ()))
        if loc and loc[0] in _LOCATION_PREFIXES:
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) or "request"
        formatted.append({"field": field, "message": error.get("msg", "invalid value")})
    return formatted


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = format_errors(exc.errors())
    message = "; ".join(f"{d['field']}: {d['message']}" for d in details)
    rid = request_id_var.get("")
    logger.info("Request validation failed: %s", message)
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": message or "Validation failed",
            "details": details,
            "request_id": rid,
        },
    )


def init_validator(app: FastAPI) -> None:
    """
    Register the validation error handler on `app`.

    Raises:
        ValidatorError: If the validator was already installed on this app.
    """
    if getattr(app.state, "validator_installed", False):
        raise ValidatorError("validator already initialized")

    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.state.validator_installed = True
