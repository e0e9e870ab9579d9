"""
webkit - Outbound API Client
==============================

What:  call_api() sends one HTTP request to another service and decodes the
       JSON answer.
How:   A fresh httpx.AsyncClient per call; the body is either JSON or, for a
       FileUpload, multipart/form-data with a "file" part plus text fields.
       The whole exchange is bounded by `timeout`; a zero timeout means none.

Error Handling:
    Transport failure (connect, DNS, timeout)  → httpx exception, unmodified
    Status other than 200                      → CallApiError("CoreServer error: <status line> <body>")
    200 with undecodable body                  → ResponseDecodeError
    No retries. The caller decides what to do.

Limitations:
    The response body is read fully into memory; there is no streaming.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from webkit.exceptions import CallApiError, ResponseDecodeError

logger = logging.getLogger(__name__)

FILE_FIELD = "file"


@dataclass
class FileUpload:
    """
    Multipart upload payload for call_api().

    Attributes:
        filename:      Name sent in the "file" part's Content-Disposition
        file_bytes:    Raw file content
        other_fields:  Extra text fields, sent in insertion order
    """

    filename: str
    file_bytes: bytes
    other_fields: Dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.file_bytes)


def _timeout_seconds(timeout: Union[float, timedelta, None]) -> Optional[float]:
    """Seconds for the call deadline; zero, negative or None means no deadline."""
    if timeout is None:
        return None
    if isinstance(timeout, timedelta):
        seconds = timeout.total_seconds()
    else:
        seconds = float(timeout)
    return seconds if seconds > 0 else None


def _encode_json(body_params: Any) -> bytes:
    if isinstance(body_params, BaseModel):
        return body_params.model_dump_json().encode("utf-8")
    return json.dumps(body_params).encode("utf-8")


async def call_api(
    api: str,
    method: str,
    timeout: Union[float, timedelta, None],
    body_params: Any = None,
    result_type: Any = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """
    Call a remote HTTP API and decode its JSON response.

    Args:
        api:          Absolute URL of the endpoint.
        method:       HTTP method ("GET", "POST", ...).
        timeout:      Hard deadline for the whole call, in seconds or a timedelta.
                      Zero (or less) means no deadline at all.
        body_params:  A FileUpload for multipart, otherwise any JSON-serializable
                      value or pydantic model (None is sent as `null`).
        result_type:  Type to validate the response into (a pydantic model
                      class or anything TypeAdapter accepts). None returns the
                      decoded JSON as-is.
        transport:    Optional httpx transport (used by tests).

    Returns:
        The decoded response, validated into `result_type` when given.

    Raises:
        httpx.TransportError:  Network failure or the deadline was exceeded.
        CallApiError:          Status other than 200.
        ResponseDecodeError:   Body is not valid JSON for `result_type`.
        TypeError:             body_params is not JSON-serializable.
    """
    seconds = _timeout_seconds(timeout)
    headers = {"Accept": "application/json"}
    request_kwargs: Dict[str, Any] = {}

    if isinstance(body_params, FileUpload):
        # httpx picks the multipart boundary and sets Content-Type itself
        request_kwargs["files"] = {
            FILE_FIELD: (body_params.filename, body_params.file_bytes, "application/octet-stream"),
        }
        request_kwargs["data"] = dict(body_params.other_fields)
    else:
        request_kwargs["content"] = _encode_json(body_params)
        headers["Content-Type"] = "application/json"

    start_time = time.perf_counter()
    async with httpx.AsyncClient(timeout=seconds, transport=transport) as client:
        request = client.build_request(method, api, headers=headers, **request_kwargs)
        try:
            response = await asyncio.wait_for(client.send(request), timeout=seconds)
        except asyncio.TimeoutError:
            raise httpx.TimeoutException(
                f"{method} {api} exceeded {seconds:g}s", request=request
            ) from None

    logger.debug(
        "%s %s → %d in %.1fms",
        method,
        api,
        response.status_code,
        (time.perf_counter() - start_time) * 1000,
    )

    if response.status_code != httpx.codes.OK:
        status_line = f"{response.status_code} {response.reason_phrase}".strip()
        raise CallApiError(
            f"CoreServer error: {status_line} {response.text}",
            status_code=response.status_code,
            body=response.text,
            context={"api": api, "method": method},
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise ResponseDecodeError(
            f"response decode fail: {exc}",
            status_code=response.status_code,
            body=response.text,
            context={"api": api},
        ) from exc

    if result_type is None:
        return data

    try:
        return TypeAdapter(result_type).validate_python(data)
    except PydanticValidationError as exc:
        raise ResponseDecodeError(
            f"response decode fail: {exc}",
            status_code=response.status_code,
            body=response.text,
            context={"api": api},
        ) from exc
