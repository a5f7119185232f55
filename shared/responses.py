"""
Response helpers: JSON envelopes, CORS and security headers.
"""

from typing import Any, Dict, List, Optional

from fastapi.responses import JSONResponse, Response

from shared.errors import GatewayException, error_message


SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
}

ADMIN_HEADERS: Dict[str, str] = {
    "Cache-Control": "private, no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, X-API-Key, Authorization, X-Admin-Key"


def resolve_allowed_origin(origin: Optional[str], allowed_origins: List[str]) -> str:
    """Echo the origin when allowed, otherwise ``null``.

    With no configured allow-list any https origin is accepted.
    """
    if not origin:
        return "null"
    if allowed_origins:
        return origin if origin in allowed_origins else "null"
    return origin if origin.startswith("https://") else "null"


def cors_headers(origin: Optional[str], allowed_origins: List[str]) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": resolve_allowed_origin(origin, allowed_origins),
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Max-Age": "86400",
    }


def preflight_response(origin: Optional[str], allowed_origins: List[str], request_id: Optional[str] = None) -> Response:
    """204 answer to a CORS preflight."""
    headers = dict(SECURITY_HEADERS)
    headers.update(cors_headers(origin, allowed_origins))
    if request_id:
        headers["X-Request-ID"] = request_id
    return Response(status_code=204, headers=headers)


def apply_security_headers(response: Response) -> Response:
    """Add security headers the response does not already carry."""
    for name, value in SECURITY_HEADERS.items():
        if name not in response.headers:
            response.headers[name] = value
    return response


def error_response(
    status_code: int,
    message: str,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    generic: bool = False,
) -> JSONResponse:
    """Build the ``{"error", "code"}`` envelope."""
    response_headers = dict(headers or {})
    if request_id:
        response_headers["X-Request-ID"] = request_id
    return JSONResponse(
        status_code=status_code,
        content={"error": error_message(status_code, message, generic), "code": status_code},
        headers=response_headers,
    )


def exception_response(
    exc: GatewayException,
    request_id: Optional[str] = None,
    generic: bool = False,
    extra_headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    headers = dict(exc.headers)
    if extra_headers:
        headers.update(extra_headers)
    if request_id:
        headers["X-Request-ID"] = request_id
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(generic).model_dump(),
        headers=headers,
    )


def success_response(data: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Wrap a payload in the ``{"data": ...}`` envelope."""
    return JSONResponse(status_code=status_code, content={"data": data}, headers=headers)
