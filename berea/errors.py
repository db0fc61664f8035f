from fastapi import HTTPException

DEFAULT_ERROR_CODES = {
    400: "invalid_payload",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    410: "gone",
    429: "rate_limited",
    500: "server_error",
    502: "upstream_error",
    503: "unavailable",
}


def api_error(status_code: int, code: str | None = None, message: str | None = None, headers=None) -> HTTPException:
    """Build an HTTPException whose detail is the JSON error envelope."""
    detail = {
        "error": code or DEFAULT_ERROR_CODES.get(status_code, "http_error"),
        "message": message,
    }
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


def error_body(status_code: int, detail) -> dict:
    if isinstance(detail, dict) and "error" in detail:
        return {"error": detail["error"], "message": detail.get("message")}
    code = DEFAULT_ERROR_CODES.get(status_code, "http_error")
    return {"error": code, "message": str(detail) if detail else None}
