import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from berea import (
    ai_routes,
    bible_routes,
    billing_routes,
    circle_reflection_routes,
    circle_routes,
    circle_sharing_routes,
    circle_study_routes,
    invitation_routes,
    personal_routes,
    study_plan_routes,
)
from berea.ai import AIServiceError
from berea.config import API_TITLE, API_VERSION, EXPOSE_ERROR_DETAILS
from berea.db import is_unique_violation
from berea.errors import error_body
from berea.events import log_api_event, reset_event_log
from berea.models import HealthResponse

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


@app.exception_handler(StarletteHTTPException)
def handle_http_exception(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    message = None
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    return JSONResponse(status_code=400, content={"error": "invalid_payload", "message": message})


@app.exception_handler(AIServiceError)
def handle_ai_error(_request: Request, exc: AIServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "message": exc.message})


@app.exception_handler(Exception)
def handle_unexpected(request: Request, exc: Exception):
    if is_unique_violation(exc):
        return JSONResponse(
            status_code=409,
            content={"error": "conflict", "message": "Resource already exists"},
        )
    log_api_event(
        "api_unhandled_error",
        {"path": request.url.path, "method": request.method, "error_type": type(exc).__name__},
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "server_error",
            "message": str(exc) if EXPOSE_ERROR_DETAILS else "Internal server error",
        },
    )


@app.get("/api/health", response_model=HealthResponse)
def health():
    return {"status": "ok", "version": API_VERSION}


for module in (
    bible_routes,
    ai_routes,
    billing_routes,
    personal_routes,
    study_plan_routes,
    circle_routes,
    invitation_routes,
    circle_sharing_routes,
    circle_reflection_routes,
    circle_study_routes,
):
    app.include_router(module.router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "9000"))
    uvicorn.run("berea.main:app", host="0.0.0.0", port=port, reload=True)
