import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from grievance_engine.api.v1.api import router as api_router
from grievance_engine.config import settings
from grievance_engine.errors import (
    ErrorDetail,
    GrievanceEngineError,
    GrievanceErrorCode,
    StorageError,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Grievance Engine API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GrievanceEngineError)
def handle_engine_error(request: Request, exc: GrievanceEngineError):
    if isinstance(exc, StorageError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e["loc"]), "reason": e["msg"]}
        for e in exc.errors()
    ]
    error = ErrorDetail(
        error_code=GrievanceErrorCode.INVALID_FIELD,
        message="Request body or parameters are invalid",
        details={"errors": errors},
    )
    return JSONResponse(status_code=400, content=error.to_dict())


# Health check route
@app.get("/health")
def health_check():
    return {"status": "ok"}


app.include_router(api_router, prefix="/api/v1")
