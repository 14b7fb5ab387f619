import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.logging_setup import setup_logging
from backend.services.errors import (
    EmptyListError,
    GuardConditionError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    OrchestrationError,
    TransientError,
    ValidationError,
)

setup_logging()
logger = logging.getLogger(__name__)

# première classe correspondante gagne
STATUS_CODES = (
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (InvalidTransitionError, 409),
    (EmptyListError, 422),
    (GuardConditionError, 422),
    (ValidationError, 422),
    (TransientError, 503),
)


def status_code_for(exc: OrchestrationError) -> int:
    for cls, code in STATUS_CODES:
        if isinstance(exc, cls):
            return code
    return 400


app = FastAPI(title="Emballages Procurement", version="0.1.0")
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(OrchestrationError)
async def orchestration_error_handler(request: Request, exc: OrchestrationError):
    code = status_code_for(exc)
    if code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, code, exc)
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "detail": exc.message, "context": exc.context},
    )
