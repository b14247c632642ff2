# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)

_INTERNAL_ERROR = "Internal server error"


# ── Exception hierarchy ──────────────────────────────────────────────────────


class DispatchError(Exception):
    """Base exception for all dispatcher errors.

    ``message`` is for logs. ``public_message`` is what the caller sees;
    server-side failures never expose broker or worker detail.
    """

    def __init__(self, message: str, status_code: int = 500, public_message: str | None = None):
        self.message = message
        self.status_code = status_code
        self.public_message = public_message or (
            _INTERNAL_ERROR if status_code >= 500 else message
        )
        super().__init__(message)


class UnknownModelError(DispatchError):
    """Raised when the requested model is not in the registry."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unknown model '{model}'", status_code=400)


class QueueOverloadedError(DispatchError):
    """Raised when a model's backlog exceeds the admission ceiling."""

    def __init__(self, model: str, depth: int, limit: int):
        self.model = model
        self.depth = depth
        self.limit = limit
        super().__init__(
            f"Queue for '{model}' is full ({depth} > {limit})",
            status_code=503,
            public_message="Service busy, retry later",
        )


class BackendUnavailableError(DispatchError):
    """Raised when the queue broker cannot be reached."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        super().__init__(f"Broker unavailable during {operation}: {reason}", status_code=500)


class JobFailedError(DispatchError):
    """Raised when a worker reports a job as failed."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Job {job_id} failed: {reason}", status_code=500)


class JobTimeoutError(DispatchError):
    """Raised when a job does not finish within the wait timeout.

    The job itself stays in the broker; only the local wait is abandoned.
    """

    def __init__(self, job_id: str, timeout_s: float):
        self.job_id = job_id
        self.timeout_s = timeout_s
        super().__init__(f"Job {job_id} did not finish within {timeout_s}s", status_code=500)


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    Endpoints raise DispatchError subclasses; these handlers catch them
    and return structured JSON -- no inline try/except in endpoints.
    """

    # Request fields accept any JSON value, so only an unparseable body lands here.
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("request_body_rejected", path=request.url.path, errors=exc.errors())
        return JSONResponse(
            status_code=400,
            content={"error": "Malformed request body", "type": "RequestValidationError"},
        )

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "dispatch_error",
                error=exc.message,
                error_type=type(exc).__name__,
                exc_info=exc,
            )
        else:
            logger.warning("dispatch_rejected", error=exc.message, error_type=type(exc).__name__)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message, "type": type(exc).__name__},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": _INTERNAL_ERROR, "type": "UnhandledError"},
        )
