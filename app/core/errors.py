import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class IntelligenceError(Exception):
    """Base class for errors raised by the categorization, recurring and anomaly services."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(IntelligenceError, ValueError):
    """Unusable description, bad frequency, malformed batch arguments."""

    status_code = 400


class NotFoundError(IntelligenceError, LookupError):
    """A rule, pattern, anomaly, category or transaction referenced by id does not exist in scope."""

    status_code = 404


async def intelligence_error_handler(request: Request, exc: IntelligenceError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(IntelligenceError, intelligence_error_handler)
