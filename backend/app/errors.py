# backend/app/errors.py
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TrackingError(Exception):
    """Base exception for the tracking backend."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(TrackingError):
    """Malformed or missing input."""
    status_code = 400


class InvalidPolicy(TrackingError):
    """Safe-zone configuration that cannot be evaluated."""
    status_code = 400


class UnauthorizedDevice(TrackingError):
    """Device write without the configured shared secret."""
    status_code = 401


class NotFoundError(TrackingError):
    """No matching record. `default` is sent alongside the error when set."""
    status_code = 404

    def __init__(self, message: str = "", default: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.default = default


class PersistenceError(TrackingError):
    """The relational store rejected or could not complete a write/read."""
    status_code = 500


class RequestTimeoutError(TrackingError, TimeoutError):
    status_code = 500


class DeviceTimeoutError(RequestTimeoutError):
    """The briefcase device did not answer in time or was unreachable."""
    status_code = 502


class DeviceError(TrackingError):
    """The briefcase device answered with an error."""
    status_code = 502


class BroadcastUnavailable(TrackingError):
    """Publishing on a channel that has been closed."""
    status_code = 503


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(TrackingError)
    async def tracking_error_handler(request: Request, exc: TrackingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        content = {"error": exc.message}
        if isinstance(exc, NotFoundError) and exc.default:
            content = {**exc.default, **content}
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        message = "; ".join(f"{'.'.join(d['loc'][1:]) or 'body'}: {d['msg']}" for d in details)
        return JSONResponse(status_code=400, content={"error": message, "detail": details})
