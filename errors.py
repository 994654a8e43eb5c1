import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AgriLinkError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class AuthenticationFailure(AgriLinkError):
    status_code = 401
    message = "Authentication required"


class PermissionDenied(AgriLinkError):
    status_code = 403
    message = "Insufficient permissions"

    def __init__(self, required: List[str], current: str):
        super().__init__()
        self.required = required
        self.current = current

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "required": self.required, "current": self.current}


class ValidationFailure(AgriLinkError):
    status_code = 400
    message = "Validation error"

    def __init__(self, details: List[Dict[str, str]], message: Optional[str] = None):
        super().__init__(message)
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.details}


class NotFound(AgriLinkError):
    status_code = 404
    message = "Not found"


class Conflict(AgriLinkError):
    status_code = 400
    message = "Already exists"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AgriLinkError)
    async def agrilink_error_handler(request: Request, exc: AgriLinkError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        from validation import violations_from_errors
        failure = ValidationFailure(violations_from_errors(exc.errors()))
        return JSONResponse(status_code=failure.status_code, content=failure.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
