import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None, headers=None):
        super().__init__(status_code=self.status_code, detail=message or self.message, headers=headers)
        self.errors = errors


class ValidationError(APIError):
    status_code = 400
    message = "Validation failed"


class Unauthenticated(APIError):
    status_code = 401
    message = "Access denied. No token provided."


class InvalidToken(APIError):
    status_code = 401
    message = "Invalid token"


class PrincipalNotFound(APIError):
    status_code = 401
    message = "Token is valid but user not found"


class AccountDeactivated(APIError):
    status_code = 401
    message = "Account has been deactivated"


class InvalidCredentials(APIError):
    status_code = 401
    message = "Invalid email or password"


class Forbidden(APIError):
    status_code = 403
    message = "Access denied"


class NotFound(APIError):
    status_code = 404
    message = "Resource not found"


class Conflict(APIError):
    status_code = 400
    message = "Request conflicts with the current state"


class ProductUnavailable(Conflict):
    message = "Product is not available for order"


class InsufficientStock(Conflict):
    message = "Not enough items in stock"


class SelfOrder(Conflict):
    message = "You cannot order your own product"


class SelfReview(Conflict):
    message = "You cannot review your own product"


class AlreadyPaid(Conflict):
    message = "Payment already completed for this order"


class InvalidTransition(Conflict):
    message = "Order cannot be moved to that status"


class DuplicateEmail(Conflict):
    message = "User with this email already exists"


class AlreadyRated(Conflict):
    message = "Order has already been rated"


class TooManyRequests(APIError):
    status_code = 429
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message, headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after


def error_body(message: str, errors=None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    body.update(extra)
    return body


async def api_error_handler(request: Request, exc: APIError):
    extra = {}
    if isinstance(exc, TooManyRequests):
        extra["retry_after"] = exc.retry_after
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, exc.errors, **extra),
        headers=exc.headers,
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return JSONResponse(status_code=exc.status_code, content=error_body(str(message)), headers=getattr(exc, "headers", None))


def field_errors(raw_errors) -> List[Dict[str, Any]]:
    out = []
    for err in raw_errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        out.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return out


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=error_body("Validation failed", field_errors(exc.errors())))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = error_body("Something went wrong!")
    body["error"] = str(exc) if config.is_development() else "Internal Server Error"
    return JSONResponse(status_code=500, content=body)


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


def validate_model(model_cls, data: dict):
    """Build ``model_cls`` from ``data``, turning pydantic errors into a 400 with field errors."""
    try:
        return model_cls(**data)
    except PydanticValidationError as e:
        raise ValidationError(errors=field_errors(e.errors()))
