from fastapi import FastAPI, Request, HTTPException
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from . import config


# HTTPException que ademas agrega claves propias al cuerpo (ej: requiresName).
class ApiError(HTTPException):
    def __init__(self, status_code: int, message: str, **extra):
        super().__init__(status_code=status_code, detail=message)
        self.extra = extra


def error_body(message: str, error: str = None, **extra) -> dict:
    body = {"success": False, "message": message}
    body.update(extra)
    if error is not None and config.is_development():
        body["error"] = error
    return body


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    extra = getattr(exc, "extra", {}) or {}
    if exc.status_code >= 500:
        logger.warning("{} {} -> {}: {}", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), **extra),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        # loc = ("body", "photos", 0, "quantity") -> "photos.0.quantity"
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid field {field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=error_body(message))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on {} {}", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error", error=str(exc)))


# Handlers de error y CORS comunes a todos los servicios.
def install(app: FastAPI):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
