"""
Error envelope: every failure answers {"error": message}.

  401  missing / rejected bearer token
  400  validation failure; domain-rule messages passed through
  404  unknown or invisible resource
  409  duplicate domain
  500  anything else, generic message (details go to the log only)
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sitepulse.core.errors import NotFound, TeamError

import structlog

logger = structlog.get_logger()


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request"}, status_code=400)


async def _team_error(request: Request, exc: TeamError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse({"error": str(exc) or "Not found"}, status_code=404)


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_type=type(exc).__name__)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(TeamError, _team_error)
    app.add_exception_handler(NotFound, _not_found)
    app.add_exception_handler(Exception, _unhandled)
