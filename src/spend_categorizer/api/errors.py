from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from spend_categorizer.core.errors import ConfigurationError, ValidationError
from spend_categorizer.logger import get_logger

logger = get_logger(__name__)


async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    status_code = 404 if exc.is_not_found else 422
    logger.info("[API] %s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code.value, "detail": exc.message},
    )


async def handle_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("[API] Data file problem while serving %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"code": "CONFIGURATION_ERROR", "detail": exc.reason},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, handle_validation_error)
    app.add_exception_handler(ConfigurationError, handle_configuration_error)
