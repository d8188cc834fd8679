import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stockroom.services.exceptions import ServiceError

logger = logging.getLogger(__name__)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.to_dict()}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.public_body())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(f"{request.method} {request.url.path} -> 400 invalid request: {errors}")
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": "Invalid request", "details": errors},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
