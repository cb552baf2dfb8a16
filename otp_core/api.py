"""
OTP HTTP API
============
FastAPI router exposing the issue and verify flows.

Usage:
    from fastapi import FastAPI
    from otp_core.api import create_otp_router, install_error_handlers

    app = FastAPI()
    app.include_router(create_otp_router(service))
    install_error_handlers(app)
"""

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from otp_core.errors import InvalidArgument, OTPError, ResourceExhausted
from otp_core.schemas import (
    RequestOtpInput,
    RequestOtpResponse,
    VerifyOtpInput,
    VerifyOtpResponse,
)
from otp_core.service import OTPAuthService

logger = structlog.get_logger(__name__)


def create_otp_router(service: OTPAuthService, prefix: str = "/otp") -> APIRouter:
    router = APIRouter(prefix=prefix, tags=["otp"])

    @router.post("/request", response_model=RequestOtpResponse, response_model_by_alias=True)
    async def request_otp(body: RequestOtpInput) -> RequestOtpResponse:
        return await service.request_otp_code(body)

    @router.post("/verify", response_model=VerifyOtpResponse, response_model_by_alias=True)
    async def verify_otp(body: VerifyOtpInput) -> VerifyOtpResponse:
        return await service.verify_otp_code(body)

    return router


def otp_error_response(error: OTPError) -> JSONResponse:
    """Render an OTPError as ``{"error": kind, "message": text}``."""
    headers = {}
    if isinstance(error, ResourceExhausted) and error.retry_after_sec:
        headers["Retry-After"] = str(error.retry_after_sec)
    return JSONResponse(
        status_code=error.http_status,
        content={"error": error.kind, "message": error.message},
        headers=headers,
    )


async def _handle_otp_error(request: Request, exc: OTPError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("OTP request failed", path=request.url.path, kind=exc.kind)
    return otp_error_response(exc)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field details may echo input values, so only the count is logged
    logger.warning("Rejected malformed OTP payload", path=request.url.path, errors=len(exc.errors()))
    return otp_error_response(InvalidArgument("Malformed request payload."))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OTPError, _handle_otp_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
