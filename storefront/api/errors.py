# storefront/api/errors.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from storefront.domain.errors import (
    CheckoutInProgressError,
    DiscountRejectedError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    PriceMismatchError,
    StockConflictError,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def _detail(status_code: int, message: str, **extra):
    return JSONResponse(status_code=status_code, content={"detail": message, **extra})


def register_error_handlers(app: FastAPI):
    """Mapowanie wyjatkow domenowych na kody HTTP, wspolne dla REST i RPC."""

    @app.exception_handler(StockConflictError)
    async def stock_conflict(request: Request, exc: StockConflictError):
        return _detail(409, str(exc), lines=exc.lines)

    @app.exception_handler(DiscountRejectedError)
    async def discount_rejected(request: Request, exc: DiscountRejectedError):
        return _detail(400, exc.reason, code=exc.code)

    @app.exception_handler(PriceMismatchError)
    async def price_mismatch(request: Request, exc: PriceMismatchError):
        return _detail(409, str(exc))

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError):
        return _detail(409, str(exc))

    @app.exception_handler(CheckoutInProgressError)
    async def checkout_in_progress(request: Request, exc: CheckoutInProgressError):
        return _detail(409, str(exc))

    @app.exception_handler(PaymentGatewayError)
    async def payment_gateway(request: Request, exc: PaymentGatewayError):
        logger.error(f"Payment gateway error on {request.url.path}: {exc}")
        return _detail(502, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _detail(404, str(exc))

    @app.exception_handler(PermissionError)
    async def forbidden(request: Request, exc: PermissionError):
        return _detail(403, str(exc))

    @app.exception_handler(ValidationError)
    async def invalid_payload(request: Request, exc: ValidationError):
        return _detail(422, "Invalid request data", errors=exc.errors(include_url=False, include_context=False))

    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError):
        return _detail(400, str(exc))
