"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from yardly.observability.correlation import CORRELATION_ID_HEADER, correlation_scope

from .routes import checkout, closings, health, invoices, payment_methods, settings


def create_app() -> FastAPI:
    """Create the FastAPI app with correlation-id middleware and all routes."""
    app = FastAPI(
        title="Yardly",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(health.router)
    app.include_router(checkout.router)
    app.include_router(payment_methods.router)
    app.include_router(closings.router)
    app.include_router(invoices.router)
    app.include_router(settings.router)

    return app
