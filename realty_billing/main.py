import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from realty_billing.config import Config
from realty_billing.config.logging_config import configure_logging
from realty_billing.routes import billing, ping
from realty_billing.services.startup import BillingServices, lifespan
from realty_billing.utils.exceptions import BillingError, InvalidTier

configure_logging()
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
if Config.SENTRY_ENABLED and Config.SENTRY_DSN:
    import sentry_sdk

    def sentry_traces_sampler(sampling_context):
        """Skip liveness probes, sample webhooks fully, everything else at 20%."""
        if sampling_context.get("parent_sampled") is not None:
            return 1.0

        endpoint = ""
        if "asgi_scope" in sampling_context:
            endpoint = sampling_context["asgi_scope"].get("path", "")

        if endpoint == "/api/ping":
            return 0.0
        if endpoint == "/api/stripe/webhooks":
            return 1.0
        return 0.2

    sentry_sdk.init(
        dsn=Config.SENTRY_DSN,
        send_default_pii=False,
        environment=Config.SENTRY_ENVIRONMENT,
        release=Config.SENTRY_RELEASE,
        traces_sampler=sentry_traces_sampler,
    )
    logger.info(f"Sentry initialized (environment: {Config.SENTRY_ENVIRONMENT})")
else:
    logger.info("Sentry disabled (SENTRY_ENABLED=false or SENTRY_DSN not set)")


def create_app(services: BillingServices | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built service container; when omitted the lifespan
            builds one from environment configuration at startup.
    """
    app = FastAPI(
        title="Realty Billing API",
        description="Stripe subscription billing for the real-estate site",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.billing_services = services

    app.include_router(ping.router)
    app.include_router(billing.router)

    @app.exception_handler(BillingError)
    async def billing_exception_handler(request: Request, exc: BillingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # The checkout body is the only request body the API accepts
        error = InvalidTier()
        logger.info(f"{request.method} {request.url.path} rejected (400): {exc.errors()}")
        return JSONResponse(status_code=error.status_code, content={"error": error.message})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (the `realty-billing` console script)."""
    import uvicorn

    logger.info("Starting billing API server...")
    uvicorn.run("realty_billing.main:app", host="0.0.0.0", port=8000, reload=Config.IS_DEVELOPMENT)


if __name__ == "__main__":
    run()
