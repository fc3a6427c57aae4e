from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

from meterpay.core.config import settings
from meterpay.core.exceptions import BillingError
from meterpay.core.logging import configure_logging
from meterpay.routers import (
    analytics,
    audit_logs,
    billing,
    connect,
    payment_events,
    subscriptions,
    usage,
    webhooks,
)

OPENAPI_TAGS = [
    {"name": "Subscriptions", "description": "Owner subscriptions, entitlements and limits."},
    {"name": "Usage", "description": "Track metered usage and query the usage ledger."},
    {"name": "Billing", "description": "Checkout, portal and usage through the active provider."},
    {"name": "Connect", "description": "Connected accounts, their products and payments."},
    {"name": "Payment Events", "description": "Inspect, reset and replay payment events."},
    {"name": "Webhooks", "description": "Receive processor webhook events."},
    {"name": "Analytics", "description": "Revenue and subscription analytics."},
    {"name": "Audit Logs", "description": "Query the audit trail for billing entities."},
]

configure_logging()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Subscription entitlements, metered usage and marketplace payments. "
        "Feature access is answered from the local ledger; checkout and "
        "reporting go through the configured billing provider."
    ),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.middleware("http")
async def options_handler(request: Request, call_next):  # type: ignore[no-untyped-def]
    if request.method == "OPTIONS":
        origin = request.headers.get("origin", "*")
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Methods": "*",
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Max-Age": "86400",
            },
        )
    return await call_next(request)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    return JSONResponse(
        status_code=int(exc.status_code),
        content={"detail": exc.message, "error": exc.to_dict()},
    )


app.include_router(subscriptions.router, prefix="/v1/subscriptions", tags=["Subscriptions"])
app.include_router(usage.router, prefix="/v1/usage", tags=["Usage"])
app.include_router(billing.router, prefix="/v1/billing", tags=["Billing"])
app.include_router(connect.router, prefix="/v1/connect", tags=["Connect"])
app.include_router(
    payment_events.router,
    prefix="/v1/payment_events",
    tags=["Payment Events"],
)
app.include_router(webhooks.router, prefix="/v1/webhooks", tags=["Webhooks"])
app.include_router(analytics.router, prefix="/v1/analytics", tags=["Analytics"])
app.include_router(
    audit_logs.router,
    prefix="/v1/audit_logs",
    tags=["Audit Logs"],
)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "provider": settings.BILLING_PROVIDER or "auto",
        "status": "running",
    }
