# This file bootstraps the FastAPI app, wires up the logging and metrics
# middlewares, renders ledger errors, and includes all the routers.

import os

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ledger.core.db import Base, engine
from ledger.core.errors import InvariantViolationError, LedgerError
from ledger.core.logging import APILoggingMiddleware, logger
from ledger.core.metrics import MetricsMiddleware

import ledger.models  # noqa: F401  (register tables on Base.metadata)

from ledger.api.admin_payouts import router as admin_payouts_router
from ledger.api.creators import router as creators_router
from ledger.api.ingest import router as ingest_router
from ledger.api.payout_webhooks import router as payout_webhooks_router

# Create DB tables right away unless migrations own the schema.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Creator Earnings Ledger")


@app.exception_handler(LedgerError)
def handle_ledger_error(_request, exc: LedgerError):
    if isinstance(exc, InvariantViolationError):
        logger.error("ledger.invariant_violation", extra={"error_code": exc.code, "error": exc.message})
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

for router in (creators_router, ingest_router, admin_payouts_router, payout_webhooks_router):
    app.include_router(router)


# /metrics endpoint (Prometheus scraping)
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
def ping():
    return {"message": "pong"}
