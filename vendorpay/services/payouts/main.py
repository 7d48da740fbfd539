"""HTTP admin surface for vendor payouts plus the scheduler and outbox workers."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from time import perf_counter
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from vendorpay.common.config import PayoutConfig, settings
from vendorpay.common.db import SessionLocal
from vendorpay.common.errors import ErrorKind, PayoutError
from vendorpay.common.logging import configure_logging, logger, trace_id_ctx
from vendorpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from vendorpay.common.startup import log_startup_config
from vendorpay.common.tracing import instrument_app, setup_tracing
from vendorpay.services.payouts.dispatcher import BatchRequest
from vendorpay.services.payouts.gateway import HttpTransferGateway
from vendorpay.services.payouts.schemas import (
    BatchPayoutRequest,
    BatchPayoutResponse,
    ExtendHoldRequest,
    HoldRequest,
    HoldResponse,
    LiftHoldRequest,
    ManualPayoutRequest,
    PayoutOutcomeResponse,
    PayoutResponse,
    PayoutStatisticsResponse,
    ReconcileRequest,
    ScheduleUpdateRequest,
)
from vendorpay.services.payouts.service import PayoutService

configure_logging()
setup_tracing(settings.service_name)
payout_config = PayoutConfig.from_settings(settings)
log_startup_config(settings, payout_config)
gateway = HttpTransferGateway(
    settings.gateway_url,
    api_key=settings.gateway_api_key,
    timeout_seconds=payout_config.processing_timeout_seconds,
)
service = PayoutService(SessionLocal, gateway, payout_config, service_name=settings.service_name)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONCURRENCY: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ELIGIBILITY: 409,
    ErrorKind.RECONCILIATION_REQUIRED: 202,
    ErrorKind.INTERNAL: 500,
}


def get_service() -> PayoutService:
    return service


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Rehydrate the job registry, then run scheduler + outbox publisher with the app."""

    await service.rehydrate()
    scheduler_task = asyncio.create_task(service.dispatcher.run_forever())
    publisher_task = asyncio.create_task(service.outbox_publisher())
    yield
    service.dispatcher.stop()
    publisher_task.cancel()
    await asyncio.gather(scheduler_task, publisher_task, return_exceptions=True)
    await service.kafka.close()
    await gateway.close()


app = FastAPI(title="Vendor Payouts", lifespan=lifespan)
instrument_app(app)
admin = APIRouter(dependencies=[Depends(require_api_key)])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency, and bind a trace id for the request."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=settings.service_name, route=route, method=method).observe(
            elapsed
        )
        http_requests_total.labels(
            service=settings.service_name, route=route, method=method, status_code=str(status_code)
        ).inc()


@app.exception_handler(PayoutError)
async def payout_error_handler(_: Request, exc: PayoutError):
    status_code = STATUS_BY_KIND.get(exc.kind, 502)
    body = exc.to_dict()
    if exc.kind is ErrorKind.RECONCILIATION_REQUIRED:
        body["status"] = "reconciliation_required"
        body["payout_id"] = getattr(exc, "payout_id", None)
    if status_code >= 500:
        logger.error("payout_request_failed kind=%s error=%s", exc.kind.value, exc.message)
    return JSONResponse(status_code=status_code, content=body)


def _outcome_or_raise(outcome) -> PayoutOutcomeResponse:
    if not outcome.success and outcome.error is not None:
        raise outcome.error
    return PayoutOutcomeResponse(**outcome.to_dict())


@admin.post("/vendors/{vendor_account_id}/payouts", response_model=PayoutOutcomeResponse)
async def trigger_payout(vendor_account_id: str, req: ManualPayoutRequest, svc: PayoutService = Depends(get_service)):
    """Run a payout for one vendor now; `force` bypasses the vendor minimum."""

    outcome = await svc.trigger_manual_payout(
        vendor_account_id,
        amount=req.amount,
        currency=req.currency.lower() if req.currency else None,
        description=req.description,
        force=req.force,
    )
    return _outcome_or_raise(outcome)


@admin.get("/vendors/{vendor_account_id}/payouts", response_model=list[PayoutResponse])
def payout_history(
    vendor_account_id: str,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    svc: PayoutService = Depends(get_service),
):
    return svc.payout_history(vendor_account_id, status, start_date, end_date, limit, offset)


@admin.get("/vendors/{vendor_account_id}/statistics", response_model=PayoutStatisticsResponse)
def payout_statistics(vendor_account_id: str, svc: PayoutService = Depends(get_service)):
    return svc.payout_statistics(vendor_account_id)


@admin.put("/vendors/{vendor_account_id}/schedule")
async def update_schedule(
    vendor_account_id: str, req: ScheduleUpdateRequest, svc: PayoutService = Depends(get_service)
):
    return await svc.update_vendor_schedule(
        vendor_account_id, interval=req.interval, minimum_amount=req.minimum_amount, enabled=req.enabled
    )


@admin.get("/vendors/{vendor_account_id}/schedule")
async def get_schedule(vendor_account_id: str, svc: PayoutService = Depends(get_service)):
    return await svc.get_schedule_status(vendor_account_id)


@admin.post("/vendors/{vendor_account_id}/holds", status_code=201, response_model=HoldResponse)
def place_hold(vendor_account_id: str, req: HoldRequest, svc: PayoutService = Depends(get_service)):
    """Block payouts for a vendor; `duration_days` makes the hold expire on its own."""

    return svc.place_hold(
        vendor_account_id,
        req.reason,
        req.description,
        req.placed_by,
        hold_type=req.hold_type,
        duration_days=req.duration_days,
    )


@admin.delete("/vendors/{vendor_account_id}/holds")
async def lift_holds(
    vendor_account_id: str, req: LiftHoldRequest | None = None, svc: PayoutService = Depends(get_service)
):
    return await svc.lift_hold(
        vendor_account_id, req.reason if req else None, lifted_by=req.lifted_by if req else None
    )


@admin.patch("/vendors/{vendor_account_id}/holds", response_model=HoldResponse)
def extend_hold(vendor_account_id: str, req: ExtendHoldRequest, svc: PayoutService = Depends(get_service)):
    return svc.extend_hold(vendor_account_id, req.additional_days, req.reason)


@admin.get("/vendors/{vendor_account_id}/holds", response_model=list[HoldResponse])
def hold_history(
    vendor_account_id: str,
    include_active: bool = True,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    svc: PayoutService = Depends(get_service),
):
    return svc.hold_history(vendor_account_id, limit, offset, include_active)


@admin.post("/payouts/batch", response_model=BatchPayoutResponse)
async def batch_payouts(req: BatchPayoutRequest, svc: PayoutService = Depends(get_service)):
    """Run many vendor payouts; per-vendor failures are reported, not raised."""

    requests = [
        BatchRequest(
            vendor_account_id=item.vendor_account_id,
            amount=item.amount,
            currency=item.currency.lower() if item.currency else None,
            description=item.description,
        )
        for item in req.payouts
    ]
    return await svc.process_batch(requests)


@admin.post("/payouts/{payout_id}/reconcile", response_model=PayoutOutcomeResponse)
async def reconcile_payout(payout_id: str, req: ReconcileRequest, svc: PayoutService = Depends(get_service)):
    """Resume (re-issue with original keys) or abandon a parked payout."""

    outcome = await svc.reconcile(payout_id, req.action, req.note)
    return _outcome_or_raise(outcome)


@admin.get("/reconciliation")
def reconciliation_report(
    limit: int = Query(default=100, ge=1, le=1000), svc: PayoutService = Depends(get_service)
):
    """Payouts awaiting reconciliation and failures needing manual review."""

    return svc.reconciliation_report(limit)


@admin.get("/scheduler")
async def scheduler_statistics(svc: PayoutService = Depends(get_service)):
    return await svc.scheduler_statistics()


app.include_router(admin)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
