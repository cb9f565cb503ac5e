"""
FastAPI application for the Cash Application Engine.
Thin HTTP surface over CashApplicationService; the wall clock is read here only.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import get_settings
from .errors import PaymentFrozenError, PaymentNotFoundError, SettlementEventNotFoundError
from .models import (
    ActivityAction,
    BankFeedType,
    BankTransaction,
    BankTransactionDirection,
    CreditMemoStatusFlag,
    InvoiceStatusFlag,
    Payment,
    ReceivableItem,
    ReceivableKind,
    ReceivableStatus,
    Remittance,
    RemittanceLinkStatus,
    RemittanceReference,
    SyncEntityType,
    SyncRun,
    SyncStatus,
)
from .service import CashApplicationService

logger = structlog.get_logger()
settings = get_settings()


def setup_logging():
    """Configure structlog over standard logging."""
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.app_log_level.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

setup_logging()


@lru_cache
def get_service() -> CashApplicationService:
    """Process-wide service over the in-memory repository."""
    return CashApplicationService(settings=settings)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Cash Application API", env=settings.app_env)
    settings.reports_dir.mkdir(parents=True, exist_ok=True)
    yield
    logger.info("Shutting down Cash Application API")


app = FastAPI(
    title="Cash Application Engine",
    description="Payment matching, exception taxonomy, settlement tracking and posting gate",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentNotFoundError)
async def payment_not_found_handler(request: Request, exc: PaymentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(SettlementEventNotFoundError)
async def settlement_not_found_handler(request: Request, exc: SettlementEventNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PaymentFrozenError)
async def payment_frozen_handler(request: Request, exc: PaymentFrozenError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# Request models
def assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps without an offset are read as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PaymentRequest(BaseModel):
    payment_number: str
    amount_cents: int
    currency: str = "USD"
    received_at: Optional[datetime] = None
    payer_name_raw: str = ""
    memo_raw: str = ""
    customer_id: Optional[str] = None
    parse_error_flag: bool = False
    invoice_status_flag: Optional[InvoiceStatusFlag] = None
    credit_memo_status_flag: Optional[CreditMemoStatusFlag] = None
    on_account_flag: bool = False
    je_required_flag: bool = False

    received_at_utc = field_validator("received_at")(assume_utc)


class ReceivableRequest(BaseModel):
    identifier: str
    amount_cents: int
    kind: ReceivableKind = ReceivableKind.INVOICE
    customer_id: Optional[str] = None
    status: ReceivableStatus = ReceivableStatus.OPEN

    def to_item(self) -> ReceivableItem:
        return ReceivableItem(
            identifier=self.identifier,
            amount_cents=self.amount_cents,
            kind=self.kind,
            customer_id=self.customer_id,
            status=self.status,
        )


class RemittanceReferenceRequest(BaseModel):
    identifier: str
    amount_cents: int


class RemittanceRequest(BaseModel):
    references: List[RemittanceReferenceRequest]
    payment_id: Optional[str] = None
    link_status: RemittanceLinkStatus = RemittanceLinkStatus.LINKED
    confidence: float = 0.0
    subject: str = ""
    remittance_number: str = ""


class CustomerRequest(BaseModel):
    customer_id: str
    name: str


class BankTransactionRequest(BaseModel):
    bank_reference: str
    amount_cents: int
    observed_at: Optional[datetime] = None
    direction: BankTransactionDirection = BankTransactionDirection.CREDIT
    method: str = "ACH"
    payer_raw: str = ""
    memo_raw: str = ""
    lockbox_batch_id: Optional[str] = None

    observed_at_utc = field_validator("observed_at")(assume_utc)

    def to_transaction(self, feed_type: BankFeedType, now: datetime) -> BankTransaction:
        return BankTransaction(
            bank_reference=self.bank_reference,
            amount_cents=self.amount_cents,
            observed_at=self.observed_at or now,
            feed_type=feed_type,
            direction=self.direction,
            method=self.method,
            payer_raw=self.payer_raw,
            memo_raw=self.memo_raw,
            lockbox_batch_id=self.lockbox_batch_id,
        )


class ObservationRequest(BaseModel):
    payment_id: str
    transaction: BankTransactionRequest


class BankReturnRequest(BaseModel):
    transaction: BankTransactionRequest
    payment_id: Optional[str] = None


class SyncRunRequest(BaseModel):
    entity_type: SyncEntityType
    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    records_fetched: int = 0
    records_upserted: int = 0
    errors_count: int = 0
    error_summary: List[str] = Field(default_factory=list)
    receivables: List[ReceivableRequest] = Field(default_factory=list)

    timestamps_utc = field_validator("started_at", "finished_at")(assume_utc)


class PostBatchRequest(BaseModel):
    payment_ids: List[str]


# API Endpoints
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}


@app.post("/api/payments", status_code=201)
def create_payment(
    request: PaymentRequest,
    service: CashApplicationService = Depends(get_service),
):
    payment = Payment(**request.model_dump())
    service.add_payment(payment)
    return payment.to_dict()


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: str, service: CashApplicationService = Depends(get_service)):
    return service.get_payment(payment_id).to_dict()


@app.post("/api/receivables")
def load_receivables(
    request: List[ReceivableRequest],
    service: CashApplicationService = Depends(get_service),
):
    loaded = service.add_receivables(item.to_item() for item in request)
    return {"loaded": loaded}


@app.post("/api/remittances", status_code=201)
def create_remittance(
    request: RemittanceRequest,
    service: CashApplicationService = Depends(get_service),
):
    if request.payment_id:
        service.get_payment(request.payment_id)
    remittance = Remittance(
        references=[
            RemittanceReference(identifier=ref.identifier, amount_cents=ref.amount_cents)
            for ref in request.references
        ],
        link_status=request.link_status,
        confidence=request.confidence,
        payment_id=request.payment_id,
        subject=request.subject,
        remittance_number=request.remittance_number,
    )
    try:
        service.add_remittance(remittance)
    except ValueError as e:
        raise HTTPException(409, str(e))
    return {"id": remittance.id, "payment_id": remittance.payment_id}


@app.post("/api/customers", status_code=201)
def create_customer(
    request: CustomerRequest,
    service: CashApplicationService = Depends(get_service),
):
    service.add_customer(request.customer_id, request.name)
    return {"customer_id": request.customer_id}


@app.post("/api/payments/{payment_id}/evaluate")
def evaluate_payment(payment_id: str, service: CashApplicationService = Depends(get_service)):
    """Run the match decision engine for one payment."""
    return service.evaluate(payment_id, utcnow()).to_dict()


@app.post("/api/payments/evaluate")
def evaluate_all(service: CashApplicationService = Depends(get_service)):
    decisions = service.evaluate_all(utcnow())
    return {"evaluated": len(decisions), "decisions": [d.to_dict() for d in decisions]}


@app.post("/api/payments/{payment_id}/taxonomy")
def resolve_taxonomy(payment_id: str, service: CashApplicationService = Depends(get_service)):
    return service.resolve_exception_taxonomy(payment_id).to_dict()


@app.get("/api/payments/{payment_id}/activity")
def payment_activity(
    payment_id: str,
    action: Optional[ActivityAction] = None,
    service: CashApplicationService = Depends(get_service),
):
    """Activity trail of one payment, optionally filtered by action."""
    return service.activity_report(payment_id, action)


@app.get("/api/exceptions/summary")
def exception_summary(service: CashApplicationService = Depends(get_service)):
    return service.exception_summary(utcnow()).to_dict()


@app.post("/api/settlement/observations", status_code=201)
def record_observation(
    request: ObservationRequest,
    service: CashApplicationService = Depends(get_service),
):
    now = utcnow()
    txn = request.transaction.to_transaction(BankFeedType.PRELIMINARY, now)
    return service.record_settlement_observation(txn, request.payment_id, now).to_dict()


@app.post("/api/settlement/finals")
def record_final(
    request: BankTransactionRequest,
    service: CashApplicationService = Depends(get_service),
):
    now = utcnow()
    txn = request.to_transaction(BankFeedType.FINAL, now)
    return service.finalize_settlement(txn, now).to_dict()


@app.post("/api/settlement/returns")
def record_return(
    request: BankReturnRequest,
    service: CashApplicationService = Depends(get_service),
):
    now = utcnow()
    txn = request.transaction.to_transaction(BankFeedType.FINAL, now)
    events = service.record_bank_return(txn, now, request.payment_id)
    return {"events": [e.to_dict() for e in events]}


@app.post("/api/settlement/refresh")
def refresh_settlements(service: CashApplicationService = Depends(get_service)):
    failed = service.refresh_settlements(utcnow())
    return {"failed": [e.to_dict() for e in failed]}


@app.post("/api/sync-runs", status_code=201)
def record_sync_run(
    request: SyncRunRequest,
    service: CashApplicationService = Depends(get_service),
):
    run = SyncRun(**request.model_dump(exclude={"receivables"}))
    guard = service.record_sync_run(run, [item.to_item() for item in request.receivables])
    return {"id": run.id, "guard": guard.to_dict()}


@app.get("/api/integrity")
def integrity_guard(service: CashApplicationService = Depends(get_service)):
    return service.integrity_guard(utcnow()).to_dict()


@app.get("/api/integrity/can-post")
def can_post(service: CashApplicationService = Depends(get_service)):
    return service.can_post_to_erp(utcnow()).to_dict()


@app.post("/api/posting/batches")
def post_batch(
    request: PostBatchRequest,
    service: CashApplicationService = Depends(get_service),
):
    if not request.payment_ids:
        raise HTTPException(400, "payment_ids must not be empty")
    return service.post_batch(request.payment_ids, utcnow()).to_dict()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
