# app/main.py
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
import logging

from app.core.config import Settings, settings as default_settings
from app.api.endpoints import payment, models, competitions
from app.paygate import __version__
from app.paygate.audit import PaymentAuditLog
from app.paygate.errors import PaymentError
from app.paygate.fees import FeeSchedule
from app.paygate.gate import AccessGate
from app.paygate.ledger import LedgerClient, LedgerError
from app.paygate.middleware import PaymentGateMiddleware
from app.paygate.session_cache import SessionCache
from app.paygate.store import GrantStore
from app.paygate.verifier import PaymentVerifier

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the grant tables on startup."""
    logger.info(f"Starting {app.title}")
    app.state.grant_store.create_schema()
    yield
    logger.info(f"Shutting down {app.title}")


def create_app(
    settings: Optional[Settings] = None,
    grant_store: Optional[GrantStore] = None,
    ledger: Optional[LedgerClient] = None,
    session_cache: Optional[SessionCache] = None,
    fee_schedule: Optional[FeeSchedule] = None,
    audit_log: Optional[PaymentAuditLog] = None,
) -> FastAPI:
    """
    Build the application and its payment components.

    Components are constructed once from settings unless passed in
    explicitly, and shared through ``app.state``.
    """
    if settings is None:
        settings = default_settings

    # Injected components may be falsy (an empty SessionCache has len 0)
    if grant_store is None:
        grant_store = GrantStore.from_url(settings.DATABASE_URL)
    if ledger is None:
        ledger = LedgerClient(
            settings.LEDGER_RPC_URL,
            timeout=settings.LEDGER_REQUEST_TIMEOUT_SECONDS
        )
    if session_cache is None:
        session_cache = SessionCache(
            ttl_seconds=settings.SESSION_CACHE_TTL_SECONDS,
            max_entries=settings.SESSION_CACHE_MAX_ENTRIES
        )
    if fee_schedule is None:
        fee_schedule = FeeSchedule.from_settings(settings)
    if audit_log is None:
        audit_log = PaymentAuditLog(
            settings.PAYMENT_AUDIT_LOG_PATH,
            enabled=settings.PAYMENT_AUDIT_ENABLED
        )

    verifier = PaymentVerifier(
        ledger=ledger,
        fee_schedule=fee_schedule,
        grant_store=grant_store,
        session_cache=session_cache,
        audit_log=audit_log,
        validity=timedelta(days=settings.GRANT_VALIDITY_DAYS),
        confirmation_timeout=settings.CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval=settings.CONFIRMATION_POLL_INTERVAL_SECONDS,
    )
    gate = AccessGate(
        fee_schedule=fee_schedule,
        grant_store=grant_store,
        session_cache=session_cache,
        network=settings.LEDGER_NETWORK,
        chain_id=settings.LEDGER_CHAIN_ID,
        verify_path=f"{settings.API_V1_STR}/payment/verify",
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        openapi_url=f"{settings.API_V1_STR}/openapi.json", # Standard location for OpenAPI spec
        lifespan=lifespan
    )
    app.state.grant_store = grant_store
    app.state.ledger = ledger
    app.state.session_cache = session_cache
    app.state.fee_schedule = fee_schedule
    app.state.audit_log = audit_log
    app.state.verifier = verifier
    app.state.gate = gate
    app.state.history_limit = settings.PAYMENT_HISTORY_LIMIT

    # Payment gate runs inside CORS so 401/402 responses still carry CORS headers
    app.add_middleware(
        PaymentGateMiddleware,
        gate=gate,
        audit_log=audit_log,
        api_prefix=settings.API_V1_STR,
    )

    origins = [o.strip().rstrip("/") for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Wallet-Address"],
        expose_headers=["X-PAYMENT-RESPONSE"],
    )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Include the API router(s)
    # The prefix ensures all routes start with /api/v1
    app.include_router(payment.router, prefix=f"{settings.API_V1_STR}/payment", tags=["payment"])
    app.include_router(models.router, prefix=f"{settings.API_V1_STR}/models", tags=["models"])
    app.include_router(competitions.router, prefix=f"{settings.API_V1_STR}/competitions", tags=["competitions"])

    @app.get("/", summary="Root", tags=["default"])
    def read_root():
        """ Basic liveness endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}

    @app.get("/health", summary="Health Check", tags=["default"])
    def health(request: Request):
        """ Reports grant store and ledger reachability. """
        db_ok = request.app.state.grant_store.ping()
        try:
            block_number = request.app.state.ledger.get_block_number()
            ledger_ok = True
        except LedgerError as e:
            logger.warning(f"Ledger health probe failed: {e}")
            block_number = None
            ledger_ok = False

        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": "ok" if db_ok else "maintenance",
                "db": "connected" if db_ok else "disconnected",
                "ledger": "reachable" if ledger_ok else "unreachable",
                "blockNumber": block_number,
                "network": settings.LEDGER_NETWORK,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    logger.info(
        f"Payment gate configured: network={settings.LEDGER_NETWORK} "
        f"chainId={settings.LEDGER_CHAIN_ID} wallet={settings.PAYMENT_WALLET_ADDRESS}"
    )
    return app


app = create_app()
