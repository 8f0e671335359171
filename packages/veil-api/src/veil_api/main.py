"""API composition root."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from veil_chain.confirmation import ConfirmationReconciler
from veil_chain.rpc_client import ExplorerLedgerClient, ExternalLedger
from veil_chain.simulated import SimulatedLedger
from veil_core import VeilSettings, load_settings
from veil_core.storage import StorageBackend, create_store
from veil_ledger.projections import ProjectionService
from veil_ledger.records import EventLedger
from veil_protocol.credentials import CredentialIssuer
from veil_protocol.nonce_registry import NonceAuthenticator, NonceConfig
from veil_protocol.signatures import SignatureVerifier, StructuralSignatureVerifier

from .middleware import (
    StructuredLoggingMiddleware,
    get_credential_issuer,
    register_exception_handlers,
    setup_logging,
)
from .routers import auth, escrow, loyalty, merchant, receipts, transactions

logger = logging.getLogger("veil.api")

SERVICE_NAME = "Veil Ledger API"
VERSION = "0.1.0"


def build_external_ledger(settings: VeilSettings) -> ExternalLedger:
    if settings.chain_mode == "live":
        return ExplorerLedgerClient(
            rpc_url=settings.rpc_url,
            network=settings.network,
            program_id=settings.program_id,
            timeout_seconds=settings.rpc_timeout_seconds,
        )
    return SimulatedLedger()


def create_app(
    settings: VeilSettings | None = None,
    *,
    store: Optional[StorageBackend] = None,
    external_ledger: Optional[ExternalLedger] = None,
    signature_verifier: Optional[SignatureVerifier] = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(
            json_format=settings.json_logs or not settings.is_dev,
            level=settings.log_level,
        )

    store = store or create_store(settings)
    external_ledger = external_ledger or build_external_ledger(settings)
    verifier = signature_verifier or StructuralSignatureVerifier()

    authenticator = NonceAuthenticator(
        store, NonceConfig(ttl_seconds=settings.nonce_ttl_seconds)
    )
    issuer = CredentialIssuer(settings.secret_key, ttl_seconds=settings.credential_ttl_seconds)
    ledger = EventLedger(store)
    projections = ProjectionService(store)
    reconciler = ConfirmationReconciler(external_ledger, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {SERVICE_NAME} ({settings.environment})...")
        # Storage failure here is fatal: the app refuses to start.
        await store.initialize()
        logger.info(
            f"Storage backend: {store.name}, chain mode: {settings.chain_mode}"
        )
        try:
            yield
        finally:
            logger.info(f"Shutting down {SERVICE_NAME}...")
            await store.close()
            close = getattr(external_ledger, "close", None)
            if close is not None:
                await close()

    app = FastAPI(
        title=SERVICE_NAME,
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.external_ledger = external_ledger
    app.state.reconciler = reconciler

    register_exception_handlers(app, expose_internals=settings.is_dev)

    # Outermost middleware runs first
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    app.dependency_overrides[get_credential_issuer] = lambda: issuer

    app.dependency_overrides[auth.get_deps] = lambda: auth.AuthDependencies(  # type: ignore[arg-type]
        authenticator=authenticator,
        issuer=issuer,
        verifier=verifier,
    )
    app.include_router(auth.router, prefix="/auth")

    app.dependency_overrides[receipts.get_deps] = lambda: receipts.ReceiptDependencies(  # type: ignore[arg-type]
        ledger=ledger,
    )
    app.include_router(receipts.router, prefix="/receipts")

    app.dependency_overrides[escrow.get_deps] = lambda: escrow.EscrowDependencies(  # type: ignore[arg-type]
        ledger=ledger,
        reconciler=reconciler,
    )
    app.include_router(escrow.router, prefix="/escrow")

    app.dependency_overrides[loyalty.get_deps] = lambda: loyalty.LoyaltyDependencies(  # type: ignore[arg-type]
        ledger=ledger,
        projections=projections,
        reconciler=reconciler,
    )
    app.include_router(loyalty.router, prefix="/loyalty")

    app.dependency_overrides[merchant.get_deps] = lambda: merchant.MerchantDependencies(  # type: ignore[arg-type]
        ledger=ledger,
        projections=projections,
        reconciler=reconciler,
    )
    app.include_router(merchant.router, prefix="/merchant")

    app.dependency_overrides[transactions.get_deps] = lambda: transactions.TransactionDependencies(  # type: ignore[arg-type]
        ledger=ledger,
        reconciler=reconciler,
        default_timeout_seconds=settings.confirm_timeout_seconds,
        default_interval_seconds=settings.confirm_interval_seconds,
        max_timeout_seconds=settings.confirm_max_timeout_seconds,
    )
    app.include_router(transactions.router, prefix="/tx")

    @app.get("/chain/height", tags=["chain"])
    async def chain_height():
        """Latest block height reported by the external ledger."""
        return {"height": await external_ledger.get_latest_height()}

    @app.get("/", tags=["health"])
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "program": settings.program_id,
            "endpoints": {
                "auth": "/auth",
                "receipts": "/receipts",
                "escrow": "/escrow",
                "loyalty": "/loyalty",
                "merchant": "/merchant",
                "tx": "/tx/{tx_id}/status",
                "chain": "/chain/height",
            },
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check with storage ping and chain mode."""
        storage_ok = await store.ping()
        return {
            "status": "healthy" if storage_ok else "degraded",
            "environment": settings.environment,
            "chain_mode": settings.chain_mode,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "api": "up",
                "storage": store.name if storage_ok else "unreachable",
            },
        }

    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "veil_api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_config=None,
        reload=settings.is_dev,
    )
