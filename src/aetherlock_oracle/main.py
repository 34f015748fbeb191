"""FastAPI application entry point for the AetherLock verification oracle.

Lifecycle:
    1. Startup: logging, attestation key (fail fast), HTTP + Solana RPC
       clients, pipeline components, gateway database, single-flight guard.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Close Redis, the database and both HTTP clients.

The MCP server is mounted at /mcp so agents can discover tools alongside the
REST API at /api/v1/*.

Run with:
    uv run uvicorn aetherlock_oracle.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI
from solana.rpc.async_api import AsyncClient

from aetherlock_oracle.config import get_settings
from aetherlock_oracle.domain.exceptions import MissingSigningKeyError
from aetherlock_oracle.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    from aetherlock_oracle.infrastructure.database.engine import GatewayDatabase
    from aetherlock_oracle.infrastructure.pinata_client import PinataContentStore
    from aetherlock_oracle.infrastructure.redis_client import (
        RedisFlightGuard,
        close_redis,
        connect_redis,
    )
    from aetherlock_oracle.infrastructure.solana_program import SolanaEscrowProgram
    from aetherlock_oracle.mcp_server.tools import bind_services
    from aetherlock_oracle.orchestration import LocalFlightGuard, VerificationOrchestrator
    from aetherlock_oracle.services import (
        EscrowClient,
        EvidenceStore,
        GatewayEscrowService,
        load_signer,
    )
    from aetherlock_oracle.services.attestation_signer import keypair_from_secret
    from aetherlock_oracle.verifiers import Adjudicator

    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Attestation key; a missing key stops startup
    signer = load_signer(settings)
    payer_secret = settings.chain_payer_private_key.get_secret_value()
    if not payer_secret:
        raise MissingSigningKeyError("No chain payer configured: set CHAIN_PAYER_PRIVATE_KEY")
    payer = keypair_from_secret(payer_secret)

    # 3. Outbound clients
    http_client = httpx.AsyncClient()
    rpc_client = AsyncClient(settings.solana_rpc_url)

    program = SolanaEscrowProgram(
        rpc_client,
        settings.escrow_program_id,
        payer,
        confirmation_timeout_seconds=settings.chain_confirmation_timeout_seconds,
    )
    evidence_store = EvidenceStore.from_settings(
        PinataContentStore.from_settings(http_client, settings), settings
    )
    escrow_client = EscrowClient.from_settings(program, program.payer_address, settings)

    # 4. Gateway records database
    database = GatewayDatabase(settings.database_url, echo=settings.db_echo_sql)
    await database.create_all()

    # 5. Single-flight guard
    redis = None
    if settings.uses_redis:
        redis = await connect_redis(settings.redis_url)
        flight_guard = RedisFlightGuard(redis, ttl_seconds=settings.single_flight_ttl_seconds)
    else:
        flight_guard = LocalFlightGuard()

    app.state.settings = settings
    app.state.signer = signer
    app.state.evidence_store = evidence_store
    app.state.escrow_client = escrow_client
    app.state.database = database
    app.state.redis = redis
    app.state.gateway_service = GatewayEscrowService(database)
    app.state.orchestrator = VerificationOrchestrator.from_settings(
        settings,
        evidence_store,
        Adjudicator.from_settings(settings),
        signer,
        escrow_client,
        flight_guard=flight_guard,
    )
    bind_services(app.state)

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        attestation_key=signer.public_key_base58,
        single_flight=settings.single_flight_backend,
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_redis(redis)
    await database.dispose()
    await rpc_client.close()
    await http_client.aclose()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="AetherLock Oracle",
        description=(
            "AI verification oracle for milestone escrows: evidence in, "
            "signed verdict out, settlement on chain."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from aetherlock_oracle.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from aetherlock_oracle.api.routes.escrow import router as escrow_router
    from aetherlock_oracle.api.routes.evidence import router as evidence_router
    from aetherlock_oracle.api.routes.gateway import router as gateway_router
    from aetherlock_oracle.api.routes.health import router as health_router
    from aetherlock_oracle.api.routes.keys import router as keys_router

    app.include_router(health_router)
    app.include_router(escrow_router)
    app.include_router(evidence_router)
    app.include_router(keys_router)
    app.include_router(gateway_router)

    # --- MCP Server (mounted as sub-application) ---
    from aetherlock_oracle.mcp_server.tools import mcp

    app.mount("/mcp", mcp.sse_app())

    return app


# The app instance used by Uvicorn
app = create_app()
