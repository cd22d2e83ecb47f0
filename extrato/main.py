# extrato/main.py
"""
FastAPI application factory for the statement dashboard API.

Here we only:
- build (or receive) the application context
- create tables and seed reference data
- install CORS and the error handlers
- include route modules
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from extrato.context import AppContext, build_context
from extrato.deps import require_api_key
from extrato.errors import register_error_handlers
from extrato.routes_dashboard import router as dashboard_router
from extrato.routes_reference import router as reference_router
from extrato.routes_root import router as root_router
from extrato.routes_statements import router as statements_router
from extrato.routes_transactions import router as transactions_router
from extrato.services.seed import seed_reference_data
from extrato.settings import Settings, configure_logging

logger = logging.getLogger(__name__)


def create_app(ctx: Optional[AppContext] = None) -> FastAPI:
    if ctx is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        ctx = build_context(settings)

    if ctx.settings.seed_on_startup:
        with ctx.SessionLocal() as db:
            seed_reference_data(db)

    if ctx.llm_client is None:
        logger.warning("OPENAI_API_KEY not set: CSV upload is disabled, JSON ingest still works")
    if not ctx.settings.api_key:
        logger.warning("API_KEY not set: x-api-key check is disabled")

    # -------------------------------------------------------------------
    # App setup
    # -------------------------------------------------------------------

    app = FastAPI(title="Extrato Dashboard API")
    app.state.ctx = ctx

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[ctx.settings.frontend_origin],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # -------------------------------------------------------------------
    # Include routers
    # -------------------------------------------------------------------

    # Health check (no auth)
    app.include_router(root_router)

    protected = [Depends(require_api_key)]

    # JSON ingest and CSV upload -> classify -> ingest
    app.include_router(statements_router, dependencies=protected)

    # Transactions list and manual CRUD
    app.include_router(transactions_router, dependencies=protected)

    # Dashboard aggregations
    app.include_router(dashboard_router, dependencies=protected)

    # Categories, payment methods, banks
    app.include_router(reference_router, dependencies=protected)

    return app
