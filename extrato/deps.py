# extrato/deps.py
# Role: Shared FastAPI dependencies.
#       Exposes the application context, the per-request SQLAlchemy session
#       and the shared API-key check.

"""
Shared dependencies for the statement API.
"""

import hmac
from typing import Generator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from extrato.context import AppContext
from extrato.errors import UnauthorizedError

# -------------------------------------------------------------------
# Application context
# -------------------------------------------------------------------

def get_ctx(request: Request) -> AppContext:
    """The AppContext stored on app.state by create_app()."""
    return request.app.state.ctx


# -------------------------------------------------------------------
# Database dependency
# -------------------------------------------------------------------

def get_db(ctx: AppContext = Depends(get_ctx)) -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a database session and ensures it is closed.

    Typical usage in routes:
        db: Session = Depends(get_db)
    """
    db = ctx.SessionLocal()
    try:
        yield db
    finally:
        db.close()


# -------------------------------------------------------------------
# Auth
# -------------------------------------------------------------------

def require_api_key(
    ctx: AppContext = Depends(get_ctx),
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    """
    Compare the x-api-key header with API_KEY.

    With no API_KEY configured every request passes (local development).
    """
    expected = ctx.settings.api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise UnauthorizedError()
